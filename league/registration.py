import logging
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from shared.events import ActivityType, dedupe_key
from shared.state_machine import TournamentStatus, signups_closed
from .activity_feed import ActivityFeed
from .errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from .bracket import BracketArena
from .lifecycle import sync_status, tournament_transaction
from .models import db, Tournament, TournamentMatch, TournamentRegistration
from .roster import AccountService, RosterService

logger = logging.getLogger(__name__)


class RegistrationLedger:
    """
    Tracks which teams hold a place in which tournament.

    Every mutation runs under the tournament row lock so the capacity check,
    the insert and the status recompute happen as one unit.
    """

    def __init__(
        self,
        feed: ActivityFeed = None,
        roster: RosterService = None,
        accounts: AccountService = None
    ):
        self.feed = feed or ActivityFeed()
        self.roster = roster or RosterService()
        self.accounts = accounts or AccountService()

    # ---- helpers ----

    def _setting(self, key: str, default):
        return current_app.config.get(key, default)

    def is_organizer(self, tournament: Tournament, user_id: Optional[int]) -> bool:
        if user_id is None:
            return False
        return self.accounts.is_admin(user_id) or tournament.created_by == user_id

    def active_rows(self, tournament_id: int) -> List[TournamentRegistration]:
        return (
            TournamentRegistration.query
            .filter_by(tournament_id=tournament_id, status=TournamentRegistration.REGISTERED)
            .order_by(TournamentRegistration.created_at, TournamentRegistration.id)
            .all()
        )

    def active_team_ids(self, tournament_id: int) -> List[int]:
        return [r.team_id for r in self.active_rows(tournament_id)]

    def withdrawn_team_ids(self, tournament_id: int) -> List[int]:
        rows = TournamentRegistration.query.filter_by(
            tournament_id=tournament_id, status=TournamentRegistration.CANCELLED
        ).all()
        return [r.team_id for r in rows]

    def get_registration(self, tournament_id: int, team_id: int) -> Optional[TournamentRegistration]:
        return TournamentRegistration.query.filter_by(
            tournament_id=tournament_id, team_id=team_id
        ).first()

    # ---- register ----

    def register(
        self,
        tournament_id: int,
        team_id: int,
        requesting_user_id: int,
        agreements_accepted: bool = True,
        now: datetime = None
    ) -> TournamentRegistration:
        """Register a team, retrying once if a concurrent insert wins the unique key."""
        if not agreements_accepted:
            raise ValidationError("Tournament agreements must be accepted")

        try:
            registration, activity = self._register_once(tournament_id, team_id, requesting_user_id, now)
        except IntegrityError:
            logger.warning(f"Registration race on tournament {tournament_id} team {team_id}, retrying")
            registration, activity = self._register_once(tournament_id, team_id, requesting_user_id, now)

        self.feed.publish([activity])
        return registration

    def _register_once(self, tournament_id, team_id, requesting_user_id, now):
        now = now or datetime.utcnow()
        lockout = self._setting('SIGNUP_LOCKOUT_HOURS', 12)
        at_capacity = False
        registration = None
        activity = None

        with tournament_transaction(tournament_id) as tournament:
            team = self.roster.get_team(team_id)
            if team is None:
                raise NotFound(f"Team {team_id} not found")

            count = tournament.registered_count
            if count >= tournament.max_teams:
                # Persist FULL even though this request fails.
                sync_status(tournament, now, lockout)
                at_capacity = True
            else:
                status = TournamentStatus(tournament.status)
                if status in (TournamentStatus.DRAFT, TournamentStatus.COMPLETE):
                    raise InvalidState(f"Cannot register teams while tournament is {status.value}")

                organizer = self.is_organizer(tournament, requesting_user_id)
                closed = status == TournamentStatus.LOCKED or signups_closed(tournament, now, lockout)
                if closed and not organizer:
                    raise InvalidState("Signups are closed for this tournament")

                if not organizer and not self.roster.is_captain(team_id, requesting_user_id):
                    raise Forbidden("Only the team captain can register the team")

                existing = self.get_registration(tournament_id, team_id)
                if existing is not None and existing.is_active:
                    raise Conflict("Team is already registered for this tournament")

                self._check_member_conflicts(tournament_id, team_id)

                if existing is not None:
                    existing.status = TournamentRegistration.REGISTERED
                    existing.checked_in = False
                    existing.registered_by = requesting_user_id
                    existing.updated_at = now
                    registration = existing
                else:
                    registration = TournamentRegistration(
                        tournament_id=tournament_id,
                        team_id=team_id,
                        status=TournamentRegistration.REGISTERED,
                        checked_in=False,
                        registered_by=requesting_user_id,
                        created_at=now,
                        updated_at=now
                    )
                    db.session.add(registration)
                db.session.flush()

                sync_status(tournament, now, lockout)

                activity = self.feed.emit(
                    ActivityType.TEAM_REGISTERED_TOURNAMENT,
                    team_id=team_id,
                    dedupe_key=dedupe_key(ActivityType.TEAM_REGISTERED_TOURNAMENT, tournament_id, team_id),
                    tournament_id=tournament_id,
                    actor_user_id=requesting_user_id,
                    team_name=team.name,
                    extras={
                        'tournament_name': tournament.name,
                        'starts_at': tournament.starts_at.isoformat() if tournament.starts_at else None,
                        'registered_by': self.accounts.username(requesting_user_id),
                    }
                )

        if at_capacity:
            raise Conflict("Tournament is full")

        logger.info(f"Team {team_id} registered for tournament {tournament_id}")
        return registration, activity

    def _check_member_conflicts(self, tournament_id: int, team_id: int):
        members = set(self.roster.members_of(team_id))
        if not members:
            return
        for other_team_id in self.active_team_ids(tournament_id):
            if other_team_id == team_id:
                continue
            overlap = members.intersection(self.roster.members_of(other_team_id))
            if overlap:
                user_id = sorted(overlap)[0]
                raise Conflict(
                    f"User {user_id} is already registered in this tournament with team {other_team_id}"
                )

    # ---- unregister ----

    def unregister(
        self,
        tournament_id: int,
        team_id: int,
        requesting_user_id: int,
        now: datetime = None
    ) -> TournamentRegistration:
        now = now or datetime.utcnow()
        lockout = self._setting('SIGNUP_LOCKOUT_HOURS', 12)
        window_hours = self._setting('UNREGISTER_LOCKOUT_HOURS', 24)
        window = timedelta(hours=window_hours)

        with tournament_transaction(tournament_id) as tournament:
            registration = self.get_registration(tournament_id, team_id)
            if registration is None:
                raise NotFound(f"Team {team_id} is not registered for tournament {tournament_id}")

            organizer = self.is_organizer(tournament, requesting_user_id)
            if not organizer and not self.roster.is_captain(team_id, requesting_user_id):
                raise Forbidden("Only the team captain can unregister the team")

            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")

            if not organizer and tournament.starts_at and now >= tournament.starts_at - window:
                raise InvalidState(f"Cannot unregister within {window_hours} hours of the tournament start")

            if not registration.is_active:
                return registration

            registration.status = TournamentRegistration.CANCELLED
            registration.checked_in = False
            registration.updated_at = now
            db.session.flush()

            # A withdrawn team leaves every match it has not played yet.
            BracketArena(TournamentMatch.query.filter_by(tournament_id=tournament_id)).strip({team_id})

            sync_status(tournament, now, lockout)

        logger.info(f"Team {team_id} unregistered from tournament {tournament_id}")
        return registration

    # ---- reads ----

    def eligibility(self, tournament_id: int, user_id: int = None) -> dict:
        if db.session.get(Tournament, tournament_id) is None:
            raise NotFound(f"Tournament {tournament_id} not found")

        team_ids = self.active_team_ids(tournament_id)
        committed = set()
        for tid in team_ids:
            committed.update(self.roster.members_of(tid))

        return {
            'tournament_id': tournament_id,
            'registered_team_ids': team_ids,
            'conflicted_user_ids': sorted(committed),
            'user_registered': user_id in committed if user_id is not None else False,
        }

    def list_registrations(self, tournament_id: int) -> List[TournamentRegistration]:
        if db.session.get(Tournament, tournament_id) is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        return (
            TournamentRegistration.query.filter_by(tournament_id=tournament_id)
            .order_by(TournamentRegistration.created_at, TournamentRegistration.id)
            .all()
        )

    def list_registrations_expanded(self, tournament_id: int) -> List[dict]:
        if db.session.get(Tournament, tournament_id) is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        expanded = []
        for seed, row in enumerate(self.active_rows(tournament_id), start=1):
            item = row.to_dict()
            item['team_name'] = self.roster.team_name(row.team_id)
            item['seed'] = seed
            expanded.append(item)
        return expanded

    def attendance(self, tournament_id: int) -> List[dict]:
        if db.session.get(Tournament, tournament_id) is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        return [
            {
                'team_id': row.team_id,
                'team_name': self.roster.team_name(row.team_id),
                'checked_in': row.checked_in,
            }
            for row in self.active_rows(tournament_id)
        ]
