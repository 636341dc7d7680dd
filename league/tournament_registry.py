import logging
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy import or_, and_

from shared.state_machine import TournamentStateMachine, TournamentStatus, TransitionError
from .bracket import is_power_of_two
from .errors import Forbidden, InvalidState, NotFound, ValidationError
from .lifecycle import tournament_transaction
from .models import db, Tournament, TournamentRegistration
from .roster import AccountService

logger = logging.getLogger(__name__)

WHEN_FILTERS = ('upcoming', 'live', 'past')


class TournamentRegistry:
    """
    Manages tournament records:
    - Create tournaments (admin only)
    - Publish drafts so signups open
    - List tournaments by time window and status
    - Look up a team's tournaments
    """

    def __init__(self, accounts: AccountService = None):
        self.accounts = accounts or AccountService()

    def create_tournament(
        self,
        name: str,
        max_teams: int,
        starts_at: datetime,
        requesting_user_id: int,
        signup_deadline: datetime = None,
        location: str = None,
        prize_cents: int = None,
        draft: bool = False
    ) -> Tournament:
        """Create a new tournament, open for signups unless created as a draft."""
        if not self.accounts.is_admin(requesting_user_id):
            raise Forbidden("Only an admin can create tournaments")
        if not name:
            raise ValidationError("Tournament name is required")
        if not is_power_of_two(max_teams):
            raise ValidationError("max_teams must be a power of two (2, 4, 8, ...)")
        if starts_at is None:
            raise ValidationError("starts_at is required")

        if signup_deadline is None:
            window = current_app.config.get('BRACKET_WINDOW_HOURS', 24)
            signup_deadline = starts_at - timedelta(hours=window)
        if signup_deadline > starts_at:
            raise ValidationError("signup_deadline cannot be after starts_at")

        tournament = Tournament(
            name=name,
            max_teams=max_teams,
            starts_at=starts_at,
            signup_deadline=signup_deadline,
            location=location,
            prize_cents=prize_cents,
            created_by=requesting_user_id,
            status=(TournamentStatus.DRAFT if draft else TournamentStatus.SIGNUPS_OPEN).value
        )

        db.session.add(tournament)
        db.session.commit()

        logger.info(f"Tournament {tournament.id} created by user {requesting_user_id} ({tournament.status})")
        return tournament

    def get_tournament(self, tournament_id: int) -> Optional[Tournament]:
        return db.session.get(Tournament, tournament_id)

    def require_tournament(self, tournament_id: int) -> Tournament:
        tournament = self.get_tournament(tournament_id)
        if tournament is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        return tournament

    def list_tournaments(
        self,
        when: str = None,
        status: str = None,
        limit: int = 50,
        offset: int = 0,
        now: datetime = None
    ) -> List[Tournament]:
        """List tournaments with optional time-window and status filtering."""
        now = now or datetime.utcnow()
        query = Tournament.query

        if when is not None:
            if when not in WHEN_FILTERS:
                raise ValidationError(f"when must be one of {', '.join(WHEN_FILTERS)}")
            query = query.filter(self._when_clause(when, now))

        if status:
            query = query.filter_by(status=status)

        if when == 'past':
            query = query.order_by(Tournament.starts_at.desc(), Tournament.id.desc())
        else:
            query = query.order_by(Tournament.starts_at, Tournament.id)
        return query.offset(offset).limit(limit).all()

    def _when_clause(self, when: str, now: datetime):
        complete = TournamentStatus.COMPLETE.value
        if when == 'upcoming':
            return and_(Tournament.status != complete, Tournament.starts_at > now)
        if when == 'live':
            return and_(
                Tournament.starts_at <= now,
                or_(Tournament.ends_at.is_(None), Tournament.ends_at > now)
            )
        return or_(
            Tournament.ends_at < now,
            and_(Tournament.ends_at.is_(None), Tournament.starts_at < now, Tournament.status == complete)
        )

    def tournaments_for_team(self, team_id: int, when: str = 'upcoming', now: datetime = None) -> List[Tournament]:
        """Tournaments a team holds an active registration in."""
        if when not in ('upcoming', 'past'):
            raise ValidationError("when must be upcoming or past")
        now = now or datetime.utcnow()

        query = (
            Tournament.query
            .join(TournamentRegistration, TournamentRegistration.tournament_id == Tournament.id)
            .filter(
                TournamentRegistration.team_id == team_id,
                TournamentRegistration.status == TournamentRegistration.REGISTERED
            )
            .filter(self._when_clause(when, now))
        )
        if when == 'past':
            query = query.order_by(Tournament.starts_at.desc())
        else:
            query = query.order_by(Tournament.starts_at)
        return query.all()

    def publish_tournament(self, tournament_id: int, requesting_user_id: int) -> Tournament:
        """Move a tournament from DRAFT to SIGNUPS_OPEN."""
        with tournament_transaction(tournament_id) as tournament:
            if not (self.accounts.is_admin(requesting_user_id) or tournament.created_by == requesting_user_id):
                raise Forbidden("Only an admin or the tournament creator can publish it")

            # Use state machine to validate and execute transition
            sm = TournamentStateMachine.from_state_string(tournament.status)
            if not sm.can_transition('publish'):
                raise InvalidState(f"Cannot publish tournament in {tournament.status} state")

            try:
                old_state = sm.state.value
                new_state = sm.transition('publish')
            except TransitionError as e:
                raise InvalidState(e.reason)

            tournament.status = new_state.value

        logger.info(f"Tournament {tournament_id} published: {old_state} -> {new_state.value}")
        return tournament
