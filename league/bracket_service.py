import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app

from shared.events import ActivityType, dedupe_key
from shared.state_machine import TournamentStatus
from .activity_feed import ActivityFeed
from .bracket import (
    BracketArena, is_power_of_two, matches_in_round, next_position, round_count,
    round_one_pairings, seed_order,
)
from .errors import Forbidden, InvalidState, NotFound, ValidationError
from .lifecycle import complete_tournament, tournament_transaction
from .models import db, Tournament, TournamentMatch
from .registration import RegistrationLedger
from .roster import AccountService, RosterService
from .stats import StatsLedger

logger = logging.getLogger(__name__)


class BracketService:
    """
    Generates and drives single-elimination brackets.

    Each public mutation holds the tournament row lock for its whole
    transaction. Activities are persisted in that transaction and fanned out
    only after it commits.
    """

    def __init__(
        self,
        ledger: RegistrationLedger = None,
        feed: ActivityFeed = None,
        roster: RosterService = None,
        accounts: AccountService = None,
        stats: StatsLedger = None,
        rng: random.Random = None
    ):
        self.feed = feed or ActivityFeed()
        self.roster = roster or RosterService()
        self.accounts = accounts or AccountService()
        self.ledger = ledger or RegistrationLedger(self.feed, self.roster, self.accounts)
        self.stats = stats or StatsLedger(self.roster)
        self.rng = rng

    # ---- helpers ----

    def _setting(self, key: str, default):
        return current_app.config.get(key, default)

    def _require_admin(self, user_id: Optional[int], action: str):
        if not self.accounts.is_admin(user_id):
            raise Forbidden(f"Only an admin can {action}")

    def _get_tournament(self, tournament_id: int) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        return tournament

    def matches_for(self, tournament_id: int) -> List[TournamentMatch]:
        return (
            TournamentMatch.query.filter_by(tournament_id=tournament_id)
            .order_by(TournamentMatch.round_number, TournamentMatch.match_number)
            .all()
        )

    def arena_for(self, tournament_id: int) -> BracketArena:
        return BracketArena(self.matches_for(tournament_id))

    def has_bracket(self, tournament_id: int) -> bool:
        return TournamentMatch.query.filter_by(tournament_id=tournament_id).first() is not None

    def _payload(self, tournament_id: int, matches: List[TournamentMatch], message: str = None) -> dict:
        payload = {
            'tournament_id': tournament_id,
            'available': bool(matches),
            'matches': [m.to_dict() for m in matches],
            'count': len(matches),
        }
        if message:
            payload['message'] = message
        return payload

    # ---- generation ----

    def get_bracket(self, tournament_id: int, now: datetime = None) -> dict:
        """Current bracket, generated on first read inside the pre-start window."""
        now = now or datetime.utcnow()
        tournament = self._get_tournament(tournament_id)

        matches = self.matches_for(tournament_id)
        if matches:
            return self._payload(tournament_id, matches)

        if tournament.status == TournamentStatus.COMPLETE.value:
            return self._payload(tournament_id, [], "Tournament is complete")

        window_hours = self._setting('BRACKET_WINDOW_HOURS', 24)
        if now < tournament.starts_at - timedelta(hours=window_hours):
            return self._payload(
                tournament_id, [], f"Bracket becomes available {window_hours} hours before the tournament starts"
            )

        try:
            with tournament_transaction(tournament_id) as locked:
                # Another request may have generated it while we waited for the lock.
                if not self.has_bracket(tournament_id):
                    self._build(locked)
        except InvalidState as e:
            return self._payload(tournament_id, [], e.message)

        return self._payload(tournament_id, self.matches_for(tournament_id))

    def generate(self, tournament_id: int) -> List[TournamentMatch]:
        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")
            if self.has_bracket(tournament_id):
                raise InvalidState("Bracket already exists")
            self._build(tournament)
        return self.matches_for(tournament_id)

    def regenerate(self, tournament_id: int, requesting_user_id: int) -> List[TournamentMatch]:
        """Delete every match and build a fresh bracket in one transaction."""
        self._require_admin(requesting_user_id, "regenerate a bracket")
        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")
            self._delete_matches(tournament_id)
            self._build(tournament)
        logger.info(f"Bracket regenerated for tournament {tournament_id} by user {requesting_user_id}")
        return self.matches_for(tournament_id)

    def _delete_matches(self, tournament_id: int):
        TournamentMatch.query.filter_by(tournament_id=tournament_id).update(
            {TournamentMatch.next_match_id: None}, synchronize_session=False
        )
        TournamentMatch.query.filter_by(tournament_id=tournament_id).delete(synchronize_session='fetch')

    def _build(self, tournament: Tournament) -> BracketArena:
        team_ids = self.ledger.active_team_ids(tournament.id)
        if not team_ids:
            raise InvalidState("No teams are registered for this tournament")
        if not is_power_of_two(tournament.max_teams):
            raise InvalidState("Tournament size must be a power of two")
        if len(team_ids) > tournament.max_teams:
            raise InvalidState("More teams registered than the bracket can hold")

        order = seed_order(team_ids, tournament.max_teams, self.rng)
        rounds = round_count(tournament.max_teams)

        # grid[r][m] holds round r, match m (both 1-based; index 0 unused)
        grid = [[]]
        for r in range(1, rounds + 1):
            row = [None]
            for m in range(1, matches_in_round(tournament.max_teams, r) + 1):
                match = TournamentMatch(
                    tournament_id=tournament.id,
                    round_number=r,
                    match_number=m,
                    status=TournamentMatch.SCHEDULED,
                    score_a=0,
                    score_b=0
                )
                db.session.add(match)
                row.append(match)
            grid.append(row)
        db.session.flush()

        for r in range(1, rounds + 1):
            for m in range(1, len(grid[r])):
                position = next_position(r, m, rounds)
                if position is None:
                    continue
                next_round, next_match, slot = position
                grid[r][m].next_match_id = grid[next_round][next_match].id
                grid[r][m].next_match_slot = slot

        for i, (team_a, team_b) in enumerate(round_one_pairings(order), start=1):
            grid[1][i].team_a_id = team_a
            grid[1][i].team_b_id = team_b

        arena = BracketArena(match for row in grid[1:] for match in row[1:])
        byes = arena.auto_advance()
        db.session.flush()

        logger.info(
            f"Bracket generated for tournament {tournament.id}: {len(team_ids)} teams, "
            f"{len(arena)} matches, {len(byes)} byes resolved"
        )
        return arena

    # ---- scores ----

    def report_score(
        self,
        tournament_id: int,
        match_id: int,
        score_a,
        score_b,
        requesting_user_id: int,
        now: datetime = None
    ) -> TournamentMatch:
        """Record a played match and move its winner forward."""
        now = now or datetime.utcnow()
        self._require_admin(requesting_user_id, "report scores")

        try:
            score_a = int(score_a)
            score_b = int(score_b)
        except (TypeError, ValueError):
            raise ValidationError("Scores must be integers")
        if score_a < 0 or score_b < 0:
            raise InvalidState("Scores cannot be negative")
        if score_a == score_b:
            raise InvalidState("Ties are not allowed")

        activities = []
        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")

            arena = self.arena_for(tournament_id)
            match = arena.by_id.get(match_id)
            if match is None:
                raise NotFound(f"Match {match_id} not found in tournament {tournament_id}")
            if match.is_complete:
                raise InvalidState("Match is already complete")
            if match.team_a_id is None or match.team_b_id is None:
                raise InvalidState("Match does not have two teams yet")
            active = set(self.ledger.active_team_ids(tournament_id))
            for team_id in match.team_ids():
                if team_id not in active:
                    raise InvalidState(f"Team {team_id} has withdrawn from the tournament")

            if score_a > score_b:
                winner_id, loser_id = match.team_a_id, match.team_b_id
                winner_score, loser_score = score_a, score_b
            else:
                winner_id, loser_id = match.team_b_id, match.team_a_id
                winner_score, loser_score = score_b, score_a

            match.score_a = score_a
            match.score_b = score_b
            match.updated_at = now
            arena.resolve(match, winner_id)
            arena.auto_advance()

            self.stats.record_match(winner_id, loser_id, now)

            winner_name = self.roster.team_name(winner_id)
            loser_name = self.roster.team_name(loser_id)
            common = {
                'match_id': match.id,
                'round_number': match.round_number,
                'is_final': match.is_final,
                'tournament_name': tournament.name,
            }
            activities.append(self.feed.emit(
                ActivityType.MATCH_RESULT_WIN,
                team_id=winner_id,
                dedupe_key=dedupe_key(ActivityType.MATCH_RESULT_WIN, match.id, winner_id),
                tournament_id=tournament_id,
                actor_user_id=requesting_user_id,
                team_name=winner_name,
                extras=dict(common, opponent_team_id=loser_id, opponent_name=loser_name,
                            score_for=winner_score, score_against=loser_score)
            ))
            activities.append(self.feed.emit(
                ActivityType.MATCH_RESULT_LOSS,
                team_id=loser_id,
                dedupe_key=dedupe_key(ActivityType.MATCH_RESULT_LOSS, match.id, loser_id),
                tournament_id=tournament_id,
                actor_user_id=requesting_user_id,
                team_name=loser_name,
                extras=dict(common, opponent_team_id=winner_id, opponent_name=winner_name,
                            score_for=loser_score, score_against=winner_score)
            ))

        logger.info(
            f"Score recorded for match {match_id} in tournament {tournament_id}: "
            f"{score_a}-{score_b}, winner {winner_id}"
        )
        self.feed.publish(activities)
        return match

    # ---- attendance ----

    def attendance(self, tournament_id: int) -> List[dict]:
        return self.ledger.attendance(tournament_id)

    def set_attendance(
        self,
        tournament_id: int,
        team_id: int,
        checked_in: bool,
        requesting_user_id: int,
        now: datetime = None
    ) -> dict:
        """Flip a team's check-in flag; marking a team absent runs enforcement in the same transaction."""
        self._require_admin(requesting_user_id, "change attendance")
        now = now or datetime.utcnow()
        enforcement, activities = None, []

        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")
            registration = self.ledger.get_registration(tournament_id, team_id)
            if registration is None or not registration.is_active:
                raise NotFound(f"Team {team_id} is not registered for tournament {tournament_id}")
            registration.checked_in = bool(checked_in)
            registration.updated_at = now
            db.session.flush()
            result = registration.to_dict()

            if not checked_in:
                enforcement, activities = self._enforce(tournament, now)

        self.feed.publish(activities)
        return {'registration': result, 'enforcement': enforcement}

    def enforce_attendance(self, tournament_id: int, requesting_user_id: int = None, now: datetime = None) -> dict:
        if requesting_user_id is not None:
            self._require_admin(requesting_user_id, "enforce attendance")
        now = now or datetime.utcnow()

        with tournament_transaction(tournament_id) as tournament:
            summary, activities = self._enforce(tournament, now)

        self.feed.publish(activities)
        return summary

    def _enforce(self, tournament: Tournament, now: datetime):
        """
        Resolve no-shows on a locked tournament.

        Absent and withdrawn teams are removed from every unplayed match, then
        one-sided matches are advanced in favour of present teams. With fewer
        than two teams present the tournament is cancelled instead. Running it
        again with unchanged check-ins changes nothing.
        """
        summary = {
            'tournament_id': tournament.id,
            'present_team_ids': [],
            'absent_team_ids': [],
            'withdrawn_team_ids': [],
            'stripped_match_ids': [],
            'advanced_match_ids': [],
            'cancelled': False,
            'finalized': False,
        }
        activities = []
        if tournament.status == TournamentStatus.COMPLETE.value:
            return summary, activities

        rows = self.ledger.active_rows(tournament.id)
        present = {r.team_id for r in rows if r.checked_in}
        absent = {r.team_id for r in rows if not r.checked_in}
        withdrawn = set(self.ledger.withdrawn_team_ids(tournament.id))
        summary['present_team_ids'] = sorted(present)
        summary['absent_team_ids'] = sorted(absent)
        summary['withdrawn_team_ids'] = sorted(withdrawn)

        arena = self.arena_for(tournament.id)
        if len(arena) == 0:
            cutoff = tournament.starts_at - timedelta(minutes=self._setting('CHECKIN_CUTOFF_MINUTES', 30))
            if len(present) < 2 and now >= cutoff:
                activities = self._cancel(tournament, [r.team_id for r in rows], now)
                summary['cancelled'] = True
            return summary, activities

        stripped = arena.strip(absent | withdrawn)
        summary['stripped_match_ids'] = [m.id for m in stripped]

        if len(present) < 2:
            # No byes-by-absence: cancel without advancing anyone.
            activities = self._cancel(tournament, [r.team_id for r in rows], now)
            summary['cancelled'] = True
        else:
            advanced = arena.auto_advance(present)
            summary['advanced_match_ids'] = [m.id for m in advanced]
            final = arena.final
            if final in advanced and final.winner_team_id in present:
                activities = self._complete_with_winner(tournament, final.winner_team_id, now)
                summary['finalized'] = True

        logger.info(
            f"Attendance enforced for tournament {tournament.id}: "
            f"{len(absent)} absent, {len(withdrawn)} withdrawn, "
            f"{len(summary['advanced_match_ids'])} advanced, cancelled={summary['cancelled']}"
        )
        return summary, activities

    def _cancel(self, tournament: Tournament, team_ids: List[int], now: datetime) -> list:
        complete_tournament(tournament, now)
        activities = []
        for team_id in team_ids:
            activities.append(self.feed.emit(
                ActivityType.TOURNAMENT_CANCELLED,
                team_id=team_id,
                dedupe_key=dedupe_key(ActivityType.TOURNAMENT_CANCELLED, tournament.id, team_id),
                tournament_id=tournament.id,
                team_name=self.roster.team_name(team_id),
                extras={'tournament_name': tournament.name, 'reason': 'Not enough teams checked in'}
            ))
        logger.info(f"Tournament {tournament.id} cancelled for lack of present teams")
        return activities

    # ---- finalization ----

    def finalize(self, tournament_id: int, requesting_user_id: int, now: datetime = None) -> Tournament:
        self._require_admin(requesting_user_id, "finalize a tournament")
        now = now or datetime.utcnow()

        with tournament_transaction(tournament_id) as tournament:
            if tournament.status == TournamentStatus.COMPLETE.value:
                raise InvalidState("Tournament is already complete")

            final = self.arena_for(tournament_id).final
            if final is None or not final.is_complete or final.winner_team_id is None:
                raise InvalidState("Final match is not complete")

            registration = self.ledger.get_registration(tournament_id, final.winner_team_id)
            if registration is None or not registration.checked_in:
                raise InvalidState("Winner has not checked in")

            activities = self._complete_with_winner(tournament, final.winner_team_id, now)

        self.feed.publish(activities)
        return tournament

    def _complete_with_winner(self, tournament: Tournament, winner_id: int, now: datetime) -> list:
        complete_tournament(tournament, now)
        titled = self.stats.grant_title(winner_id, now)
        winner_name = self.roster.team_name(winner_id)

        activities = []
        for team_id in self.ledger.active_team_ids(tournament.id):
            activities.append(self.feed.emit(
                ActivityType.TOURNAMENT_COMPLETED,
                team_id=team_id,
                dedupe_key=dedupe_key(ActivityType.TOURNAMENT_COMPLETED, tournament.id, team_id),
                tournament_id=tournament.id,
                team_name=self.roster.team_name(team_id),
                extras={'tournament_name': tournament.name, 'winner_team_id': winner_id,
                        'winner_name': winner_name}
            ))
        activities.append(self.feed.emit(
            ActivityType.TOURNAMENT_WINNER,
            team_id=winner_id,
            dedupe_key=dedupe_key(ActivityType.TOURNAMENT_WINNER, tournament.id, winner_id),
            tournament_id=tournament.id,
            team_name=winner_name,
            extras={'tournament_name': tournament.name}
        ))

        logger.info(
            f"Tournament {tournament.id} finalized: winner {winner_id}, {titled} titles granted"
        )
        return activities
