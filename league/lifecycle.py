import logging
from contextlib import contextmanager
from datetime import datetime

from shared.state_machine import (
    TournamentStateMachine, TournamentStatus, TransitionError, recompute_status,
)
from .errors import NotFound, InvalidState
from .models import db, Tournament

logger = logging.getLogger(__name__)


def lock_tournament(tournament_id: int) -> Tournament:
    """Load the tournament row with a row-level lock held until commit/rollback."""
    tournament = (
        Tournament.query.filter_by(id=tournament_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if tournament is None:
        raise NotFound(f"Tournament {tournament_id} not found")
    return tournament


@contextmanager
def tournament_transaction(tournament_id: int):
    """
    Serialize work on one tournament.

    Yields the locked tournament; commits when the block exits cleanly and
    rolls back on any exception, which is re-raised.
    """
    try:
        tournament = lock_tournament(tournament_id)
        yield tournament
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def apply_status(tournament: Tournament, target: TournamentStatus, registered_count: int = None) -> bool:
    """Move the cached status through the state machine. Returns True if it changed."""
    sm = TournamentStateMachine.from_state_string(tournament.status)
    if sm.state == target:
        return False
    guard_context = None
    if registered_count is not None:
        guard_context = {'registered_count': registered_count, 'max_teams': tournament.max_teams}
    try:
        old_state = sm.state.value
        new_state = sm.move_to(target, guard_context)
    except TransitionError as e:
        raise InvalidState(e.reason)
    tournament.status = new_state.value
    logger.info(f"Tournament {tournament.id} status {old_state} -> {new_state.value}")
    return True


def sync_status(tournament: Tournament, now: datetime = None, lockout_hours: int = 12) -> TournamentStatus:
    """Recompute the cached status from registrations and the clock, then store it."""
    now = now or datetime.utcnow()
    count = tournament.registered_count
    target = recompute_status(tournament, count, now, lockout_hours)
    apply_status(tournament, target, count)
    return target


def complete_tournament(tournament: Tournament, now: datetime = None):
    now = now or datetime.utcnow()
    apply_status(tournament, TournamentStatus.COMPLETE)
    tournament.ends_at = now
