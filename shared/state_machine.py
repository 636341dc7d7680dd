from enum import Enum
from datetime import datetime, timedelta
from typing import Optional, Callable
from dataclasses import dataclass


SIGNUP_LOCKOUT_HOURS = 12


class TournamentStatus(str, Enum):
    DRAFT = "DRAFT"
    SIGNUPS_OPEN = "SIGNUPS_OPEN"
    LOCKED = "LOCKED"
    FULL = "FULL"
    COMPLETE = "COMPLETE"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: TournamentStatus
    to_state: TournamentStatus
    action: str
    guard: Optional[Callable] = None


def capacity_guard(context: dict) -> bool:
    return context.get("registered_count", 0) >= context.get("max_teams", 0)


class TournamentStateMachine:
    TRANSITIONS = [
        Transition(TournamentStatus.DRAFT, TournamentStatus.SIGNUPS_OPEN, "publish"),
        Transition(TournamentStatus.SIGNUPS_OPEN, TournamentStatus.LOCKED, "lock"),
        Transition(TournamentStatus.SIGNUPS_OPEN, TournamentStatus.FULL, "fill", capacity_guard),
        Transition(TournamentStatus.LOCKED, TournamentStatus.FULL, "fill", capacity_guard),
        Transition(TournamentStatus.FULL, TournamentStatus.SIGNUPS_OPEN, "reopen"),
        Transition(TournamentStatus.FULL, TournamentStatus.LOCKED, "reopen_locked"),
        Transition(TournamentStatus.SIGNUPS_OPEN, TournamentStatus.COMPLETE, "complete"),
        Transition(TournamentStatus.LOCKED, TournamentStatus.COMPLETE, "complete"),
        Transition(TournamentStatus.FULL, TournamentStatus.COMPLETE, "complete"),
    ]

    def __init__(self, initial_state: TournamentStatus = TournamentStatus.DRAFT):
        self._state = initial_state

    @property
    def state(self) -> TournamentStatus:
        return self._state

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def transition(self, action: str, guard_context: dict = None) -> TournamentStatus:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context:
                    if not t.guard(guard_context):
                        raise TransitionError(
                            self._state.value,
                            t.to_state.value,
                            f"Guard condition failed for action '{action}'"
                        )

                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def action_for(self, target: TournamentStatus) -> Optional[str]:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.to_state == target:
                return t.action
        return None

    def move_to(self, target: TournamentStatus, guard_context: dict = None) -> TournamentStatus:
        """Transition to ``target`` through whichever action connects the two states."""
        if target == self._state:
            return self._state
        action = self.action_for(target)
        if action is None:
            raise TransitionError(self._state.value, target.value)
        return self.transition(action, guard_context)

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        try:
            state = TournamentStatus(state_str)
        except ValueError:
            state = TournamentStatus.DRAFT
        return cls(initial_state=state)


def signups_closed(tournament, now: datetime, lockout_hours: int = SIGNUP_LOCKOUT_HOURS) -> bool:
    """True once the signup deadline or the pre-start lockout has passed."""
    if tournament.signup_deadline is not None and now >= tournament.signup_deadline:
        return True
    if tournament.starts_at is not None and now >= tournament.starts_at - timedelta(hours=lockout_hours):
        return True
    return False


def recompute_status(
    tournament,
    registered_count: int,
    now: datetime,
    lockout_hours: int = SIGNUP_LOCKOUT_HOURS
) -> TournamentStatus:
    """
    Derive the cached tournament status from capacity and the signup clock.

    DRAFT and COMPLETE are sticky. A time-based lock never reopens: a FULL
    tournament that drops below capacity goes back to SIGNUPS_OPEN only while
    the signup window is still open.
    """
    current = TournamentStatus(tournament.status)
    if current in (TournamentStatus.DRAFT, TournamentStatus.COMPLETE):
        return current

    if registered_count >= tournament.max_teams:
        return TournamentStatus.FULL

    if current == TournamentStatus.LOCKED or signups_closed(tournament, now, lockout_hours):
        return TournamentStatus.LOCKED

    return TournamentStatus.SIGNUPS_OPEN
