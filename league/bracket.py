"""
Single-elimination bracket tree helpers.

Matches are persisted as flat rows with a forward link (next_match_id plus a
slot). BracketArena indexes one tournament's rows once per operation so that
advancement never re-queries the store.
"""
import random
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import TournamentMatch

SLOT_A = "1"
SLOT_B = "2"


def is_power_of_two(n) -> bool:
    return isinstance(n, int) and not isinstance(n, bool) and n >= 2 and n & (n - 1) == 0


def round_count(max_teams: int) -> int:
    return max_teams.bit_length() - 1


def matches_in_round(max_teams: int, round_number: int) -> int:
    return max_teams >> round_number


def seed_order(team_ids: Sequence[int], max_teams: int, rng: random.Random = None) -> List[Optional[int]]:
    """Uniformly shuffle the registered teams, then pad with byes up to max_teams."""
    shuffled = list(team_ids)
    (rng or random).shuffle(shuffled)
    return shuffled + [None] * (max_teams - len(shuffled))


def round_one_pairings(order: Sequence[Optional[int]]) -> List[Tuple[Optional[int], Optional[int]]]:
    return [(order[i], order[i + 1]) for i in range(0, len(order), 2)]


def next_position(round_number: int, match_number: int, rounds: int) -> Optional[Tuple[int, int, str]]:
    """(round, match, slot) the winner of this match moves into, or None for the final."""
    if round_number >= rounds:
        return None
    slot = SLOT_A if match_number % 2 == 1 else SLOT_B
    return round_number + 1, (match_number + 1) // 2, slot


class BracketArena:
    def __init__(self, matches: Iterable[TournamentMatch]):
        self.by_id: Dict[int, TournamentMatch] = {}
        self.feeders: Dict[Tuple[int, str], TournamentMatch] = {}
        for m in matches:
            self.by_id[m.id] = m
        for m in self.by_id.values():
            if m.next_match_id is not None:
                self.feeders[(m.next_match_id, m.next_match_slot)] = m

    def __len__(self):
        return len(self.by_id)

    def ordered(self) -> List[TournamentMatch]:
        return sorted(self.by_id.values(), key=lambda m: (m.round_number, m.match_number))

    @property
    def final(self) -> Optional[TournamentMatch]:
        if not self.by_id:
            return None
        return max(self.by_id.values(), key=lambda m: (m.round_number, m.match_number))

    def next_of(self, match: TournamentMatch) -> Optional[TournamentMatch]:
        if match.next_match_id is None:
            return None
        return self.by_id.get(match.next_match_id)

    def roots(self) -> List[TournamentMatch]:
        return [m for m in self.by_id.values() if m.next_match_id is None]

    # ---- slot liveness ----

    def can_fill(self, match: TournamentMatch, slot: str) -> bool:
        """True while the match feeding this slot may still send a winner into it."""
        feeder = self.feeders.get((match.id, slot))
        if feeder is None or feeder.status == TournamentMatch.COMPLETE:
            return False
        return self.can_produce_winner(feeder)

    def can_produce_winner(self, match: TournamentMatch) -> bool:
        if match.status == TournamentMatch.COMPLETE:
            return False
        if match.team_a_id is not None or match.team_b_id is not None:
            return True
        return self.can_fill(match, SLOT_A) or self.can_fill(match, SLOT_B)

    # ---- mutation ----

    def place_winner(self, match: TournamentMatch, team_id: int) -> Optional[TournamentMatch]:
        nxt = self.next_of(match)
        if nxt is None:
            return None
        if match.next_match_slot == SLOT_A:
            nxt.team_a_id = team_id
        else:
            nxt.team_b_id = team_id
        return nxt

    def resolve(self, match: TournamentMatch, winner_team_id: int):
        match.winner_team_id = winner_team_id
        match.status = TournamentMatch.COMPLETE
        self.place_winner(match, winner_team_id)

    def strip(self, absent: Set[int]) -> List[TournamentMatch]:
        """Clear absent teams out of every match that has not been played."""
        touched = []
        for m in self.ordered():
            if m.status == TournamentMatch.COMPLETE:
                continue
            changed = False
            if m.team_a_id is not None and m.team_a_id in absent:
                m.team_a_id = None
                changed = True
            if m.team_b_id is not None and m.team_b_id in absent:
                m.team_b_id = None
                changed = True
            if changed:
                touched.append(m)
        return touched

    def auto_advance(self, present: Optional[Set[int]] = None) -> List[TournamentMatch]:
        """
        Resolve one-sided matches until nothing changes.

        A match with a single team completes only when its empty slot can no
        longer be filled, and, when ``present`` is given, only if that team is
        in it. Matches left with no team stay unresolved.
        """
        resolved = []
        changed = True
        while changed:
            changed = False
            for m in self.ordered():
                if m.status == TournamentMatch.COMPLETE:
                    continue
                teams = m.team_ids()
                if len(teams) != 1:
                    continue
                survivor = teams[0]
                empty_slot = SLOT_B if m.team_a_id is not None else SLOT_A
                if self.can_fill(m, empty_slot):
                    continue
                if present is not None and survivor not in present:
                    continue
                self.resolve(m, survivor)
                resolved.append(m)
                changed = True
        return resolved
