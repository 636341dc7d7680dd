from datetime import datetime
from typing import List, Optional

from flask import current_app

from .models import db, UserStats
from .roster import RosterService


class StatsLedger:
    """Per-user, per-sport win/loss/title counters."""

    def __init__(self, roster: RosterService = None):
        self.roster = roster or RosterService()

    def sport_for_team(self, team_id: int) -> str:
        team = self.roster.get_team(team_id)
        if team and team.sport:
            return team.sport
        return current_app.config.get('DEFAULT_SPORT', 'basketball')

    def _row(self, user_id: int, sport: str) -> UserStats:
        row = db.session.get(UserStats, (user_id, sport))
        if row is None:
            row = UserStats(user_id=user_id, sport=sport, match_wins=0, match_losses=0, titles=0)
            db.session.add(row)
            db.session.flush()
        return row

    def _bump(self, team_id: int, field: str, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        sport = self.sport_for_team(team_id)
        members = self.roster.members_of(team_id)
        for user_id in members:
            row = self._row(user_id, sport)
            setattr(row, field, getattr(row, field) + 1)
            row.last_updated = now
        return len(members)

    def record_match(self, winner_team_id: int, loser_team_id: Optional[int], now: datetime = None):
        self._bump(winner_team_id, 'match_wins', now)
        if loser_team_id is not None:
            self._bump(loser_team_id, 'match_losses', now)

    def grant_title(self, team_id: int, now: datetime = None) -> int:
        return self._bump(team_id, 'titles', now)

    def for_user(self, user_id: int) -> List[UserStats]:
        return UserStats.query.filter_by(user_id=user_id).order_by(UserStats.sport).all()
