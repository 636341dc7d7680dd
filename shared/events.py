from enum import Enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import json


class ActivityType(str, Enum):
    # Registration
    TEAM_REGISTERED_TOURNAMENT = "TEAM_REGISTERED_TOURNAMENT"

    # Schedule notices
    TOURNAMENT_BRACKET_AVAILABLE = "TOURNAMENT_BRACKET_AVAILABLE"
    TOURNAMENT_STARTS_SOON = "TOURNAMENT_STARTS_SOON"

    # Match results
    MATCH_RESULT_WIN = "MATCH_RESULT_WIN"
    MATCH_RESULT_LOSS = "MATCH_RESULT_LOSS"

    # Tournament outcome
    TOURNAMENT_COMPLETED = "TOURNAMENT_COMPLETED"
    TOURNAMENT_WINNER = "TOURNAMENT_WINNER"
    TOURNAMENT_CANCELLED = "TOURNAMENT_CANCELLED"


def dedupe_key(activity_type, scope_id, team_id) -> str:
    """Idempotency key for one logical notification, scoped by tournament or match."""
    value = activity_type.value if isinstance(activity_type, ActivityType) else activity_type
    return f"{value}:{scope_id}:{team_id}"


@dataclass
class Event:
    type: ActivityType
    team_id: int
    tournament_id: Optional[int] = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, ActivityType) else self.type,
            "team_id": self.team_id,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
