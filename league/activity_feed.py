import logging
from typing import Iterable, List, Optional

from shared.events import ActivityType
from shared.pubsub import ActivityPublisher
from .models import db, Activity

logger = logging.getLogger(__name__)


class ActivityFeed:
    """
    Persists team activity records at most once per dedupe key.

    Records are written in the caller's transaction. Fan-out to redis happens
    separately through publish() once that transaction has committed.
    """

    def __init__(self, publisher: ActivityPublisher = None):
        self.publisher = publisher or ActivityPublisher()

    def exists(self, dedupe_key: str) -> bool:
        return Activity.query.filter_by(dedupe_key=dedupe_key).first() is not None

    def emit(
        self,
        activity_type: ActivityType,
        team_id: int,
        dedupe_key: str,
        tournament_id: int = None,
        actor_user_id: int = None,
        team_name: str = None,
        extras: dict = None
    ) -> Optional[Activity]:
        """Add an activity unless one with the same dedupe key is already stored."""
        if self.exists(dedupe_key):
            logger.debug(f"Skipping duplicate activity {dedupe_key}")
            return None

        activity = Activity(
            type=activity_type.value if isinstance(activity_type, ActivityType) else activity_type,
            team_id=team_id,
            tournament_id=tournament_id,
            actor_user_id=actor_user_id,
            team_name_snapshot=team_name,
            payload=extras or {},
            dedupe_key=dedupe_key
        )
        db.session.add(activity)
        return activity

    def publish(self, activities: Iterable[Optional[Activity]]) -> int:
        """Fan committed activities out to redis. Failures are logged by the publisher."""
        events = [a.to_event() for a in activities if a is not None]
        if not events or not self.publisher.enabled:
            return 0
        return self.publisher.publish_all(events)

    def recent_for_team(self, team_id: int, limit: int = 50) -> List[Activity]:
        return (
            Activity.query.filter_by(team_id=team_id)
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .limit(limit)
            .all()
        )
