import logging
import redis
from typing import Iterable, Optional
from .events import Event

logger = logging.getLogger(__name__)


class ActivityPublisher:
    """Fans persisted activities out to redis channels. Publishing never raises."""

    def __init__(self, redis_url: str = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        if client is not None:
            self.redis = client
        elif redis_url:
            self.redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        else:
            self.redis = None

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish(self, channel: str, event: Event) -> bool:
        if self.redis is None:
            return False
        try:
            self.redis.publish(channel, event.to_json())
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event.type} on {channel}: {e}")
            return False

    def publish_team_activity(self, event: Event) -> bool:
        return self.publish(f"team:{event.team_id}:activity", event)

    def publish_tournament_event(self, event: Event) -> bool:
        if event.tournament_id is None:
            return False
        return self.publish(f"tournament:{event.tournament_id}:events", event)

    def publish_all(self, events: Iterable[Event]) -> int:
        sent = 0
        for event in events:
            if self.publish_team_activity(event):
                sent += 1
            self.publish_tournament_event(event)
        return sent

    def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(self.redis.ping())
        except redis.RedisError:
            return False
