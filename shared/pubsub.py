import logging
from typing import Optional

import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_SIZE = 1000


class EventPublisher:
    """
    Emits tournament change events onto Redis pub/sub channels.

    Publishing is best effort: a Redis failure is logged and never
    propagates into the mutation that produced the event.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: Optional[str]) -> "EventPublisher":
        if not redis_url:
            return cls(None)
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @staticmethod
    def tournament_channel(tournament_id: str) -> str:
        return f"tournament:{tournament_id}:events"

    def publish_tournament_event(self, event: Event) -> bool:
        if self.redis is None:
            logger.debug(f"No Redis configured, dropping {event.to_dict()['type']} for {event.tournament_id}")
            return False

        payload = event.to_json()
        try:
            self.redis.publish(self.tournament_channel(event.tournament_id), payload)
            self.redis.publish(GLOBAL_CHANNEL, payload)
            self.log_event(event.tournament_id, payload)
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to publish event for {event.tournament_id}: {e}")
            return False

    def log_event(self, tournament_id: str, payload: str):
        key = f"tournament:{tournament_id}:event_log"
        self.redis.lpush(key, payload)
        self.redis.ltrim(key, 0, EVENT_LOG_SIZE - 1)

    def ping(self) -> str:
        if self.redis is None:
            return "disabled"
        try:
            self.redis.ping()
            return "connected"
        except redis.ConnectionError:
            return "disconnected"
        except redis.RedisError:
            return "error"
