"""
Lifecycle events on Redis Streams for dashboards.

Publishing is optional (no REDIS_URL, no events) and never fails a pass.
"""

import json as _json
import logging
from datetime import datetime, timezone

import redis

from cluster_template_operator.config import Settings, settings as default_settings

logger = logging.getLogger("events")

STREAM_MAXLEN = 100


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventPublisher:
    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings):
        """Publisher for cfg.REDIS_URL, or None if Redis is not configured."""
        if not cfg.REDIS_URL:
            return None
        logger.info(f"Publishing lifecycle events to {cfg.REDIS_URL}")
        return cls(redis.Redis.from_url(cfg.REDIS_URL, decode_responses=True))

    @staticmethod
    def stream_key(namespace: str, instance: str) -> str:
        return f"clustertemplateinstance:events:{namespace}/{instance}"

    def publish(self, namespace: str, instance: str, event_type: str, message: str):
        event = {
            "type": event_type,
            "message": message,
            "timestamp": _now(),
            "namespace": namespace,
            "instance": instance,
        }
        try:
            self.client.xadd(self.stream_key(namespace, instance), event, maxlen=STREAM_MAXLEN)
            self.client.publish("clustertemplateinstance:events", _json.dumps(event))
        except redis.RedisError as e:
            logger.warning(f"Redis publish failed (non-fatal): {e}")

    def forget(self, namespace: str, instance: str):
        try:
            self.client.delete(self.stream_key(namespace, instance))
        except redis.RedisError as e:
            logger.warning(f"Redis cleanup failed (non-fatal): {e}")
