"""
Queue Service

Carries automation events from the request path to the worker:
1. Event stream (API -> Worker), consumed through a consumer group
2. Dead-letter queue for events whose dispatch blew up
3. Periodic DLQ healing with a bounded retry count
"""

import time
import structlog
import orjson
import redis.asyncio as redis
from typing import Optional, Dict, Any

logger = structlog.get_logger("queue")

# Queue names
STREAM_EVENTS = "careops:automation_events"
CONSUMER_GROUP = "automation_workers"
QUEUE_DLQ_EVENTS = "careops:dlq:events"
QUEUE_DLQ_PERMANENT = "careops:dlq:permanent"

MAX_EVENT_RETRIES = 3


class QueueService:
    """
    Redis-based event transport.

    Uses:
    - Streams for events (reliable, consumer groups)
    - Lists for the dead-letter queues
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    # =========================================================================
    # PUBLISH
    # =========================================================================

    async def publish_event(self, event: str, payload: Dict[str, Any]) -> Optional[str]:
        """
        Add an automation event to the stream.

        Returns the stream entry ID, or None when Redis is unavailable. The
        caller's response must not depend on this succeeding.
        """
        entry = {
            "event": event,
            "payload": orjson.dumps(payload).decode("utf-8"),
            "published_at": str(time.time()),
            "retry_count": "0"
        }

        try:
            stream_id = await self.redis.xadd(STREAM_EVENTS, entry)
        except Exception as e:
            logger.error("Event publish failed", event_name=event, error=str(e))
            return None

        logger.debug("Event queued", stream_id=stream_id, event_name=event)
        return stream_id

    @staticmethod
    def decode_entry(fields: Dict[str, Any]) -> Dict[str, Any]:
        """Stream entry -> {"event", "payload", "retry_count"}."""
        raw = fields.get("payload") or "{}"
        return {
            "event": fields.get("event", ""),
            "payload": orjson.loads(raw),
            "retry_count": int(fields.get("retry_count", 0)),
        }

    # =========================================================================
    # DEAD LETTERS
    # =========================================================================

    async def store_dlq(self, fields: Dict[str, Any], error: str):
        """Move a failed event to the dead-letter queue."""
        dlq_entry = {
            "original_payload": fields,
            "error": str(error),
            "failed_at": str(time.time())
        }

        data = orjson.dumps(dlq_entry).decode("utf-8")
        await self.redis.rpush(QUEUE_DLQ_EVENTS, data)

        logger.warning("Event moved to DLQ",
                       event_name=fields.get("event"),
                       error=error[:100])

    async def auto_heal_dlq(self, batch: int = 10) -> int:
        """
        Attempt to recover events from the DLQ.

        - Events with < 3 retries: re-published
        - Events with >= 3 retries: moved to the permanent DLQ
        """
        processed = 0

        for _ in range(batch):
            raw_data = await self.redis.lpop(QUEUE_DLQ_EVENTS)

            if not raw_data:
                break

            try:
                entry = orjson.loads(raw_data)
                fields = entry.get("original_payload", {})

                retry_count = int(fields.get("retry_count", 0))

                if retry_count >= MAX_EVENT_RETRIES:
                    await self.redis.rpush(QUEUE_DLQ_PERMANENT, raw_data)
                    await self.redis.expire(QUEUE_DLQ_PERMANENT, 86400 * 14)
                    logger.warning("Event moved to permanent DLQ",
                                   event_name=fields.get("event"),
                                   retries=retry_count)
                else:
                    fields["retry_count"] = str(retry_count + 1)
                    await self.redis.xadd(STREAM_EVENTS, fields)
                    logger.info("DLQ event re-queued",
                                event_name=fields.get("event"),
                                attempt=retry_count + 1)

                processed += 1

            except Exception as e:
                logger.error("DLQ heal failed", error=str(e))
                await self.redis.rpush(QUEUE_DLQ_PERMANENT, raw_data)

        if processed:
            logger.info(f"DLQ heal complete: {processed} processed")

        return processed
