import asyncio
import sys
import os
import orjson
import structlog
import redis.asyncio as redis

# Root folder on the path so config / services import when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_settings
from services.queue import QUEUE_DLQ_PERMANENT, STREAM_EVENTS

logger = structlog.get_logger("replay_dlq")
settings = get_settings()


async def replay_dead_letters(dry_run: bool = False, limit: int = 100):
    """
    Move automation events from the permanent DLQ back onto the event stream.

    The retry counter is reset, so a replayed event gets the full automatic
    retry budget again.
    """
    print(f"🔌 Connecting to Redis: {settings.REDIS_URL}")
    r = redis.from_url(settings.REDIS_URL, decode_responses=True)

    try:
        count = await r.llen(QUEUE_DLQ_PERMANENT)
        if count == 0:
            print("✅ Permanent DLQ is empty.")
            return

        print(f"⚠️ {count} events in the permanent DLQ.")

        if dry_run:
            print("👀 DRY RUN MODE: events stay where they are.")
            for raw_data in await r.lrange(QUEUE_DLQ_PERMANENT, 0, min(count, 5) - 1):
                entry = orjson.loads(raw_data)
                fields = entry.get("original_payload", {})
                print(f"   {fields.get('event', '?')}: {entry.get('error', 'Unknown error')}")
            return

        processed = 0
        while processed < limit:
            raw_data = await r.lpop(QUEUE_DLQ_PERMANENT)
            if not raw_data:
                break

            try:
                entry = orjson.loads(raw_data)
            except orjson.JSONDecodeError:
                print(f"❌ Corrupted entry dropped: {raw_data[:80]}")
                continue

            fields = dict(entry.get("original_payload", {}))
            fields["retry_count"] = "0"

            msg_id = await r.xadd(STREAM_EVENTS, fields)
            print(f"   ✅ {fields.get('event', '?')} replayed as {msg_id}")
            processed += 1

        print(f"\n🎉 Replayed {processed} events.")

    except Exception as e:
        logger.error("Replay failed", error=str(e))
    finally:
        await r.aclose()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Replay permanently dead-lettered automation events")
    parser.add_argument("--dry-run", action="store_true", help="Only print the first events")
    parser.add_argument("--limit", type=int, default=100, help="Maximum events to replay")
    args = parser.parse_args()

    asyncio.run(replay_dead_letters(dry_run=args.dry_run, limit=args.limit))
