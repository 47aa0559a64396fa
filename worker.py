"""
CareOps Worker

Runs everything that must stay off the request path:
1. Automation events from the Redis stream -> AutomationDispatcher
2. Dead-letter handling with bounded retries
3. The SweepScheduler (reminders, overdue forms, inventory, digest)
4. Heartbeat + Prometheus metrics
"""

import asyncio
import os
import signal
import socket
import sys
import uuid
from typing import Any, Optional

import httpx
import redis.asyncio as redis
import sentry_sdk
import structlog
from prometheus_client import Counter, Histogram, start_http_server

from config import get_settings
from database import AsyncSessionLocal
from logger_config import configure_logger
from services.gateways import build_dispatcher, build_gateways, build_sweeps
from services.queue import CONSUMER_GROUP, STREAM_EVENTS, QueueService
from services.scheduler import SweepScheduler
from services.sweeps import SweepResult

settings = get_settings()
logger = structlog.get_logger("worker")

# Metrics
EVENTS_PROCESSED = Counter("careops_automation_events_total", "Automation events", ["event", "status"])
DISPATCH_LATENCY = Histogram("careops_dispatch_seconds", "Automation dispatch time")
SWEEP_ITEMS = Counter("careops_sweep_items_total", "Sweep items", ["job", "outcome"])

MAX_CONSECUTIVE_ERRORS = 10
DLQ_HEAL_EVERY_TICKS = 300


def record_sweep(result: SweepResult):
    SWEEP_ITEMS.labels(job=result.job, outcome="processed").inc(result.processed)
    SWEEP_ITEMS.labels(job=result.job, outcome="skipped").inc(result.skipped)
    SWEEP_ITEMS.labels(job=result.job, outcome="failed").inc(result.failed)


class CareOpsWorker:

    def __init__(self, session_factory: Any = None, redis_client: Optional[redis.Redis] = None,
                 http: Optional[httpx.AsyncClient] = None):
        self.worker_id = f"w_{os.getpid()}_{str(uuid.uuid4())[:4]}"
        self.hostname = socket.gethostname()
        self.running = True

        self.session_factory = session_factory or AsyncSessionLocal
        self.redis = redis_client
        self.http = http
        self.queue = None
        self.dispatcher = None
        self.scheduler = None

        self.consecutive_errors = 0

    async def start(self):
        """Initialize and run worker."""
        logger.info("🚀 CareOps worker starting", worker_id=self.worker_id, hostname=self.hostname)

        try:
            await self._initialize_services()
            await self._run_main_loop()
        except Exception as e:
            logger.critical(f"Fatal error: {e}")
            sys.exit(1)
        finally:
            await self.shutdown()

    async def _initialize_services(self):
        # 1. Sentry
        if settings.SENTRY_DSN:
            sentry_sdk.init(dsn=settings.SENTRY_DSN, environment=settings.APP_ENV)
            logger.info("✓ Sentry initialized")

        # 2. Prometheus
        try:
            start_http_server(settings.METRICS_PORT)
            logger.info(f"✓ Prometheus metrics on :{settings.METRICS_PORT}")
        except OSError:
            logger.warning("Prometheus port already in use")

        # 3. Redis
        if self.redis is None:
            try:
                self.redis = redis.from_url(settings.REDIS_URL, decode_responses=True)
                await self.redis.ping()
                logger.info("✓ Redis connected")
            except Exception as e:
                logger.critical(f"Redis connection failed: {e}")
                raise

        # 4. HTTP client
        if self.http is None:
            self.http = httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)

        # 5. Core services
        self.queue = QueueService(self.redis)
        gateways = build_gateways(self.session_factory, self.http)
        self.dispatcher = build_dispatcher(self.session_factory, gateways)
        self.scheduler = SweepScheduler(build_sweeps(self.session_factory, gateways), on_result=record_sweep)
        logger.info("✓ Dispatcher and sweeps ready")

        # 6. Consumer group
        try:
            await self.redis.xgroup_create(STREAM_EVENTS, CONSUMER_GROUP, id="$", mkstream=True)
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

        # 7. Scheduler
        await self.scheduler.start()

        logger.info("✅ ALL SYSTEMS READY")

    async def _run_main_loop(self):
        tick = 0

        while self.running:
            # Heartbeat
            await self.redis.setex(f"worker:heartbeat:{self.worker_id}", 30, "alive")

            try:
                await self._process_events()

                if tick % DLQ_HEAL_EVERY_TICKS == 0:
                    await self.queue.auto_heal_dlq()

                self.consecutive_errors = 0
                await asyncio.sleep(0.01)
                tick += 1

            except Exception as e:
                self.consecutive_errors += 1
                logger.error("Loop error", error=str(e), count=self.consecutive_errors)

                if self.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, exiting")
                    sys.exit(1)

                await asyncio.sleep(1)

    async def _process_events(self):
        if not self.running:
            return

        streams = await self.redis.xreadgroup(
            groupname=CONSUMER_GROUP,
            consumername=self.worker_id,
            streams={STREAM_EVENTS: ">"},
            count=10,
            block=1000
        )

        if not streams:
            return

        for _, messages in streams:
            for msg_id, fields in messages:
                await self.handle_event(msg_id, fields)

    async def handle_event(self, msg_id: str, fields: dict):
        """Dispatch one stream entry. Failures go to the DLQ; the entry is always acked."""
        event = fields.get("event", "")

        try:
            entry = QueueService.decode_entry(fields)
            logger.info("📨 Automation event", event_name=event, retry=entry["retry_count"])

            with DISPATCH_LATENCY.time():
                run = await self.dispatcher.dispatch(entry["event"], entry["payload"])

            if run is None:
                status = "skipped"
            else:
                status = "failed" if run.failed else "success"
            EVENTS_PROCESSED.labels(event=event, status=status).inc()

        except Exception as e:
            logger.error("❌ Event dispatch failed", event_name=event, error=str(e))
            EVENTS_PROCESSED.labels(event=event, status="error").inc()
            sentry_sdk.capture_exception(e)

            await self.queue.store_dlq(fields, str(e))

        finally:
            await self._ack(msg_id)

    async def _ack(self, msg_id: str):
        try:
            await self.redis.xack(STREAM_EVENTS, CONSUMER_GROUP, msg_id)
            await self.redis.xdel(STREAM_EVENTS, msg_id)
        except Exception as e:
            logger.warning("Ack failed", msg_id=msg_id, error=str(e))

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("🛑 Shutting down...")
        self.running = False

        if self.scheduler:
            await self.scheduler.stop()
        if self.http:
            await self.http.aclose()
        if self.redis:
            await self.redis.aclose()

        logger.info("👋 Shutdown complete")


async def main():
    configure_logger()
    worker = CareOpsWorker()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: setattr(worker, "running", False))

    await worker.start()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
