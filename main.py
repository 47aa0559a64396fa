"""
CareOps API

FastAPI application: public booking / lead endpoints and the staff API.
Automation side effects are published to Redis and executed by worker.py.
"""

from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter

from config import get_settings
from database import AsyncSessionLocal
from errors import CareOpsError
from logger_config import configure_logger
from routers import public, workspace
from services.cache import CacheService
from services.gateways import build_dispatcher, build_gateways
from services.queue import QueueService

settings = get_settings()
configure_logger()
logger = structlog.get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN, environment=settings.APP_ENV)

    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    await FastAPILimiter.init(redis_client)

    http = httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)
    gateways = build_gateways(AsyncSessionLocal, http)

    app.state.redis = redis_client
    app.state.queue = QueueService(redis_client)
    app.state.cache = CacheService(redis_client)
    app.state.gateways = gateways
    app.state.dispatcher = build_dispatcher(AsyncSessionLocal, gateways)

    logger.info("✅ API ready", env=settings.APP_ENV)
    yield

    await http.aclose()
    await redis_client.aclose()
    logger.info("👋 API stopped")


app = FastAPI(title="CareOps API", lifespan=lifespan)


@app.exception_handler(CareOpsError)
async def careops_error_handler(request: Request, exc: CareOpsError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
        sentry_sdk.capture_exception(exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(public.router)
app.include_router(workspace.router)
