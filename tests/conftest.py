import fnmatch
from datetime import date, timedelta
from typing import List

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from fastapi_limiter import FastAPILimiter

from database import get_db, init_db, make_session_factory
from main import app
from models import Availability, Role, ServiceType, User, Workspace
from schemas import CalendarSyncResult, DeliveryResult
from services.automation import AutomationDispatcher
from services.cache import CacheService
from services.gateways import Gateways
from services.queue import QueueService


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.lists = {}
        self.streams = {}

    async def ping(self): return True

    async def get(self, key): return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False, **kwargs):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def setex(self, key, time, value): self.data[key] = value; return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                removed += 1
        return removed

    async def scan_iter(self, match="*", count=None):
        for key in [k for k in self.data.keys() if fnmatch.fnmatch(k, match)]:
            yield key

    async def expire(self, key, time): return True

    # List operations
    async def rpush(self, key, value):
        if key not in self.lists: self.lists[key] = []
        self.lists[key].append(value)
        return len(self.lists[key])

    async def lpop(self, key):
        if key in self.lists and self.lists[key]: return self.lists[key].pop(0)
        return None

    async def llen(self, key): return len(self.lists.get(key, []))

    async def lrange(self, key, start, end):
        lst = self.lists.get(key, [])
        if end == -1: return lst[start:]
        return lst[start:end + 1]

    # Stream operations
    async def xadd(self, stream, fields):
        if stream not in self.streams: self.streams[stream] = []
        msg_id = f"{len(self.streams[stream])}-0"
        self.streams[stream].append((msg_id, dict(fields)))
        return msg_id

    async def xreadgroup(self, groupname, consumername, streams, count=1, block=None):
        result = []
        for stream_key, start_id in streams.items():
            if stream_key in self.streams and self.streams[stream_key]:
                result.append([stream_key, self.streams[stream_key]])
                self.streams[stream_key] = []
        return result

    async def xack(self, stream, group, id): return 1
    async def xdel(self, stream, id): return 1
    async def xgroup_create(self, stream, group, id="$", mkstream=False): return True

    # Needed by the rate limiter
    async def eval(self, *args, **kwargs): return 0
    async def evalsha(self, *args, **kwargs): return 0
    async def script_load(self, script): return "dummy_sha"

    async def close(self): pass
    async def aclose(self): pass


# =============================================================================
# FAKE GATEWAYS
# =============================================================================

class FakeEmail:
    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send(self, workspace_id, to, subject, text, html=None):
        self.sent.append({"workspace_id": workspace_id, "to": to, "subject": subject, "text": text})
        if to in self.fail_for or "*" in self.fail_for:
            return DeliveryResult(success=False, error="smtp down")
        return DeliveryResult(success=True, message_id="email-1")


class FakeWhatsApp:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, workspace_id, to, body):
        self.sent.append({"workspace_id": workspace_id, "to": to, "body": body})
        if self.fail:
            return DeliveryResult(success=False, error="whatsapp down")
        return DeliveryResult(success=True, message_id="wamid.1")


class FakeCalendar:
    def __init__(self):
        self.synced = []
        self.result = CalendarSyncResult(success=False, error="Calendar not connected")

    async def sync_booking(self, workspace_id, booking):
        self.synced.append(booking.id)
        return self.result


class FakeWebhooks:
    def __init__(self):
        self.fired = []

    async def fire(self, workspace_id, event, data):
        self.fired.append({"workspace_id": workspace_id, "event": event, "data": data})
        return []


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def cache(redis_client):
    return CacheService(redis_client)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine, factory = make_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'careops.db'}")
    await init_db(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def gateways():
    return Gateways(
        email=FakeEmail(),
        whatsapp=FakeWhatsApp(),
        calendar=FakeCalendar(),
        webhooks=FakeWebhooks(),
    )


@pytest.fixture
def dispatcher(session_factory, gateways):
    return AutomationDispatcher(
        session_factory,
        email=gateways.email,
        whatsapp=gateways.whatsapp,
        calendar=gateways.calendar,
        webhooks=gateways.webhooks,
    )


def next_weekday(weekday: int, start: date = None) -> date:
    """Next date strictly after start with date.weekday() == weekday (0 = Monday)."""
    start = start or date.today()
    days = (weekday - start.weekday()) % 7 or 7
    return start + timedelta(days=days)


async def seed_workspace(factory, active: bool = True, windows: List[tuple] = None,
                         duration: int = 30, location: str = None) -> dict:
    """Workspace with an owner, one staff member and one service type."""
    windows = windows if windows is not None else [(1, "09:00", "10:00")]  # Monday

    async with factory() as session:
        workspace = Workspace(name="Sunrise Clinic", is_active=active, contact_email="hello@sunrise.test")
        session.add(workspace)
        await session.flush()

        session.add_all([
            User(workspace_id=workspace.id, email=f"owner-{workspace.id[:8]}@sunrise.test",
                 name="Olivia Owner", role=Role.OWNER),
            User(workspace_id=workspace.id, email=f"staff-{workspace.id[:8]}@sunrise.test",
                 name="Sam Staff", role=Role.STAFF),
        ])

        service = ServiceType(workspace_id=workspace.id, name="Consultation", duration=duration,
                              price=0, location=location)
        session.add(service)
        await session.flush()

        for position, (dow, start, end) in enumerate(windows):
            session.add(Availability(service_type_id=service.id, day_of_week=dow,
                                     start_time=start, end_time=end, position=position))

        await session.commit()
        return {"workspace_id": workspace.id, "service_type_id": service.id}


@pytest_asyncio.fixture
async def workspace(session_factory):
    return await seed_workspace(session_factory)


@pytest_asyncio.fixture
async def async_client(redis_client, session_factory, gateways, dispatcher):
    queue_service = QueueService(redis_client)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    await FastAPILimiter.init(redis_client)

    app.state.redis = redis_client
    app.state.queue = queue_service
    app.state.cache = CacheService(redis_client)
    app.state.gateways = gateways
    app.state.dispatcher = dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def seed(session_factory):
    async def _seed(**kwargs):
        return await seed_workspace(session_factory, **kwargs)
    return _seed


@pytest.fixture
def monday():
    return next_weekday(0)
