import asyncio
import pytest
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from config import get_settings
from services.ai import TextGenerator
from services.automation import HandlerRun
from services.scheduler import SweepScheduler
from services.sweeps import SweepResult

settings = get_settings()


@pytest.mark.asyncio
async def test_text_generator_without_client_returns_fallback():
    generator = TextGenerator(client=None)
    generator.client = None

    assert await generator.generate("prompt", fallback="static text") == "static text"


@pytest.mark.asyncio
async def test_text_generator_error_returns_fallback():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))

    generator = TextGenerator(client=client)
    assert await generator.generate("prompt", fallback="static text") == "static text"


@pytest.mark.asyncio
async def test_text_generator_returns_model_text():
    choice = SimpleNamespace(message=SimpleNamespace(content="  Busy day ahead!  "))
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[choice]))

    generator = TextGenerator(client=client)
    assert await generator.generate("prompt", fallback="static text") == "Busy day ahead!"


def _runner():
    runner = MagicMock()
    runner.run = AsyncMock(side_effect=lambda job, now: SweepResult(job=job, processed=1))
    return runner


@pytest.mark.asyncio
async def test_first_tick_runs_interval_jobs_and_waits_for_digest_hour():
    if settings.DIGEST_HOUR == 0:
        pytest.skip("DIGEST_HOUR=0 has no earlier hour")

    runner = _runner()
    scheduler = SweepScheduler(runner)

    results = await scheduler.tick(datetime(2026, 10, 19, 0, 0))

    assert sorted(r.job for r in results) == ["inventory", "overdue_forms", "reminders"]


@pytest.mark.asyncio
async def test_interval_jobs_do_not_rerun_before_due():
    runner = _runner()
    scheduler = SweepScheduler(runner)
    now = datetime(2026, 10, 19, 0, 0)

    await scheduler.tick(now)
    runner.run.reset_mock()

    await scheduler.tick(now.replace(minute=1))
    ran = [call.args[0] for call in runner.run.call_args_list]
    assert "reminders" not in ran
    assert "inventory" not in ran


@pytest.mark.asyncio
async def test_digest_runs_once_at_configured_hour():
    runner = _runner()
    scheduler = SweepScheduler(runner)
    at_hour = datetime(2026, 10, 19, settings.DIGEST_HOUR, 0)

    results = await scheduler.tick(at_hour)
    assert "digest" in [r.job for r in results]

    results = await scheduler.tick(at_hour.replace(minute=30))
    assert "digest" not in [r.job for r in results]
    assert scheduler.next_run["digest"] == datetime(2026, 10, 20, settings.DIGEST_HOUR, 0)


@pytest.mark.asyncio
async def test_result_hook_failure_does_not_stop_other_jobs():
    runner = _runner()
    hook = MagicMock(side_effect=RuntimeError("metrics down"))
    scheduler = SweepScheduler(runner, on_result=hook)

    results = await scheduler.tick(datetime(2026, 10, 19, 23, 0))

    assert len(results) == 4
    assert hook.call_count == 4


@pytest.mark.asyncio
async def test_scheduler_start_and_stop():
    runner = _runner()
    scheduler = SweepScheduler(runner, tick_seconds=0.01)

    await scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert not scheduler.running
    assert runner.run.await_count >= 3


@pytest.mark.asyncio
async def test_handler_run_optional_failures_do_not_fail_the_handler():
    run = HandlerRun("booking.created", "ws")

    async def ok():
        return None

    async def boom():
        raise RuntimeError("calendar down")

    await run.step("append", ok)
    await run.step("calendar_sync", boom, optional=True)
    assert not run.failed
    assert "calendar_sync (optional): calendar down" in run.details()

    await run.step("notify_team", boom)
    assert run.failed
    assert run.completed == ["append"]
