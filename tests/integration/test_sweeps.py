import pytest
from datetime import datetime, time, timedelta
from sqlalchemy import select
from unittest.mock import AsyncMock

from models import (
    Alert, AlertType, AutomationLog, Contact, Conversation, FormStatus, FormSubmission,
    FormTemplate, InventoryItem, Message, Workspace, utcnow,
)
from schemas import BookingRequest
from services.ai import TextGenerator
from services.booking_service import BookingService
from services.sweeps import SweepRunner


@pytest.fixture
def sweeps(session_factory, gateways):
    text = TextGenerator()
    text.client = None
    return SweepRunner(session_factory, email=gateways.email, whatsapp=gateways.whatsapp, text=text)


async def book_at(session_factory, cache, workspace, start, email="ada@example.com", phone="+15550001111"):
    async with session_factory() as db:
        return await BookingService(db, cache).create_booking(
            workspace["workspace_id"],
            BookingRequest(service_type_id=workspace["service_type_id"], start_time=start,
                           name="Ada Lovelace", email=email, phone=phone),
        )


async def rows(session_factory, stmt):
    async with session_factory() as db:
        return (await db.execute(stmt)).scalars().all()


# =============================================================================
# REMINDERS
# =============================================================================

@pytest.mark.asyncio
async def test_reminder_is_sent_once_per_day(session_factory, cache, sweeps, gateways, workspace):
    now = utcnow()
    booking = await book_at(session_factory, cache, workspace, now + timedelta(hours=3))

    first = await sweeps.send_reminders(now)
    second = await sweeps.send_reminders(now + timedelta(minutes=15))

    assert (first.processed, second.processed, second.skipped) == (1, 0, 1)
    reminders = [m for m in gateways.email.sent if m["subject"] == "Reminder: Consultation appointment"]
    assert len(reminders) == 1
    assert len(gateways.whatsapp.sent) == 1

    logs = await rows(session_factory, select(AutomationLog).where(AutomationLog.event == "booking.reminder"))
    assert len(logs) == 1
    assert logs[0].contact_id == booking.contact_id

    messages = await rows(session_factory, select(Message))
    assert [m.meta["automation"] for m in messages] == ["booking_reminder"]


@pytest.mark.asyncio
async def test_reminder_skips_paused_conversations_and_far_bookings(session_factory, cache, sweeps, gateways,
                                                                     workspace):
    now = utcnow()
    await book_at(session_factory, cache, workspace, now + timedelta(hours=30))
    await book_at(session_factory, cache, workspace, now + timedelta(hours=2),
                  email="grace@example.com", phone=None)

    async with session_factory() as db:
        grace = (await db.execute(select(Contact).where(Contact.email == "grace@example.com"))).scalars().one()
        conversation = (await db.execute(
            select(Conversation).where(Conversation.contact_id == grace.id)
        )).scalars().one()
        conversation.automation_paused = True
        await db.commit()

    result = await sweeps.send_reminders(now)

    assert (result.processed, result.skipped) == (0, 1)
    assert gateways.email.sent == []


# =============================================================================
# OVERDUE FORMS
# =============================================================================

async def pending_form(session_factory, workspace, due: datetime):
    async with session_factory() as db:
        contact = Contact(workspace_id=workspace["workspace_id"], name="Ada", email="ada@example.com")
        template = FormTemplate(workspace_id=workspace["workspace_id"], name="Intake")
        db.add_all([contact, template])
        await db.flush()
        submission = FormSubmission(form_template_id=template.id, contact_id=contact.id,
                                    status=FormStatus.PENDING, due_date=due)
        db.add(submission)
        await db.commit()
        return submission.id


@pytest.mark.asyncio
async def test_overdue_form_transitions_once(session_factory, sweeps, gateways, workspace):
    now = utcnow()
    submission_id = await pending_form(session_factory, workspace, now - timedelta(hours=1))

    first = await sweeps.mark_overdue_forms(now)
    second = await sweeps.mark_overdue_forms(now)

    assert first.processed == 1
    assert second.processed == 0

    async with session_factory() as db:
        assert (await db.get(FormSubmission, submission_id)).status == FormStatus.OVERDUE

    alerts = await rows(session_factory, select(Alert).where(Alert.type == AlertType.OVERDUE_FORM))
    assert len(alerts) == 1
    assert alerts[0].message == 'Form "Intake" is overdue for Ada'
    assert alerts[0].link == f"/forms/submissions/{submission_id}"
    assert [m["subject"] for m in gateways.email.sent] == ["Overdue: Please complete Intake"]


@pytest.mark.asyncio
async def test_form_not_yet_due_is_left_pending(session_factory, sweeps, workspace):
    now = utcnow()
    submission_id = await pending_form(session_factory, workspace, now + timedelta(hours=1))

    result = await sweeps.mark_overdue_forms(now)

    assert result.processed == 0
    async with session_factory() as db:
        assert (await db.get(FormSubmission, submission_id)).status == FormStatus.PENDING


# =============================================================================
# LOW INVENTORY
# =============================================================================

@pytest.mark.asyncio
async def test_low_inventory_alerts_once_per_item_per_day(session_factory, sweeps, workspace):
    async with session_factory() as db:
        db.add_all([
            InventoryItem(workspace_id=workspace["workspace_id"], name="Gloves", quantity=3, threshold=5),
            InventoryItem(workspace_id=workspace["workspace_id"], name="Masks", quantity=50, threshold=5),
        ])
        await db.commit()

    now = utcnow()
    first = await sweeps.check_low_inventory(now)
    second = await sweeps.check_low_inventory(now)
    next_day = await sweeps.check_low_inventory(now + timedelta(days=1))

    assert (first.processed, second.processed, second.skipped) == (1, 0, 1)
    assert next_day.processed == 1

    alerts = await rows(session_factory, select(Alert).where(Alert.type == AlertType.LOW_INVENTORY))
    assert len(alerts) == 2
    assert alerts[0].message == "Low stock: Gloves has 3 units (threshold: 5)"


# =============================================================================
# DAILY DIGEST
# =============================================================================

@pytest.mark.asyncio
async def test_daily_digest_is_sent_once(session_factory, cache, sweeps, gateways, workspace):
    now = utcnow()
    await book_at(session_factory, cache, workspace, datetime.combine(now.date(), time(0, 0)))

    first = await sweeps.send_daily_digest(now)
    second = await sweeps.send_daily_digest(now)

    assert (first.processed, second.skipped) == (1, 1)

    digests = [m for m in gateways.email.sent if m["subject"] == "Today's schedule: 1 booking"]
    assert len(digests) == 2  # owner and staff
    assert digests[0]["text"].startswith("You have 1 booking today at Sunrise Clinic.")
    assert "12:00 AM - Consultation - Ada Lovelace" in digests[0]["text"]


@pytest.mark.asyncio
async def test_digest_uses_generated_headline(session_factory, cache, gateways, workspace):
    text = TextGenerator()
    text.generate = AsyncMock(return_value="Big day ahead!")
    runner = SweepRunner(session_factory, email=gateways.email, whatsapp=gateways.whatsapp, text=text)
    now = utcnow()
    await book_at(session_factory, cache, workspace, datetime.combine(now.date(), time(0, 0)))

    await runner.send_daily_digest(now)

    assert gateways.email.sent[0]["text"].startswith("Big day ahead!")


@pytest.mark.asyncio
async def test_crashing_job_is_reported_not_raised(session_factory, sweeps):
    sweeps.jobs["inventory"] = AsyncMock(side_effect=RuntimeError("db gone"))

    result = await sweeps.run("inventory")

    assert result.as_dict() == {"job": "inventory", "processed": 0, "skipped": 0, "failed": 1}


@pytest.mark.asyncio
async def test_inactive_workspace_is_skipped_by_every_sweep(session_factory, cache, sweeps, gateways, workspace):
    ws = workspace["workspace_id"]
    now = utcnow()
    booking = await book_at(session_factory, cache, workspace, now + timedelta(hours=3))
    async with session_factory() as db:
        template = FormTemplate(workspace_id=ws, name="Intake")
        db.add(template)
        await db.flush()
        db.add_all([
            FormSubmission(form_template_id=template.id, contact_id=booking.contact_id,
                           status=FormStatus.PENDING, due_date=now - timedelta(hours=1)),
            InventoryItem(workspace_id=ws, name="Gloves", quantity=1, threshold=5),
        ])
        (await db.get(Workspace, ws)).is_active = False
        await db.commit()

    results = [
        await sweeps.send_reminders(now),
        await sweeps.mark_overdue_forms(now),
        await sweeps.check_low_inventory(now),
        await sweeps.send_daily_digest(now + timedelta(hours=3)),
    ]

    assert [(r.processed, r.skipped, r.failed) for r in results] == [(0, 0, 0)] * 4
    assert gateways.email.sent == []
    assert gateways.whatsapp.sent == []
    assert await rows(session_factory, select(Alert)) == []
    statuses = await rows(session_factory, select(FormSubmission.status))
    assert statuses == [FormStatus.PENDING]
