import pytest
from sqlalchemy import select

from errors import ConflictError, NotFoundError, ValidationError
from models import (
    Alert, Contact, Conversation, FormStatus, FormSubmission, FormTemplate, InventoryItem,
    Message, MessageChannel, MessageDirection, utcnow,
)
from schemas import FormSubmitRequest, InventoryUpdate, StaffReplyRequest
from services.cache import workspace_key
from services.forms_service import FormsService
from services.inbox_service import InboxService
from services.inventory_service import InventoryService
from services.workspace_service import WorkspaceService


async def make_pending(session_factory, workspace, email="ada@example.com"):
    async with session_factory() as db:
        contact = Contact(workspace_id=workspace["workspace_id"], name="Ada", email=email)
        template = FormTemplate(workspace_id=workspace["workspace_id"], name="Intake",
                                fields=[{"name": "allergies", "type": "text"}])
        db.add_all([contact, template])
        await db.flush()
        submission = FormSubmission(form_template_id=template.id, contact_id=contact.id,
                                    status=FormStatus.PENDING, due_date=utcnow())
        db.add(submission)
        await db.commit()
        return template.id, submission.id


# =============================================================================
# FORMS
# =============================================================================

@pytest.mark.asyncio
async def test_submit_by_link_completes_once(session_factory, cache, workspace):
    _, submission_id = await make_pending(session_factory, workspace)

    async with session_factory() as db:
        view = await FormsService(db, cache).get_submission(submission_id)
        assert view["formName"] == "Intake"
        assert view["status"] == FormStatus.PENDING
        assert view["contact"]["name"] == "Ada"

        submission = await FormsService(db, cache).submit(submission_id, {"allergies": "none"})
        assert submission.status == FormStatus.COMPLETED

        with pytest.raises(ConflictError):
            await FormsService(db, cache).submit(submission_id, {"allergies": "pollen"})

        with pytest.raises(NotFoundError):
            await FormsService(db, cache).get_submission("missing")


@pytest.mark.asyncio
async def test_overdue_form_can_still_be_submitted(session_factory, cache, workspace):
    _, submission_id = await make_pending(session_factory, workspace)
    async with session_factory() as db:
        (await db.get(FormSubmission, submission_id)).status = FormStatus.OVERDUE
        await db.commit()

    async with session_factory() as db:
        submission = await FormsService(db, cache).submit(submission_id, {"allergies": "none"})

    assert submission.status == FormStatus.COMPLETED


@pytest.mark.asyncio
async def test_template_submission_reuses_pending_row(session_factory, cache, gateways, workspace):
    template_id, submission_id = await make_pending(session_factory, workspace)
    request = FormSubmitRequest(name="Ada", email="ada@example.com", data={"allergies": "none"})

    async with session_factory() as db:
        submission = await FormsService(db, cache, email=gateways.email).submit_template(
            workspace["workspace_id"], template_id, request
        )

    assert submission.id == submission_id
    async with session_factory() as db:
        rows = (await db.execute(select(FormSubmission))).scalars().all()
        alerts = (await db.execute(select(Alert))).scalars().all()

    assert [(r.id, r.status) for r in rows] == [(submission_id, FormStatus.COMPLETED)]
    assert alerts[0].message == "New form submission: Intake from Ada"

    owner_mail = gateways.email.sent[0]
    assert owner_mail["to"].startswith("owner-")
    assert owner_mail["subject"] == "Form Submitted: Intake by Ada"
    assert "allergies: none" in owner_mail["text"]


@pytest.mark.asyncio
async def test_template_submission_from_new_visitor_creates_completed_row(session_factory, cache, workspace):
    template_id, _ = await make_pending(session_factory, workspace)
    request = FormSubmitRequest(name="Grace", phone="+15552223333", data={"allergies": "pollen"})

    async with session_factory() as db:
        submission = await FormsService(db, cache).submit_template(workspace["workspace_id"], template_id, request)

    assert submission.status == FormStatus.COMPLETED
    async with session_factory() as db:
        statuses = sorted(r.status for r in (await db.execute(select(FormSubmission))).scalars().all())
    assert statuses == [FormStatus.COMPLETED, FormStatus.PENDING]


# =============================================================================
# INVENTORY
# =============================================================================

@pytest.mark.asyncio
async def test_inventory_update_reports_low_stock(session_factory, cache, workspace):
    async with session_factory() as db:
        item = InventoryItem(workspace_id=workspace["workspace_id"], name="Gloves", quantity=40, threshold=5)
        db.add(item)
        await db.commit()

    async with session_factory() as db:
        updated = await InventoryService(db, cache).update_item(
            workspace["workspace_id"], item.id, InventoryUpdate(quantity=4)
        )
    assert updated.quantity == 4
    assert updated.is_low_stock

    async with session_factory() as db:
        with pytest.raises(ValidationError):
            await InventoryService(db, cache).update_item(
                workspace["workspace_id"], item.id, InventoryUpdate(quantity=-1)
            )
        with pytest.raises(NotFoundError):
            await InventoryService(db, cache).update_item("other-workspace", item.id, InventoryUpdate(quantity=1))


# =============================================================================
# INBOX
# =============================================================================

@pytest.mark.asyncio
async def test_staff_reply_records_message_and_pauses_automation(session_factory, cache, dispatcher, gateways,
                                                                 workspace):
    async with session_factory() as db:
        contact = Contact(workspace_id=workspace["workspace_id"], name="Ada", email="ada@example.com")
        db.add(contact)
        await db.flush()
        conversation = Conversation(workspace_id=workspace["workspace_id"], contact_id=contact.id)
        db.add(conversation)
        await db.commit()

    async with session_factory() as db:
        service = InboxService(db, cache, dispatcher, gateways.email, gateways.whatsapp)
        message, delivery = await service.reply(
            workspace["workspace_id"], conversation.id, StaffReplyRequest(content="See you Monday", channel="email")
        )
        with pytest.raises(ValidationError):
            await service.reply(workspace["workspace_id"], conversation.id,
                                StaffReplyRequest(content="hi", channel="WHATSAPP"))

    assert delivery.success
    assert gateways.email.sent[0]["to"] == "ada@example.com"

    async with session_factory() as db:
        stored = (await db.execute(select(Message))).scalars().one()
        assert stored.direction == MessageDirection.OUTBOUND
        assert stored.channel == MessageChannel.EMAIL
        assert stored.meta == {"sentBy": "staff"}
        assert (await db.get(Conversation, conversation.id)).automation_paused is True


# =============================================================================
# SUMMARY
# =============================================================================

@pytest.mark.asyncio
async def test_summary_is_cached_until_invalidated(session_factory, cache, redis_client, workspace):
    await make_pending(session_factory, workspace)

    async with session_factory() as db:
        first = await WorkspaceService(db, cache).get_summary(workspace["workspace_id"])
    assert first["pending_forms"] == 1
    assert workspace_key(workspace["workspace_id"], "summary") in redis_client.data

    async with session_factory() as db:
        db.add(InventoryItem(workspace_id=workspace["workspace_id"], name="Gloves", quantity=1, threshold=5))
        await db.commit()

    async with session_factory() as db:
        cached = await WorkspaceService(db, cache).get_summary(workspace["workspace_id"])
    assert cached["low_stock_items"] == 0

    await cache.invalidate_workspace(workspace["workspace_id"])
    async with session_factory() as db:
        fresh = await WorkspaceService(db, cache).get_summary(workspace["workspace_id"])
    assert fresh["low_stock_items"] == 1
