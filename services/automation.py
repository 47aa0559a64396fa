"""
Automation Dispatcher

Named event handlers that run the side effects of a committed state change:
1. contact.created  - welcome message, team email, alert, webhook
2. booking.created  - confirmation, team email, intake forms, alert,
                      calendar sync, webhook
3. staff.replied    - pause automated messages for the conversation
4. inventory.low    - alert, team email, webhook

Every side effect is an isolated step: a failed step is recorded and the
remaining steps still run. One AutomationLog row records the overall
outcome of each handler. Steps commit their own writes before the next
gateway call.

Infrastructure errors while loading a handler's context propagate, so the
worker can dead-letter and retry the event; nothing has happened yet at that
point. Side-effect failures never propagate.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from errors import ExternalDeliveryFailure, PersistenceError
from models import (
    Alert, AlertType, Booking, Contact, Conversation, FormStatus, FormSubmission,
    FormTemplate, InventoryItem, LogStatus, Message, MessageChannel,
    MessageDirection, User, Workspace, utcnow,
)
from schemas import DeliveryResult
from services import automation_log, message_templates
from services.contact_service import resolve_or_create_conversation
from services.inventory_service import raise_low_stock_alert

logger = structlog.get_logger("automation")


@dataclass
class StepFailure:
    step: str
    error: str
    optional: bool = False


@dataclass
class HandlerRun:
    """Collects step outcomes for one handler invocation."""
    event: str
    workspace_id: str
    failures: List[StepFailure] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)

    async def step(self, name: str, action: Callable[[], Awaitable[Any]], optional: bool = False):
        try:
            await action()
            self.completed.append(name)
        except Exception as e:
            self.failures.append(StepFailure(name, str(e), optional))
            log = logger.warning if optional or isinstance(e, ExternalDeliveryFailure) else logger.error
            log("Automation step failed",
                event_name=self.event, workspace_id=self.workspace_id, step=name, error=str(e))

    @property
    def failed(self) -> bool:
        return any(not f.optional for f in self.failures)

    def details(self) -> str:
        if not self.failures:
            return f"completed: {', '.join(self.completed)}"
        return "; ".join(
            f"{f.step}{' (optional)' if f.optional else ''}: {f.error}" for f in self.failures
        )


def _ensure_delivered(channel: str, result: DeliveryResult):
    if not result.success:
        raise ExternalDeliveryFailure(channel, result.error or "delivery failed")


class AutomationDispatcher:
    """Routes automation events to their handlers."""

    def __init__(self, session_factory: Any, email, whatsapp, calendar, webhooks):
        self.session_factory = session_factory
        self.email = email
        self.whatsapp = whatsapp
        self.calendar = calendar
        self.webhooks = webhooks

        self.handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Optional[HandlerRun]]]] = {
            "contact.created": self.on_contact_created,
            "booking.created": self.on_booking_created,
            "staff.replied": self.on_staff_replied,
            "inventory.low": self.on_inventory_low,
        }

    async def dispatch(self, event: str, payload: Dict[str, Any]) -> Optional[HandlerRun]:
        """Run the handler for event. Returns None for unknown or no-op events."""
        handler = self.handlers.get(event)
        if not handler:
            logger.warning("No handler for event", event_name=event)
            return None

        structlog.contextvars.bind_contextvars(event_name=event, workspace_id=payload.get("workspaceId"))
        try:
            return await handler(payload)
        finally:
            structlog.contextvars.unbind_contextvars("event_name", "workspace_id")

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def on_contact_created(self, payload: Dict[str, Any]) -> Optional[HandlerRun]:
        workspace_id = payload["workspaceId"]

        async with self.session_factory() as session:
            workspace = await self._load(session, Workspace, workspace_id)
            if not workspace or not workspace.is_active:
                logger.debug("Workspace inactive, skipping contact.created")
                return None
            contact = await self._load(session, Contact, payload["contactId"])
            if not contact or contact.workspace_id != workspace_id:
                logger.warning("contact.created for unknown contact", contact_id=payload["contactId"])
                return None
            conversation = await self._conversation(session, workspace_id, contact.id)
            await session.commit()

        run = HandlerRun("contact.created", workspace_id)
        welcome = message_templates.welcome(contact.name, workspace.name)

        if not conversation.automation_paused:
            await run.step("append_welcome",
                           lambda: self._append_message(conversation.id, welcome, {"automation": "welcome"}))
            await self._deliver_to_contact(run, workspace_id, contact, f"Welcome to {workspace.name}", welcome)
        else:
            logger.info("Automation paused, welcome suppressed", conversation_id=conversation.id)

        lines = [f"Name: {contact.name}", f"Email: {contact.email or '-'}", f"Phone: {contact.phone or '-'}"]
        if payload.get("message"):
            lines.append(f"Message: {payload['message']}")

        await run.step("notify_team",
                       lambda: self._notify_team(workspace_id, f"New contact: {contact.name}", "\n".join(lines)))
        await run.step("create_alert",
                       lambda: self._create_alert(workspace_id, AlertType.NEW_CONTACT,
                                                  f"New contact: {contact.name}", f"/inbox/{conversation.id}"))
        await run.step("webhook", lambda: self.webhooks.fire(workspace_id, "contact.created", {
            "contactId": contact.id,
            "name": contact.name,
            "email": contact.email,
            "phone": contact.phone,
            "source": contact.source,
        }))

        await self._finish(run, "welcome_and_notify", contact.id)
        return run

    async def on_booking_created(self, payload: Dict[str, Any]) -> Optional[HandlerRun]:
        workspace_id = payload["workspaceId"]

        async with self.session_factory() as session:
            booking = await self._load(session, Booking, payload["bookingId"])
            if not booking or booking.workspace_id != workspace_id:
                logger.warning("booking.created for unknown booking", booking_id=payload["bookingId"])
                return None
            workspace = booking.workspace
            if not workspace.is_active:
                logger.debug("Workspace inactive, skipping booking.created")
                return None
            conversation = await self._conversation(session, workspace_id, booking.contact_id)
            await session.commit()
            templates = await self._linked_templates(session, booking.service_type_id)

        contact = booking.contact
        service = booking.service_type
        run = HandlerRun("booking.created", workspace_id)

        confirmation = message_templates.booking_confirmation(
            service.name, workspace.name, booking.start_time, service.location
        )

        # Confirmations go out regardless of automation_paused
        await run.step("append_confirmation",
                       lambda: self._append_message(conversation.id, confirmation,
                                                    {"automation": "booking_confirmation", "bookingId": booking.id}))
        await self._deliver_to_contact(run, workspace_id, contact, f"Booking confirmed: {service.name}", confirmation)

        details = "\n".join([
            f"Service: {service.name}",
            f"Customer: {contact.name}",
            f"Email: {contact.email or '-'}",
            f"Phone: {contact.phone or '-'}",
            f"When: {message_templates.format_when(booking.start_time)}",
            f"Location: {service.location or '-'}",
            f"Notes: {booking.notes or '-'}",
        ])
        await run.step("notify_team",
                       lambda: self._notify_team(workspace_id, f"New booking: {service.name} - {contact.name}", details))

        if templates:
            await run.step("assign_forms", lambda: self._assign_forms(workspace_id, booking, templates))

        await run.step("create_alert",
                       lambda: self._create_alert(
                           workspace_id, AlertType.NEW_BOOKING,
                           f"New booking: {contact.name} booked {service.name} for "
                           f"{message_templates.format_when(booking.start_time)}",
                           f"/bookings/{booking.id}"))
        await run.step("calendar_sync", lambda: self._sync_calendar(workspace_id, booking), optional=True)
        await run.step("webhook", lambda: self.webhooks.fire(workspace_id, "booking.created", {
            "bookingId": booking.id,
            "contactId": contact.id,
            "contactName": contact.name,
            "serviceTypeId": service.id,
            "service": service.name,
            "startTime": booking.start_time.isoformat(),
            "endTime": booking.end_time.isoformat(),
            "status": booking.status,
        }))

        await self._finish(run, "confirm_and_notify", contact.id)
        return run

    async def on_staff_replied(self, payload: Dict[str, Any]) -> Optional[HandlerRun]:
        workspace_id = payload["workspaceId"]
        run = HandlerRun("staff.replied", workspace_id)

        async with self.session_factory() as session:
            conversation = await self._load(session, Conversation, payload["conversationId"])
            if not conversation or conversation.workspace_id != workspace_id:
                logger.warning("staff.replied for unknown conversation",
                               conversation_id=payload["conversationId"])
                return None
            if not conversation.automation_paused:
                conversation.automation_paused = True
                await session.commit()
                logger.info("Automation paused", conversation_id=conversation.id)
            contact_id = conversation.contact_id

        run.completed.append("pause_automation")
        await self._finish(run, "pause_automation", contact_id)
        return run

    async def on_inventory_low(self, payload: Dict[str, Any]) -> Optional[HandlerRun]:
        workspace_id = payload["workspaceId"]

        async with self.session_factory() as session:
            item = await self._load(session, InventoryItem, payload["itemId"])
            if not item or item.workspace_id != workspace_id:
                logger.warning("inventory.low for unknown item", item_id=payload["itemId"])
                return None

        run = HandlerRun("inventory.low", workspace_id)
        text = message_templates.low_stock(item.name, item.quantity, item.unit, item.threshold)

        await run.step("create_alert", lambda: raise_low_stock_alert(self.session_factory, item, utcnow().date()))
        await run.step("notify_team", lambda: self._notify_team(workspace_id, f"Low stock: {item.name}", text))
        await run.step("webhook", lambda: self.webhooks.fire(workspace_id, "inventory.low", {
            "itemId": item.id,
            "name": item.name,
            "quantity": item.quantity,
            "threshold": item.threshold,
            "unit": item.unit,
        }))

        await self._finish(run, "alert_and_notify")
        return run

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _append_message(self, conversation_id: str, content: str, meta: Optional[dict] = None):
        async with self.session_factory() as session:
            session.add(Message(
                conversation_id=conversation_id,
                direction=MessageDirection.OUTBOUND,
                channel=MessageChannel.SYSTEM,
                content=content,
                meta=meta,
            ))
            await session.commit()

    async def _deliver_to_contact(self, run: HandlerRun, workspace_id: str, contact: Contact,
                                  subject: str, text: str):
        if contact.email:
            await run.step("email_contact", lambda: self._send_email(workspace_id, contact.email, subject, text))
        if contact.phone:
            await run.step("whatsapp_contact", lambda: self._send_whatsapp(workspace_id, contact.phone, text))

    async def _send_email(self, workspace_id: str, to: str, subject: str, text: str):
        _ensure_delivered("email", await self.email.send(workspace_id, to, subject, text))

    async def _send_whatsapp(self, workspace_id: str, to: str, body: str):
        _ensure_delivered("whatsapp", await self.whatsapp.send(workspace_id, to, body))

    async def _notify_team(self, workspace_id: str, subject: str, text: str):
        """Email every owner and staff member; failures are collected, not short-circuited."""
        async with self.session_factory() as session:
            result = await session.execute(select(User.email).where(User.workspace_id == workspace_id))
            recipients = [row.email for row in result.all() if row.email]

        errors = []
        for email in recipients:
            result = await self.email.send(workspace_id, email, subject, text)
            if not result.success:
                errors.append(f"{email}: {result.error}")

        if errors:
            raise ExternalDeliveryFailure("email", f"team notification failed for {len(errors)} of "
                                                   f"{len(recipients)} ({'; '.join(errors)})")

    async def _create_alert(self, workspace_id: str, alert_type: str, message: str, link: Optional[str] = None):
        async with self.session_factory() as session:
            session.add(Alert(workspace_id=workspace_id, type=alert_type, message=message, link=link))
            await session.commit()

    async def _assign_forms(self, workspace_id: str, booking: Booking, templates: List[FormTemplate]):
        contact = booking.contact
        async with self.session_factory() as session:
            submissions = []
            for template in templates:
                submission = FormSubmission(
                    form_template_id=template.id,
                    booking_id=booking.id,
                    contact_id=contact.id,
                    status=FormStatus.PENDING,
                    due_date=booking.start_time,
                )
                session.add(submission)
                submissions.append((template, submission))
            await session.commit()

        logger.info("Intake forms assigned", booking_id=booking.id, count=len(submissions))

        if not contact.email:
            return

        errors = []
        for template, submission in submissions:
            result = await self.email.send(
                workspace_id,
                contact.email,
                f"Please complete: {template.name}",
                message_templates.form_request(contact.name, template.name, submission.id),
            )
            if not result.success:
                errors.append(f"{template.name}: {result.error}")

        if errors:
            raise ExternalDeliveryFailure("email", "; ".join(errors))

    async def _sync_calendar(self, workspace_id: str, booking: Booking):
        result = await self.calendar.sync_booking(workspace_id, booking)
        if not result.success:
            raise ExternalDeliveryFailure("calendar", result.error or "sync failed")

        async with self.session_factory() as session:
            stored = await session.get(Booking, booking.id)
            if stored:
                stored.calendar_event_id = result.event_id
                await session.commit()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load(self, session, model, entity_id: str):
        try:
            return await session.get(model, entity_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load {model.__name__} {entity_id}: {e}") from e

    async def _conversation(self, session, workspace_id: str, contact_id: str) -> Conversation:
        try:
            return await resolve_or_create_conversation(session, workspace_id, contact_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not resolve conversation: {e}") from e

    async def _linked_templates(self, session, service_type_id: str) -> List[FormTemplate]:
        try:
            result = await session.execute(
                select(FormTemplate).where(FormTemplate.linked_service_type_id == service_type_id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load form templates: {e}") from e

    async def _finish(self, run: HandlerRun, action: str, contact_id: Optional[str] = None):
        status = LogStatus.FAILED if run.failed else LogStatus.SUCCESS
        await automation_log.record(
            self.session_factory, run.workspace_id, run.event, action,
            contact_id=contact_id, status=status, details=run.details(),
        )
        log = logger.warning if run.failed else logger.info
        log("Automation handled",
            event_name=run.event, workspace_id=run.workspace_id, status=status,
            failed_steps=[f.step for f in run.failures])
