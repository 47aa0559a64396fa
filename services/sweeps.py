"""
Scheduled Sweeps

Periodic scans for time-based transitions nobody triggers directly:
1. Booking reminders      (guard: booking.reminder log for the contact in the last 24h)
2. Overdue intake forms   (guard: the PENDING -> OVERDUE transition itself)
3. Low inventory          (guard: Alert.dedupe_key per item and day)
4. Daily booking digest   (guard: booking.daily_summary log for the workspace today)

Guards are queries against the database, so repeated runs and multiple
worker instances stay idempotent. Each item is processed in isolation; one
failing item never stops the rest of its sweep. Inactive workspaces are
skipped.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update

from models import (
    Alert, AlertType, AutomationLog, Booking, BookingStatus, Conversation,
    FormStatus, FormSubmission, FormTemplate, InventoryItem, LogStatus, Message,
    MessageChannel, MessageDirection, User, Workspace, utcnow,
)
from services import automation_log, message_templates
from services.ai import TextGenerator
from services.inventory_service import raise_low_stock_alert
from services.workspace_service import day_bounds

logger = structlog.get_logger("sweeps")

REMINDER_LOOKAHEAD = timedelta(hours=24)
REMINDER_GUARD_WINDOW = timedelta(hours=24)


@dataclass
class SweepResult:
    job: str
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {"job": self.job, "processed": self.processed, "skipped": self.skipped, "failed": self.failed}


class SweepRunner:

    def __init__(self, session_factory: Any, email, whatsapp, text: Optional[TextGenerator] = None):
        self.session_factory = session_factory
        self.email = email
        self.whatsapp = whatsapp
        self.text = text or TextGenerator()

        self.jobs = {
            "reminders": self.send_reminders,
            "overdue_forms": self.mark_overdue_forms,
            "inventory": self.check_low_inventory,
            "digest": self.send_daily_digest,
        }

    async def run(self, job: str, now: Optional[datetime] = None) -> SweepResult:
        """Run one job; a crash is logged and reported as a failed result."""
        try:
            result = await self.jobs[job](now)
        except Exception as e:
            logger.exception("Sweep crashed", job=job, error=str(e))
            return SweepResult(job=job, failed=1)

        logger.info("Sweep finished", **result.as_dict())
        return result

    async def run_all(self, now: Optional[datetime] = None) -> List[SweepResult]:
        return [await self.run(job, now) for job in self.jobs]

    # =========================================================================
    # 1. REMINDERS
    # =========================================================================

    async def send_reminders(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult("reminders")

        async with self.session_factory() as session:
            rows = await session.execute(
                select(Booking).join(Workspace, Workspace.id == Booking.workspace_id).where(
                    Workspace.is_active.is_(True),
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.start_time > now,
                    Booking.start_time <= now + REMINDER_LOOKAHEAD
                ).order_by(Booking.start_time)
            )
            bookings = list(rows.scalars().all())

        for booking in bookings:
            try:
                if await self._remind(booking, now):
                    result.processed += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.failed += 1
                logger.error("Reminder failed", booking_id=booking.id, error=str(e))

        return result

    async def _remind(self, booking: Booking, now: datetime) -> bool:
        async with self.session_factory() as session:
            conversation = (await session.execute(
                select(Conversation).where(
                    Conversation.workspace_id == booking.workspace_id,
                    Conversation.contact_id == booking.contact_id
                )
            )).scalars().first()

            if conversation and conversation.automation_paused:
                return False

            already_sent = (await session.execute(
                select(AutomationLog.id).where(
                    AutomationLog.workspace_id == booking.workspace_id,
                    AutomationLog.event == "booking.reminder",
                    AutomationLog.contact_id == booking.contact_id,
                    AutomationLog.created_at >= now - REMINDER_GUARD_WINDOW
                ).limit(1)
            )).first()

            if already_sent:
                return False

        contact = booking.contact
        service = booking.service_type
        text = message_templates.booking_reminder(
            service.name, booking.workspace.name, booking.start_time, service.location
        )

        errors = []
        if contact.email:
            sent = await self.email.send(booking.workspace_id, contact.email,
                                         f"Reminder: {service.name} appointment", text)
            if not sent.success:
                errors.append(f"email: {sent.error}")
        if contact.phone:
            sent = await self.whatsapp.send(booking.workspace_id, contact.phone, text)
            if not sent.success:
                errors.append(f"whatsapp: {sent.error}")

        if conversation:
            async with self.session_factory() as session:
                session.add(Message(
                    conversation_id=conversation.id,
                    direction=MessageDirection.OUTBOUND,
                    channel=MessageChannel.SYSTEM,
                    content=text,
                    meta={"automation": "booking_reminder", "bookingId": booking.id},
                ))
                await session.commit()

        await automation_log.record(
            self.session_factory, booking.workspace_id, "booking.reminder", "send_reminder",
            contact_id=booking.contact_id,
            status=LogStatus.FAILED if errors else LogStatus.SUCCESS,
            details="; ".join(errors) if errors else {"bookingId": booking.id},
        )
        return True

    # =========================================================================
    # 2. OVERDUE FORMS
    # =========================================================================

    async def mark_overdue_forms(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult("overdue_forms")

        async with self.session_factory() as session:
            rows = await session.execute(
                select(FormSubmission)
                .join(FormTemplate, FormTemplate.id == FormSubmission.form_template_id)
                .join(Workspace, Workspace.id == FormTemplate.workspace_id)
                .where(
                    Workspace.is_active.is_(True),
                    FormSubmission.status == FormStatus.PENDING,
                    FormSubmission.due_date < now
                )
            )
            submissions = list(rows.scalars().all())

        for submission in submissions:
            try:
                if await self._mark_overdue(submission):
                    result.processed += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.failed += 1
                logger.error("Overdue form handling failed", submission_id=submission.id, error=str(e))

        return result

    async def _mark_overdue(self, submission: FormSubmission) -> bool:
        # Conditional update: only one run (or instance) wins the transition
        async with self.session_factory() as session:
            changed = await session.execute(
                update(FormSubmission)
                .where(FormSubmission.id == submission.id, FormSubmission.status == FormStatus.PENDING)
                .values(status=FormStatus.OVERDUE, updated_at=utcnow())
            )
            await session.commit()

        if changed.rowcount != 1:
            return False

        template = submission.form_template
        contact = submission.contact
        workspace_id = template.workspace_id

        async with self.session_factory() as session:
            session.add(Alert(
                workspace_id=workspace_id,
                type=AlertType.OVERDUE_FORM,
                message=f"Form \"{template.name}\" is overdue for {contact.name}",
                link=f"/forms/submissions/{submission.id}",
            ))
            await session.commit()

        status, details = LogStatus.SUCCESS, {"submissionId": submission.id}
        if contact.email:
            sent = await self.email.send(
                workspace_id,
                contact.email,
                f"Overdue: Please complete {template.name}",
                message_templates.form_overdue(contact.name, template.name, submission.id),
            )
            if not sent.success:
                status, details = LogStatus.FAILED, f"email: {sent.error}"

        await automation_log.record(
            self.session_factory, workspace_id, "form.overdue", "mark_overdue",
            contact_id=contact.id, status=status, details=details,
        )
        logger.info("Form marked overdue", submission_id=submission.id, workspace_id=workspace_id)
        return True

    # =========================================================================
    # 3. LOW INVENTORY
    # =========================================================================

    async def check_low_inventory(self, now: Optional[datetime] = None) -> SweepResult:
        today = (now or utcnow()).date()
        result = SweepResult("inventory")

        async with self.session_factory() as session:
            rows = await session.execute(
                select(InventoryItem).join(Workspace, Workspace.id == InventoryItem.workspace_id).where(
                    Workspace.is_active.is_(True),
                    InventoryItem.quantity <= InventoryItem.threshold
                )
            )
            items = list(rows.scalars().all())

        for item in items:
            try:
                if await raise_low_stock_alert(self.session_factory, item, today):
                    result.processed += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.failed += 1
                logger.error("Low stock alert failed", item_id=item.id, error=str(e))

        return result

    # =========================================================================
    # 4. DAILY DIGEST
    # =========================================================================

    async def send_daily_digest(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        day_start, day_end = day_bounds(now)
        result = SweepResult("digest")

        async with self.session_factory() as session:
            rows = await session.execute(
                select(Booking).join(Workspace, Workspace.id == Booking.workspace_id).where(
                    Workspace.is_active.is_(True),
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.start_time >= day_start,
                    Booking.start_time < day_end
                ).order_by(Booking.start_time)
            )
            by_workspace: Dict[str, List[Booking]] = defaultdict(list)
            for booking in rows.scalars().all():
                by_workspace[booking.workspace_id].append(booking)

        for workspace_id, bookings in by_workspace.items():
            try:
                if await self._digest(workspace_id, bookings, day_start):
                    result.processed += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.failed += 1
                logger.error("Daily digest failed", workspace_id=workspace_id, error=str(e))

        return result

    async def _digest(self, workspace_id: str, bookings: List[Booking], day_start: datetime) -> bool:
        async with self.session_factory() as session:
            already_sent = (await session.execute(
                select(AutomationLog.id).where(
                    AutomationLog.workspace_id == workspace_id,
                    AutomationLog.event == "booking.daily_summary",
                    AutomationLog.created_at >= day_start
                ).limit(1)
            )).first()
            if already_sent:
                return False

            users = await session.execute(select(User.email).where(User.workspace_id == workspace_id))
            recipients = [row.email for row in users.all() if row.email]

        workspace_name = bookings[0].workspace.name
        count = len(bookings)
        plural = "booking" if count == 1 else "bookings"

        lines = [
            f"{b.start_time.strftime('%I:%M %p')} - {b.service_type.name} - {b.contact.name}"
            for b in bookings
        ]
        headline = await self.text.generate(
            prompt=(
                f"Write one short, friendly sentence opening a daily schedule email for {workspace_name}. "
                f"There are {count} {plural} today."
            ),
            fallback=f"You have {count} {plural} today at {workspace_name}."
        )
        body = headline + "\n\n" + "\n".join(lines)
        subject = f"Today's schedule: {count} {plural}"

        errors = []
        for email in recipients:
            sent = await self.email.send(workspace_id, email, subject, body)
            if not sent.success:
                errors.append(f"{email}: {sent.error}")

        await automation_log.record(
            self.session_factory, workspace_id, "booking.daily_summary", "send_digest",
            status=LogStatus.FAILED if errors else LogStatus.SUCCESS,
            details="; ".join(errors) if errors else {"bookings": count, "recipients": len(recipients)},
        )
        return True
