"""
Forms Service

Public intake-form access and submission:
1. Submission by id (the link emailed after a booking)
2. Submission through a shareable template link, reusing the PENDING row a
   booking created for the same contact

Either path leaves at most one submission per (template, contact) that is
not COMPLETED: stale PENDING rows are deleted.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from errors import CareOpsError, ConflictError, NotFoundError, PersistenceError
from models import (
    Alert, AlertType, Booking, FormStatus, FormSubmission, FormTemplate, Role, User,
)
from schemas import FormSubmitRequest
from services.cache import CacheService
from services.contact_service import clean, resolve_or_create_contact
from services.workspace_service import require_active_workspace

logger = structlog.get_logger("forms")
settings = get_settings()


class FormsService:

    def __init__(self, db: AsyncSession, cache: CacheService, email=None):
        self.db = db
        self.cache = cache
        self.email = email

    async def get_submission(self, submission_id: str) -> Dict[str, Any]:
        submission = await self.db.get(FormSubmission, submission_id)
        if not submission:
            raise NotFoundError("Form not found")

        booking = None
        if submission.booking_id:
            found = await self.db.get(Booking, submission.booking_id)
            if found:
                booking = {"service": found.service_type.name, "dateTime": found.start_time}

        return {
            "id": submission.id,
            "formName": submission.form_template.name,
            "fields": submission.form_template.fields,
            "status": submission.status,
            "data": submission.data,
            "contact": {"name": submission.contact.name, "email": submission.contact.email},
            "booking": booking,
        }

    async def submit(self, submission_id: str, data: Dict[str, Any]) -> FormSubmission:
        submission = await self.db.get(FormSubmission, submission_id)
        if not submission:
            raise NotFoundError("Form not found")
        if submission.status == FormStatus.COMPLETED:
            raise ConflictError("Form already submitted")

        submission.data = data or {}
        submission.status = FormStatus.COMPLETED

        try:
            await self._drop_stale_pending(submission)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Form submission failed", submission_id=submission_id, error=str(e))
            raise PersistenceError("Could not save form submission") from e

        await self.cache.invalidate_workspace(submission.form_template.workspace_id)
        logger.info("Form submitted", submission_id=submission.id)
        return submission

    async def submit_template(self, workspace_id: str, template_id: str, request: FormSubmitRequest) -> FormSubmission:
        await require_active_workspace(self.db, workspace_id)

        template = await self.db.get(FormTemplate, template_id)
        if not template or template.workspace_id != workspace_id:
            raise NotFoundError("Form not found")

        try:
            contact = await resolve_or_create_contact(self.db, workspace_id, request, source="form")

            result = await self.db.execute(
                select(FormSubmission).where(
                    FormSubmission.form_template_id == template.id,
                    FormSubmission.contact_id == contact.id,
                    FormSubmission.status == FormStatus.PENDING
                )
            )
            submission = result.scalars().first()

            if submission:
                submission.data = request.data or {}
                submission.status = FormStatus.COMPLETED
            else:
                submission = FormSubmission(
                    form_template_id=template.id,
                    contact_id=contact.id,
                    data=request.data or {},
                    status=FormStatus.COMPLETED,
                )
                self.db.add(submission)
                await self.db.flush()

            await self._drop_stale_pending(submission)

            submitter = clean(request.name) or clean(request.email) or "Anonymous"
            self.db.add(Alert(
                workspace_id=workspace_id,
                type=AlertType.SYSTEM,
                message=f"New form submission: {template.name} from {submitter}",
                link="/forms",
            ))
            await self.db.commit()
        except CareOpsError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Template submission failed", template_id=template_id, error=str(e))
            raise PersistenceError("Could not save form submission") from e

        await self.cache.invalidate_workspace(workspace_id)
        await self._notify_owner(workspace_id, template, request, submitter)

        logger.info("Template form submitted", workspace_id=workspace_id, template_id=template.id)
        return submission

    async def _drop_stale_pending(self, submission: FormSubmission):
        await self.db.execute(
            delete(FormSubmission).where(
                FormSubmission.form_template_id == submission.form_template_id,
                FormSubmission.contact_id == submission.contact_id,
                FormSubmission.status == FormStatus.PENDING,
                FormSubmission.id != submission.id
            )
        )

    async def _notify_owner(self, workspace_id: str, template: FormTemplate,
                            request: FormSubmitRequest, submitter: str):
        if not self.email:
            return

        result = await self.db.execute(
            select(User.email).where(User.workspace_id == workspace_id, User.role == Role.OWNER)
        )
        owner_email: Optional[str] = result.scalar()
        if not owner_email:
            return

        responses = "\n".join(f"{key}: {value or 'N/A'}" for key, value in (request.data or {}).items())
        text = (
            f"New form submission received!\n\n"
            f"Form: {template.name}\n"
            f"Submitted by: {submitter}\n"
            f"Email: {clean(request.email) or 'N/A'}\n"
            f"Phone: {clean(request.phone) or 'N/A'}\n\n"
            f"{responses}\n\n"
            f"View submissions: {settings.FRONTEND_URL}/forms"
        )

        sent = await self.email.send(workspace_id, owner_email, f"Form Submitted: {template.name} by {submitter}", text)
        if not sent.success:
            logger.warning("Owner form notification failed", workspace_id=workspace_id, error=sent.error)
