"""
Contact Service

Resolve-or-create for contacts and their single conversation, plus the two
public lead-capture paths (contact form and waitlist).
"""

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import CareOpsError, NotFoundError, PersistenceError, ValidationError
from logger_config import mask_phone
from models import (
    Alert, AlertType, Contact, Conversation, Message, MessageChannel,
    MessageDirection, ServiceType,
)
from schemas import ContactDescriptor, ContactFormRequest, WaitlistRequest
from services.workspace_service import require_active_workspace

logger = structlog.get_logger("contacts")


def clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def validate_descriptor(descriptor: ContactDescriptor):
    if not clean(descriptor.name):
        raise ValidationError("Name is required")
    if not clean(descriptor.email) and not clean(descriptor.phone):
        raise ValidationError("Email or phone is required")


async def resolve_or_create_contact(
    db: AsyncSession,
    workspace_id: str,
    descriptor: ContactDescriptor,
    source: str
) -> Contact:
    """
    Match by email first, then phone, inside the workspace.

    A match is refreshed with the supplied name/email/phone; otherwise a new
    contact is added (flushed, not committed).
    """
    email = clean(descriptor.email)
    phone = clean(descriptor.phone)
    name = clean(descriptor.name)

    contact = None
    if email:
        result = await db.execute(
            select(Contact).where(Contact.workspace_id == workspace_id, Contact.email == email)
        )
        contact = result.scalars().first()
    if not contact and phone:
        result = await db.execute(
            select(Contact).where(Contact.workspace_id == workspace_id, Contact.phone == phone)
        )
        contact = result.scalars().first()

    if contact:
        contact.name = name or contact.name
        contact.email = email or contact.email
        contact.phone = phone or contact.phone
        logger.debug("Contact matched", workspace_id=workspace_id, contact_id=contact.id)
    else:
        contact = Contact(workspace_id=workspace_id, name=name or "Anonymous", email=email, phone=phone, source=source)
        db.add(contact)
        logger.info("Contact created", workspace_id=workspace_id, source=source,
                    phone=mask_phone(phone) if phone else None)

    await db.flush()
    return contact


async def resolve_or_create_conversation(db: AsyncSession, workspace_id: str, contact_id: str) -> Conversation:
    result = await db.execute(
        select(Conversation).where(
            Conversation.workspace_id == workspace_id,
            Conversation.contact_id == contact_id
        )
    )
    conversation = result.scalars().first()
    if not conversation:
        conversation = Conversation(workspace_id=workspace_id, contact_id=contact_id)
        db.add(conversation)
        await db.flush()
    return conversation


class ContactService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit_contact_form(self, workspace_id: str, request: ContactFormRequest):
        """Returns (contact, conversation); the caller publishes contact.created."""
        validate_descriptor(request)
        await require_active_workspace(self.db, workspace_id)

        try:
            contact = await resolve_or_create_contact(self.db, workspace_id, request, source="contact_form")
            conversation = await resolve_or_create_conversation(self.db, workspace_id, contact.id)

            if clean(request.message):
                self.db.add(Message(
                    conversation_id=conversation.id,
                    direction=MessageDirection.INBOUND,
                    channel=MessageChannel.SYSTEM,
                    content=request.message.strip(),
                ))

            await self.db.commit()
        except CareOpsError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Contact form persistence failed", workspace_id=workspace_id, error=str(e))
            raise PersistenceError("Could not save contact") from e

        return contact, conversation

    async def join_waitlist(self, workspace_id: str, request: WaitlistRequest) -> Contact:
        validate_descriptor(request)
        if not request.service_type_id:
            raise ValidationError("serviceTypeId is required")

        await require_active_workspace(self.db, workspace_id)
        service = await self.db.get(ServiceType, request.service_type_id)
        if not service or service.workspace_id != workspace_id:
            raise NotFoundError("Service not found")

        try:
            contact = await resolve_or_create_contact(self.db, workspace_id, request, source="waitlist")
            conversation = await resolve_or_create_conversation(self.db, workspace_id, contact.id)

            preferred = f" on {request.date}" if request.date else ""
            self.db.add(Message(
                conversation_id=conversation.id,
                direction=MessageDirection.INBOUND,
                channel=MessageChannel.SYSTEM,
                content=f"Joined the waitlist for {service.name}{preferred}",
                meta={"type": "waitlist", "serviceTypeId": service.id, "date": request.date},
            ))
            self.db.add(Alert(
                workspace_id=workspace_id,
                type=AlertType.SYSTEM,
                message=f"{contact.name} joined the waitlist for {service.name}{preferred}",
                link=f"/inbox/{conversation.id}",
            ))

            await self.db.commit()
        except CareOpsError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Waitlist persistence failed", workspace_id=workspace_id, error=str(e))
            raise PersistenceError("Could not join waitlist") from e

        logger.info("Waitlist entry", workspace_id=workspace_id, service_type_id=service.id)
        return contact
