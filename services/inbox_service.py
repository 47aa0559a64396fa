"""
Inbox Service

Staff replies: record the outbound message, pause automated messages for
the conversation (staff.replied), then deliver on the chosen channel.
"""

from typing import Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError, PersistenceError, ValidationError
from models import Conversation, Message, MessageChannel, MessageDirection
from schemas import DeliveryResult, StaffReplyRequest
from services.cache import CacheService

logger = structlog.get_logger("inbox")

REPLY_CHANNELS = (MessageChannel.EMAIL, MessageChannel.WHATSAPP)


class InboxService:

    def __init__(self, db: AsyncSession, cache: CacheService, dispatcher, email, whatsapp):
        self.db = db
        self.cache = cache
        self.dispatcher = dispatcher
        self.email = email
        self.whatsapp = whatsapp

    async def reply(self, workspace_id: str, conversation_id: str,
                    request: StaffReplyRequest) -> Tuple[Message, DeliveryResult]:
        content = (request.content or "").strip()
        channel = (request.channel or "").upper()
        if not content:
            raise ValidationError("Message content is required")
        if channel not in REPLY_CHANNELS:
            raise ValidationError(f"channel must be one of: {', '.join(REPLY_CHANNELS)}")

        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation or conversation.workspace_id != workspace_id:
            raise NotFoundError("Conversation not found")

        contact = conversation.contact
        recipient = contact.email if channel == MessageChannel.EMAIL else contact.phone
        if not recipient:
            raise ValidationError(f"Contact has no {'email' if channel == MessageChannel.EMAIL else 'phone'}")

        message = Message(
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND,
            channel=channel,
            content=content,
            meta={"sentBy": "staff"},
        )
        self.db.add(message)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Could not save reply") from e

        await self.dispatcher.dispatch("staff.replied", {
            "workspaceId": workspace_id,
            "conversationId": conversation.id,
        })

        if channel == MessageChannel.EMAIL:
            result = await self.email.send(workspace_id, recipient, "New message", content)
        else:
            result = await self.whatsapp.send(workspace_id, recipient, content)

        if not result.success:
            logger.warning("Staff reply delivery failed",
                           conversation_id=conversation.id, channel=channel, error=result.error)

        await self.cache.invalidate_workspace(workspace_id)
        return message, result
