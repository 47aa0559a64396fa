"""
WhatsApp Gateway (Meta Cloud API)

When the Cloud API is not configured, or rejects the message, the text is
delivered as an in-app SYSTEM alert so staff still see it.
"""

import re
from typing import Any, Optional

import httpx
import structlog

from config import get_settings
from logger_config import mask_phone
from models import Alert, AlertType, LogStatus
from schemas import DeliveryResult
from services import automation_log
from services.integration_config import resolve_whatsapp_config

logger = structlog.get_logger("whatsapp_gateway")
settings = get_settings()

GRAPH_API_URL = "https://graph.facebook.com"


def format_phone(phone: Optional[str]) -> Optional[str]:
    """E.164 without '+': '+91 98765 43210' -> '919876543210'."""
    if not phone:
        return None
    digits = re.sub(r"[^0-9]", "", phone)
    return digits or None


class WhatsAppGateway:
    """Sends WhatsApp text messages for a workspace."""

    def __init__(self, session_factory: Any, http: httpx.AsyncClient):
        self.session_factory = session_factory
        self.http = http
        self.timeout = settings.GATEWAY_TIMEOUT_SECONDS

    async def send(self, workspace_id: str, to: str, body: str) -> DeliveryResult:
        formatted = format_phone(to)
        if not formatted:
            logger.warning("Invalid phone number", to=to)
            return DeliveryResult(success=False, error="Invalid phone number")

        try:
            async with self.session_factory() as session:
                config = await resolve_whatsapp_config(session, workspace_id)

            if config.configured:
                result = await self._send_cloud_api(config.phone_number_id, config.access_token, formatted, body)
                if result.success:
                    await self._log(workspace_id, "whatsapp_sent",
                                    {"to": formatted, "messageId": result.message_id})
                    return result
                logger.warning("WhatsApp API error, falling back to in-app", error=result.error)

            return await self._deliver_in_app(workspace_id, to, body)

        except Exception as e:
            logger.error("WhatsApp send error", to=mask_phone(formatted), error=str(e))
            await self._log(workspace_id, "whatsapp_failed", {"to": formatted, "error": str(e)}, LogStatus.FAILED)
            return DeliveryResult(success=False, error=str(e))

    async def _send_cloud_api(self, phone_number_id: str, token: str, to: str, body: str) -> DeliveryResult:
        response = await self.http.post(
            f"{GRAPH_API_URL}/{settings.WHATSAPP_API_VERSION}/{phone_number_id}/messages",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json"
            },
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {"body": body}
            },
            timeout=self.timeout,
        )

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            messages = data.get("messages") or [{}]
            message_id = messages[0].get("id")
            logger.info("✓ WhatsApp sent", to=mask_phone(to), message_id=message_id)
            return DeliveryResult(success=True, message_id=message_id)

        error = (data.get("error") or {}).get("message") or f"HTTP {response.status_code}"
        return DeliveryResult(success=False, error=error)

    async def _deliver_in_app(self, workspace_id: str, to: str, body: str) -> DeliveryResult:
        async with self.session_factory() as session:
            session.add(Alert(
                workspace_id=workspace_id,
                type=AlertType.SYSTEM,
                message=f"💬 WhatsApp message to {to}: {body}",
                link="/inbox",
            ))
            await session.commit()

        logger.info("💬 [IN-APP] WhatsApp delivered as alert", to=mask_phone(to))
        await self._log(workspace_id, "whatsapp_inapp_notification", {"to": to, "body": body})
        return DeliveryResult(success=True, method="in-app")

    async def _log(self, workspace_id: str, event: str, details: dict, status: str = LogStatus.SUCCESS):
        await automation_log.record(
            self.session_factory, workspace_id, event, "send_whatsapp", status=status, details=details
        )
