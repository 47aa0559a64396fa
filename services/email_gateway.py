"""
Email Gateway (Brevo transactional email)

Unconfigured workspaces run in demo mode: the email is logged, not sent,
and the result still counts as delivered.
"""

from typing import Any, Optional

import httpx
import structlog

from config import get_settings
from models import LogStatus
from schemas import DeliveryResult
from services import automation_log
from services.integration_config import resolve_email_config

logger = structlog.get_logger("email_gateway")
settings = get_settings()


class EmailGateway:
    """Sends transactional email for a workspace."""

    def __init__(self, session_factory: Any, http: httpx.AsyncClient):
        self.session_factory = session_factory
        self.http = http
        self.timeout = settings.GATEWAY_TIMEOUT_SECONDS

    async def send(
        self,
        workspace_id: str,
        to: str,
        subject: str,
        text: str,
        html: Optional[str] = None
    ) -> DeliveryResult:
        try:
            async with self.session_factory() as session:
                config = await resolve_email_config(session, workspace_id)

            if not config.api_key:
                logger.info("📧 [DEMO MODE] Email not sent", to=to, subject=subject, preview=text[:100])
                await self._log(workspace_id, "email_sent_demo", {"to": to, "subject": subject})
                return DeliveryResult(success=True, method="demo")

            response = await self.http.post(
                f"{settings.BREVO_BASE_URL}/smtp/email",
                headers={
                    "accept": "application/json",
                    "api-key": config.api_key,
                    "content-type": "application/json"
                },
                json={
                    "sender": {"name": config.sender_name, "email": config.sender_email},
                    "to": [{"email": to}],
                    "subject": subject,
                    "textContent": text,
                    "htmlContent": html or f"<p>{text}</p>"
                },
                timeout=self.timeout,
            )

            body = _json_or_empty(response)

            if response.is_success:
                message_id = body.get("messageId")
                logger.info("✓ Email sent", to=to, message_id=message_id)
                await self._log(workspace_id, "email_sent",
                                {"to": to, "subject": subject, "messageId": message_id})
                return DeliveryResult(success=True, message_id=message_id)

            error = body.get("message") or f"HTTP {response.status_code}"
            logger.error("Brevo rejected email", to=to, error=error)
            await self._log(workspace_id, "email_failed",
                            {"to": to, "subject": subject, "error": error}, LogStatus.FAILED)
            return DeliveryResult(success=False, error=error)

        except Exception as e:
            logger.error("Email send error", to=to, error=str(e))
            await self._log(workspace_id, "email_failed",
                            {"to": to, "subject": subject, "error": str(e)}, LogStatus.FAILED)
            return DeliveryResult(success=False, error=str(e))

    async def _log(self, workspace_id: str, event: str, details: dict, status: str = LogStatus.SUCCESS):
        await automation_log.record(
            self.session_factory, workspace_id, event, "send_email", status=status, details=details
        )


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
        return data if isinstance(data, dict) else {}
    except ValueError:
        return {}
