"""
Outbound Webhooks

Fans an event out to every active WEBHOOK integration of a workspace.
Each receiver is its own failure domain: deliveries run concurrently and a
failing receiver never cancels the others.
"""

import asyncio
import hashlib
import hmac
from typing import Any, Dict, List, Optional

import httpx
import orjson
import structlog

from config import get_settings
from models import AutomationLog, LogStatus, utcnow
from schemas import WebhookAttempt, WebhookConfig
from services.integration_config import resolve_webhook_configs

logger = structlog.get_logger("webhooks")
settings = get_settings()

SIGNATURE_HEADER = "X-CareOps-Signature"
EVENT_HEADER = "X-CareOps-Event"


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_envelope(event: str, workspace_id: str, data: Dict[str, Any]) -> bytes:
    return orjson.dumps({
        "event": event,
        "timestamp": utcnow().isoformat() + "Z",
        "workspaceId": workspace_id,
        "data": data,
    }, default=str)


class WebhookService:

    def __init__(self, session_factory: Any, http: httpx.AsyncClient):
        self.session_factory = session_factory
        self.http = http
        self.timeout = settings.WEBHOOK_TIMEOUT_SECONDS

    async def fire(self, workspace_id: str, event: str, data: Dict[str, Any]) -> List[WebhookAttempt]:
        """Deliver to all receivers, log every attempt, return the attempts."""
        async with self.session_factory() as session:
            configs = await resolve_webhook_configs(session, workspace_id)

        if not configs:
            return []

        body = build_envelope(event, workspace_id, data)
        results = await asyncio.gather(
            *(self._deliver(config, event, body) for config in configs),
            return_exceptions=True
        )

        attempts = []
        for config, result in zip(configs, results):
            if isinstance(result, BaseException):
                result = WebhookAttempt(
                    integration_id=config.integration_id, url=config.url, success=False, error=str(result)
                )
            attempts.append(result)

        await self._log_attempts(workspace_id, event, attempts)
        return attempts

    async def _deliver(self, config: WebhookConfig, event: str, body: bytes) -> WebhookAttempt:
        if not config.url:
            return WebhookAttempt(integration_id=config.integration_id, success=False, error="No URL configured")

        headers = {"Content-Type": "application/json", EVENT_HEADER: event}
        if config.secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, config.secret)

        try:
            response = await self.http.post(config.url, content=body, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning("Webhook timed out", url=config.url, event_name=event)
            return WebhookAttempt(integration_id=config.integration_id, url=config.url,
                                  success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.warning("Webhook transport error", url=config.url, event_name=event, error=str(e))
            return WebhookAttempt(integration_id=config.integration_id, url=config.url,
                                  success=False, error=str(e))

        success = response.is_success
        if not success:
            logger.warning("Webhook receiver returned error", url=config.url, status=response.status_code)

        return WebhookAttempt(
            integration_id=config.integration_id,
            url=config.url,
            success=success,
            status_code=response.status_code,
            error=None if success else f"HTTP {response.status_code}",
        )

    async def _log_attempts(self, workspace_id: str, event: str, attempts: List[WebhookAttempt]):
        try:
            async with self.session_factory() as session:
                for attempt in attempts:
                    session.add(AutomationLog(
                        workspace_id=workspace_id,
                        event=f"webhook.{event}",
                        action="send_webhook",
                        status=LogStatus.SUCCESS if attempt.success else LogStatus.FAILED,
                        details=_attempt_details(attempt),
                    ))
                await session.commit()
        except Exception as e:
            logger.error("Failed to log webhook attempts", workspace_id=workspace_id, error=str(e))


def _attempt_details(attempt: WebhookAttempt) -> Optional[str]:
    return orjson.dumps(attempt.model_dump(exclude_none=True)).decode("utf-8")
