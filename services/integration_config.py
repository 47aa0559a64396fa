"""
Integration config resolution.

Workspace Integration.config > environment settings > hardcoded fallback,
returned as one typed structure per integration type.
"""

from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings, is_configured
from models import Integration, IntegrationType, Workspace
from schemas import EmailConfig, WhatsAppConfig, WebhookConfig, CalendarConfig

logger = structlog.get_logger("integration_config")
settings = get_settings()


async def _active_integration(db: AsyncSession, workspace_id: str, kind: str) -> Optional[Integration]:
    stmt = select(Integration).where(
        Integration.workspace_id == workspace_id,
        Integration.type == kind,
        Integration.is_active == True
    )
    result = await db.execute(stmt)
    return result.scalars().first()


def _pick(*values) -> str:
    for value in values:
        if is_configured(value):
            return value
    return ""


async def resolve_email_config(db: AsyncSession, workspace_id: str) -> EmailConfig:
    try:
        integration = await _active_integration(db, workspace_id, IntegrationType.EMAIL)
        workspace = await db.get(Workspace, workspace_id)
    except Exception as e:
        logger.warning("Email config lookup failed, using environment", error=str(e))
        integration, workspace = None, None

    cfg = (integration.config if integration else None) or {}
    return EmailConfig(
        api_key=_pick(cfg.get("apiKey"), settings.BREVO_API_KEY),
        sender_name=_pick(cfg.get("senderName"), settings.BREVO_SENDER_NAME,
                          workspace.name if workspace else None) or "CareOps",
        sender_email=_pick(cfg.get("senderEmail"), settings.BREVO_SENDER_EMAIL,
                           workspace.contact_email if workspace else None) or "noreply@careops.com",
    )


async def resolve_whatsapp_config(db: AsyncSession, workspace_id: str) -> WhatsAppConfig:
    try:
        integration = await _active_integration(db, workspace_id, IntegrationType.WHATSAPP)
    except Exception as e:
        logger.warning("WhatsApp config lookup failed, using environment", error=str(e))
        integration = None

    cfg = (integration.config if integration else None) or {}
    return WhatsAppConfig(
        phone_number_id=_pick(cfg.get("phoneNumberId"), settings.WHATSAPP_PHONE_NUMBER_ID),
        access_token=_pick(cfg.get("accessToken"), settings.WHATSAPP_ACCESS_TOKEN),
    )


async def resolve_webhook_configs(db: AsyncSession, workspace_id: str) -> List[WebhookConfig]:
    stmt = select(Integration).where(
        Integration.workspace_id == workspace_id,
        Integration.type == IntegrationType.WEBHOOK,
        Integration.is_active == True
    )
    result = await db.execute(stmt)
    configs = []
    for integration in result.scalars().all():
        cfg = integration.config or {}
        configs.append(WebhookConfig(
            integration_id=integration.id,
            url=cfg.get("url") or None,
            secret=cfg.get("secret") or None,
        ))
    return configs


def resolve_calendar_config() -> CalendarConfig:
    # OAuth client credentials are deployment-wide; tokens live per workspace
    return CalendarConfig(
        client_id=_pick(settings.GOOGLE_CLIENT_ID),
        client_secret=_pick(settings.GOOGLE_CLIENT_SECRET),
    )
