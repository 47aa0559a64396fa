"""
Workspace lookups and the cached workspace summary.
"""

from datetime import datetime, time, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from errors import NotFoundError
from models import (
    Alert, Booking, BookingStatus, Conversation, FormStatus, FormSubmission,
    FormTemplate, InventoryItem, Workspace, utcnow,
)
from services.cache import CacheService, workspace_key

logger = structlog.get_logger("workspace")
settings = get_settings()


async def require_active_workspace(db: AsyncSession, workspace_id: str) -> Workspace:
    """Workspace by id; NotFoundError when absent or not yet activated."""
    workspace = await db.get(Workspace, workspace_id)
    if not workspace or not workspace.is_active:
        raise NotFoundError("Workspace not found or not active")
    return workspace


def day_bounds(now: Optional[datetime] = None):
    """[midnight, next midnight) of the UTC day containing now."""
    start = datetime.combine((now or utcnow()).date(), time.min)
    return start, start + timedelta(days=1)


class WorkspaceService:

    def __init__(self, db: AsyncSession, cache: CacheService):
        self.db = db
        self.cache = cache

    async def get_summary(self, workspace_id: str) -> Dict[str, int]:
        workspace = await self.db.get(Workspace, workspace_id)
        if not workspace:
            raise NotFoundError("Workspace not found")

        return await self.cache.get_or_compute(
            workspace_key(workspace_id, "summary"),
            self._compute_summary,
            workspace_id,
            ttl=settings.DASHBOARD_CACHE_TTL
        )

    async def _compute_summary(self, workspace_id: str) -> Dict[str, int]:
        today_start, today_end = day_bounds()

        bookings_today = await self._count(
            select(func.count(Booking.id)).where(
                Booking.workspace_id == workspace_id,
                Booking.status == BookingStatus.CONFIRMED,
                Booking.start_time >= today_start,
                Booking.start_time < today_end
            )
        )
        open_conversations = await self._count(
            select(func.count(Conversation.id)).where(
                Conversation.workspace_id == workspace_id,
                Conversation.status == "open"
            )
        )
        pending_forms = await self._count_forms(workspace_id, FormStatus.PENDING)
        overdue_forms = await self._count_forms(workspace_id, FormStatus.OVERDUE)
        low_stock_items = await self._count(
            select(func.count(InventoryItem.id)).where(
                InventoryItem.workspace_id == workspace_id,
                InventoryItem.quantity <= InventoryItem.threshold
            )
        )
        unread_alerts = await self._count(
            select(func.count(Alert.id)).where(
                Alert.workspace_id == workspace_id,
                Alert.is_read == False
            )
        )

        logger.debug("Workspace summary computed", workspace_id=workspace_id)
        return {
            "bookings_today": bookings_today,
            "open_conversations": open_conversations,
            "pending_forms": pending_forms,
            "overdue_forms": overdue_forms,
            "low_stock_items": low_stock_items,
            "unread_alerts": unread_alerts,
        }

    async def _count_forms(self, workspace_id: str, status: str) -> int:
        return await self._count(
            select(func.count(FormSubmission.id))
            .join(FormTemplate, FormSubmission.form_template_id == FormTemplate.id)
            .where(FormTemplate.workspace_id == workspace_id, FormSubmission.status == status)
        )

    async def _count(self, stmt) -> int:
        result = await self.db.execute(stmt)
        return int(result.scalar() or 0)
