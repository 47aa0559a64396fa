"""
Inventory Service

Stock updates plus the one-alert-per-item-per-day LOW_INVENTORY guard shared
by the inventory.low handler and the daily sweep.
"""

from datetime import date
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError, PersistenceError, ValidationError
from models import Alert, AlertType, InventoryItem
from schemas import InventoryUpdate
from services import message_templates
from services.cache import CacheService

logger = structlog.get_logger("inventory")


def low_stock_key(item_id: str, day: date) -> str:
    return f"{AlertType.LOW_INVENTORY}:{item_id}:{day.isoformat()}"


async def raise_low_stock_alert(session_factory: Any, item: InventoryItem, day: date) -> bool:
    """
    Create today's LOW_INVENTORY alert for item.

    Returns False when one already exists. The unique dedupe_key makes a
    concurrent duplicate fail at insert time, which also counts as existing.
    """
    key = low_stock_key(item.id, day)
    async with session_factory() as session:
        existing = await session.execute(select(Alert.id).where(Alert.dedupe_key == key))
        if existing.first():
            return False

        session.add(Alert(
            workspace_id=item.workspace_id,
            type=AlertType.LOW_INVENTORY,
            message=message_templates.low_stock(item.name, item.quantity, item.unit, item.threshold),
            link=f"/inventory/{item.id}",
            dedupe_key=key,
        ))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False

    logger.info("Low stock alert created", workspace_id=item.workspace_id, item_id=item.id)
    return True


class InventoryService:

    def __init__(self, db: AsyncSession, cache: CacheService):
        self.db = db
        self.cache = cache

    async def update_item(self, workspace_id: str, item_id: str, update: InventoryUpdate) -> InventoryItem:
        """Apply the supplied fields. The caller publishes inventory.low when is_low_stock."""
        item = await self.db.get(InventoryItem, item_id)
        if not item or item.workspace_id != workspace_id:
            raise NotFoundError("Inventory item not found")

        if update.quantity is not None and update.quantity < 0:
            raise ValidationError("quantity cannot be negative")
        if update.threshold is not None and update.threshold < 0:
            raise ValidationError("threshold cannot be negative")

        for field in ("name", "quantity", "threshold", "unit"):
            value = getattr(update, field)
            if value is not None:
                setattr(item, field, value)

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Inventory update failed", item_id=item_id, error=str(e))
            raise PersistenceError("Could not update inventory item") from e

        await self.cache.invalidate_workspace(workspace_id)
        logger.info("Inventory updated", item_id=item.id, quantity=item.quantity, low=item.is_low_stock)
        return item
