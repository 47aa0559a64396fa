"""
Staff endpoints. Authentication and role checks happen upstream; the
authenticated workspace arrives in the X-Workspace-Id header.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.deps import get_cache, get_dispatcher, get_gateways, get_queue, get_workspace_id
from schemas import BookingStatusUpdate, InventoryUpdate, StaffReplyRequest, WorkspaceSummary
from services.automation import AutomationDispatcher
from services.booking_service import BookingService
from services.cache import CacheService
from services.gateways import Gateways
from services.inbox_service import InboxService
from services.inventory_service import InventoryService
from services.queue import QueueService
from services.workspace_service import WorkspaceService

router = APIRouter(prefix="/api/workspace", tags=["workspace"])
logger = structlog.get_logger("workspace_api")


@router.patch("/bookings/{booking_id}/status")
async def update_booking_status(
    booking_id: str,
    body: BookingStatusUpdate,
    workspace_id: str = Depends(get_workspace_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    booking = await BookingService(db, cache).update_status(workspace_id, booking_id, body.status)
    return {"id": booking.id, "status": booking.status}


@router.post("/conversations/{conversation_id}/reply", status_code=201)
async def staff_reply(
    conversation_id: str,
    body: StaffReplyRequest,
    workspace_id: str = Depends(get_workspace_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    gateways: Gateways = Depends(get_gateways),
    dispatcher: AutomationDispatcher = Depends(get_dispatcher)
):
    inbox = InboxService(db, cache, dispatcher, gateways.email, gateways.whatsapp)
    message, delivery = await inbox.reply(workspace_id, conversation_id, body)
    return {
        "id": message.id,
        "channel": message.channel,
        "delivered": delivery.success,
        "method": delivery.method,
        "error": delivery.error,
    }


@router.patch("/inventory/{item_id}")
async def update_inventory(
    item_id: str,
    body: InventoryUpdate,
    workspace_id: str = Depends(get_workspace_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    queue: QueueService = Depends(get_queue)
):
    item = await InventoryService(db, cache).update_item(workspace_id, item_id, body)

    if item.is_low_stock:
        await queue.publish_event("inventory.low", {"workspaceId": workspace_id, "itemId": item.id})

    return {
        "id": item.id,
        "name": item.name,
        "quantity": item.quantity,
        "threshold": item.threshold,
        "unit": item.unit,
        "isLowStock": item.is_low_stock,
    }


@router.get("/summary", response_model=WorkspaceSummary)
async def summary(
    workspace_id: str = Depends(get_workspace_id),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    return await WorkspaceService(db, cache).get_summary(workspace_id)
