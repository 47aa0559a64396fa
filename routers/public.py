"""
Public (unauthenticated) endpoints: slots, booking, contact form, waitlist
and intake forms. Automation is published to the event stream, never run
inline.
"""

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi_limiter.depends import RateLimiter
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.deps import get_cache, get_gateways, get_queue
from schemas import (
    BookingOut, BookingRequest, ContactFormRequest, FormSubmitRequest, SlotOut,
    SlotsResponse, WaitlistRequest,
)
from services.booking_service import BookingService
from services.cache import CacheService
from services.contact_service import ContactService
from services.forms_service import FormsService
from services.gateways import Gateways
from services.queue import QueueService

router = APIRouter(prefix="/api/public", tags=["public"])
logger = structlog.get_logger("public_api")

read_limit = Depends(RateLimiter(times=60, minutes=1))
write_limit = Depends(RateLimiter(times=10, minutes=1))


# =============================================================================
# FORMS (declared first: /forms/{id} must win over /{workspace_id}/...)
# =============================================================================

@router.get("/forms/{submission_id}", dependencies=[read_limit])
async def get_form(submission_id: str, db: AsyncSession = Depends(get_db),
                   cache: CacheService = Depends(get_cache)):
    return await FormsService(db, cache).get_submission(submission_id)


@router.post("/forms/{submission_id}", dependencies=[write_limit])
async def submit_form(
    submission_id: str,
    body: FormSubmitRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    submission = await FormsService(db, cache).submit(submission_id, body.data)
    return {"message": "Form submitted successfully!", "id": submission.id, "status": submission.status}


@router.post("/{workspace_id}/form-template/{template_id}/submit", status_code=201, dependencies=[write_limit])
async def submit_form_template(
    workspace_id: str,
    template_id: str,
    body: FormSubmitRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    gateways: Gateways = Depends(get_gateways)
):
    service = FormsService(db, cache, email=gateways.email)
    submission = await service.submit_template(workspace_id, template_id, body)
    return {"message": "Form submitted successfully!", "id": submission.id}


# =============================================================================
# BOOKING
# =============================================================================

@router.get("/{workspace_id}/available-slots", dependencies=[read_limit])
async def available_slots(
    workspace_id: str,
    service_type_id: str = Query(default="", alias="serviceTypeId"),
    date: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    slots = await BookingService(db, cache).get_available_slots(workspace_id, service_type_id, date)
    response = SlotsResponse(
        slots=[SlotOut(time=s.time, start_time=s.start, end_time=s.end) for s in slots],
        message=None if slots else "No available slots on this date"
    )
    return response.model_dump(by_alias=True)


@router.post("/{workspace_id}/book", status_code=201, dependencies=[write_limit])
async def book(
    workspace_id: str,
    body: BookingRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    queue: QueueService = Depends(get_queue)
):
    booking = await BookingService(db, cache).create_booking(workspace_id, body)

    await queue.publish_event("booking.created", {"workspaceId": workspace_id, "bookingId": booking.id})

    out = BookingOut(
        id=booking.id,
        service=booking.service_type.name,
        start_time=booking.start_time,
        end_time=booking.end_time,
        location=booking.service_type.location,
    )
    return {
        "message": "Booking confirmed! You will receive a confirmation shortly.",
        "booking": out.model_dump(by_alias=True),
    }


# =============================================================================
# LEADS
# =============================================================================

@router.post("/{workspace_id}/contact", status_code=201, dependencies=[write_limit])
async def contact_form(
    workspace_id: str,
    body: ContactFormRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    queue: QueueService = Depends(get_queue)
):
    contact, _ = await ContactService(db).submit_contact_form(workspace_id, body)
    await cache.invalidate_workspace(workspace_id)

    await queue.publish_event("contact.created", {
        "workspaceId": workspace_id,
        "contactId": contact.id,
        "message": body.message,
    })

    return {"message": "Thank you for reaching out! We will get back to you shortly.", "contactId": contact.id}


@router.post("/{workspace_id}/waitlist", status_code=201, dependencies=[write_limit])
async def waitlist(
    workspace_id: str,
    body: WaitlistRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache)
):
    contact = await ContactService(db).join_waitlist(workspace_id, body)
    await cache.invalidate_workspace(workspace_id)
    return {"message": "You're on the waitlist! We'll contact you when a slot opens.", "contactId": contact.id}
