"""
Booking Service

1. Available slots for a service type on a date
2. Transactional booking creation (contact + conversation + booking)
3. Explicit booking status transitions

Side effects (confirmation, forms, calendar, webhooks) are not run here;
the caller publishes booking.created after the commit.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from errors import CareOpsError, ConflictError, NotFoundError, PersistenceError, ValidationError
from models import Booking, BookingStatus, ServiceType
from schemas import BookingRequest
from services.cache import CacheService
from services.contact_service import (
    clean, resolve_or_create_contact, resolve_or_create_conversation, validate_descriptor,
)
from services.slots import Slot, generate_slots, is_slot_free
from services.time_windows import BookedInterval, TimeWindow, day_of_week
from services.workspace_service import require_active_workspace

logger = structlog.get_logger("booking")
settings = get_settings()


def parse_date(value: Optional[str]) -> date:
    try:
        return datetime.strptime((value or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("date must be formatted YYYY-MM-DD")


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class BookingService:

    def __init__(self, db: AsyncSession, cache: CacheService):
        self.db = db
        self.cache = cache

    # =========================================================================
    # SLOTS
    # =========================================================================

    async def get_available_slots(self, workspace_id: str, service_type_id: str, target: str) -> List[Slot]:
        if not service_type_id:
            raise ValidationError("serviceTypeId is required")
        target_date = parse_date(target)

        await require_active_workspace(self.db, workspace_id)
        service = await self._service_type(workspace_id, service_type_id)
        windows = self._windows_for(service, target_date)
        if not windows:
            return []

        booked = await self._booked_intervals(service.id, target_date)
        return generate_slots(target_date, service.duration, windows, booked)

    def _windows_for(self, service: ServiceType, target_date: date) -> List[TimeWindow]:
        dow = day_of_week(target_date)
        windows = []
        for availability in service.availability:
            if availability.day_of_week != dow:
                continue
            try:
                windows.append(TimeWindow.from_strings(availability.start_time, availability.end_time))
            except ValueError as e:
                logger.warning("Skipping invalid availability window",
                               availability_id=availability.id, error=str(e))
        return windows

    async def _booked_intervals(self, service_type_id: str, target_date: date) -> List[BookedInterval]:
        day_start = datetime.combine(target_date, time.min)
        return await self._overlapping(service_type_id, day_start, day_start + timedelta(days=1))

    async def _overlapping(self, service_type_id: str, start: datetime, end: datetime,
                           exclude_id: Optional[str] = None) -> List[BookedInterval]:
        query = select(Booking.start_time, Booking.end_time).where(
            Booking.service_type_id == service_type_id,
            Booking.status != BookingStatus.CANCELLED,
            Booking.start_time < end,
            Booking.end_time > start
        )
        if exclude_id:
            query = query.where(Booking.id != exclude_id)
        result = await self.db.execute(query)
        return [BookedInterval(start=row.start_time, end=row.end_time) for row in result.all()]

    @staticmethod
    def _lock_key(service_type_id: str, start: datetime) -> str:
        return f"booking:{service_type_id}:{start.date().isoformat()}"

    async def _service_type(self, workspace_id: str, service_type_id: str) -> ServiceType:
        service = await self.db.get(ServiceType, service_type_id)
        if not service or service.workspace_id != workspace_id:
            raise NotFoundError("Service not found")
        return service

    # =========================================================================
    # BOOKING
    # =========================================================================

    async def create_booking(self, workspace_id: str, request: BookingRequest) -> Booking:
        """
        Persist a CONFIRMED booking, resolving its contact and conversation.

        Creation is serialised per (service type, day) with a Redis lock and
        the overlap is re-checked inside it, so two requests for one slot
        yield one booking and one ConflictError. Nothing is left behind when
        any step fails.
        """
        if not request.service_type_id or not request.start_time:
            raise ValidationError("serviceTypeId and dateTime are required")
        validate_descriptor(request)

        await require_active_workspace(self.db, workspace_id)
        service = await self._service_type(workspace_id, request.service_type_id)

        start = to_naive_utc(request.start_time)
        end = start + timedelta(minutes=service.duration)
        async with self.cache.lock(self._lock_key(service.id, start), ttl=settings.BOOKING_LOCK_TTL_SECONDS):
            try:
                booked = await self._overlapping(service.id, start, end)
                if not is_slot_free(start, end, booked):
                    raise ConflictError("This time slot is no longer available")

                contact = await resolve_or_create_contact(self.db, workspace_id, request, source="booking")
                await resolve_or_create_conversation(self.db, workspace_id, contact.id)

                booking = Booking(
                    workspace_id=workspace_id,
                    contact_id=contact.id,
                    service_type_id=service.id,
                    start_time=start,
                    end_time=end,
                    status=BookingStatus.CONFIRMED,
                    notes=clean(request.notes),
                )
                self.db.add(booking)
                await self.db.commit()

            except CareOpsError:
                await self.db.rollback()
                raise
            except IntegrityError as e:
                await self.db.rollback()
                logger.warning("Booking constraint violation", workspace_id=workspace_id, error=str(e))
                raise ConflictError("Booking conflicts with existing data") from e
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("Booking persistence failed", workspace_id=workspace_id, error=str(e))
                raise PersistenceError("Could not save booking") from e

        await self.cache.invalidate_workspace(workspace_id)

        # Reload with contact / service relationships for the response and dispatch
        await self.db.refresh(booking, attribute_names=["contact", "service_type", "workspace"])

        logger.info("Booking created",
                    workspace_id=workspace_id,
                    booking_id=booking.id,
                    service_type_id=service.id,
                    start=start.isoformat())
        return booking

    async def update_status(self, workspace_id: str, booking_id: str, status: str) -> Booking:
        status = (status or "").upper()
        if status not in BookingStatus.ALL:
            raise ValidationError(f"Invalid status. Use one of: {', '.join(BookingStatus.ALL)}")

        booking = await self.db.get(Booking, booking_id)
        if not booking or booking.workspace_id != workspace_id:
            raise NotFoundError("Booking not found")

        previous = booking.status
        if status == BookingStatus.CONFIRMED and previous != BookingStatus.CONFIRMED:
            # Re-confirming takes the slot again, same rules as a new booking
            async with self.cache.lock(self._lock_key(booking.service_type_id, booking.start_time),
                                       ttl=settings.BOOKING_LOCK_TTL_SECONDS):
                booked = await self._overlapping(booking.service_type_id, booking.start_time,
                                                 booking.end_time, exclude_id=booking.id)
                if not is_slot_free(booking.start_time, booking.end_time, booked):
                    raise ConflictError("This time slot is no longer available")
                await self._commit_status(booking, status)
        else:
            await self._commit_status(booking, status)

        await self.cache.invalidate_workspace(workspace_id)
        logger.info("Booking status changed", booking_id=booking_id, old=previous, new=status)
        return booking

    async def _commit_status(self, booking: Booking, status: str):
        booking.status = status
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError("Could not update booking") from e
