"""
Calendar Gateway (Google Calendar REST)

Uses the workspace's stored OAuth tokens:
1. Refreshes an access token that is expired (or about to expire)
2. Inserts the booking as a calendar event
3. Returns a CalendarSyncResult, never raises

A workspace without a calendar connection gets a non-fatal failure result.
"""

from datetime import timedelta
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy import select

from config import get_settings
from models import Booking, CalendarConnection, utcnow
from schemas import CalendarSyncResult
from services.integration_config import resolve_calendar_config

logger = structlog.get_logger("calendar_gateway")
settings = get_settings()

TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"

# Refresh this long before the stored expiry
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


class CalendarGateway:
    """Syncs bookings to a workspace's connected calendar."""

    def __init__(self, session_factory: Any, http: httpx.AsyncClient):
        self.session_factory = session_factory
        self.http = http
        self.timeout = settings.GATEWAY_TIMEOUT_SECONDS

    async def sync_booking(self, workspace_id: str, booking: Booking) -> CalendarSyncResult:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CalendarConnection).where(CalendarConnection.workspace_id == workspace_id)
                )
                connection = result.scalars().first()

                if not connection or not connection.access_token:
                    return CalendarSyncResult(success=False, error="Calendar not connected")

                token = await self._valid_token(connection)
                if not token:
                    return CalendarSyncResult(success=False, error="Calendar token expired")

                # Persist a refreshed token
                await session.commit()
                calendar_id = connection.calendar_id or "primary"

            response = await self.http.post(
                f"{CALENDAR_API_URL}/calendars/{calendar_id}/events",
                headers={"Authorization": f"Bearer {token}"},
                json=build_event(booking),
                timeout=self.timeout,
            )

            if response.is_success:
                data = response.json()
                logger.info("📅 Calendar event created",
                            workspace_id=workspace_id, booking_id=booking.id, event_id=data.get("id"))
                return CalendarSyncResult(success=True, event_id=data.get("id"), html_link=data.get("htmlLink"))

            error = f"HTTP {response.status_code}"
            logger.warning("Calendar API rejected event", workspace_id=workspace_id, error=error)
            return CalendarSyncResult(success=False, error=error)

        except Exception as e:
            logger.error("Calendar sync error", workspace_id=workspace_id, error=str(e))
            return CalendarSyncResult(success=False, error=str(e))

    async def _valid_token(self, connection: CalendarConnection) -> Optional[str]:
        """Current access token, refreshed in place when expired."""
        if connection.expires_at is None or utcnow() < connection.expires_at - TOKEN_EXPIRY_MARGIN:
            return connection.access_token

        credentials = resolve_calendar_config()
        if not connection.refresh_token or not credentials.client_id:
            logger.warning("Calendar token expired and cannot be refreshed",
                           workspace_id=connection.workspace_id)
            return None

        response = await self.http.post(
            TOKEN_URL,
            data={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "refresh_token": connection.refresh_token,
                "grant_type": "refresh_token"
            },
            timeout=self.timeout,
        )

        if not response.is_success:
            logger.error("Calendar token refresh failed",
                         workspace_id=connection.workspace_id, status=response.status_code)
            return None

        data = response.json()
        expires_in = int(data.get("expires_in", 3600))
        connection.access_token = data.get("access_token")
        connection.expires_at = utcnow() + timedelta(seconds=expires_in)

        logger.info("Calendar token refreshed", workspace_id=connection.workspace_id, expires_in=expires_in)
        return connection.access_token


def build_event(booking: Booking) -> dict:
    contact = booking.contact
    service = booking.service_type

    description = [f"Booking for {contact.name}"]
    if contact.email:
        description.append(f"Email: {contact.email}")
    if contact.phone:
        description.append(f"Phone: {contact.phone}")
    if booking.notes:
        description.append(f"Notes: {booking.notes}")

    event = {
        "summary": f"{service.name} - {contact.name}",
        "description": "\n".join(description),
        "start": {"dateTime": booking.start_time.isoformat() + "Z", "timeZone": "UTC"},
        "end": {"dateTime": booking.end_time.isoformat() + "Z", "timeZone": "UTC"},
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "popup", "minutes": 30},
                {"method": "email", "minutes": 60},
            ]
        }
    }
    if service.location:
        event["location"] = service.location
    return event
