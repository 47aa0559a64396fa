"""
Pydantic schemas for CareOps
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both camelCase (public API) and snake_case (internal callers)."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# GATEWAY RESULTS
# =============================================================================

class DeliveryResult(BaseModel):
    """Outcome of an email / WhatsApp send. Never raised, always returned."""
    success: bool
    method: str = "api"  # "api", "demo", "in-app"
    message_id: Optional[str] = None
    error: Optional[str] = None


class CalendarSyncResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    html_link: Optional[str] = None
    error: Optional[str] = None


class WebhookAttempt(BaseModel):
    integration_id: str
    url: Optional[str] = None
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


# =============================================================================
# INTEGRATION CONFIG (one explicit structure per integration type)
# =============================================================================

class EmailConfig(BaseModel):
    api_key: str = ""
    sender_name: str = "CareOps"
    sender_email: str = "noreply@careops.com"


class WhatsAppConfig(BaseModel):
    phone_number_id: str = ""
    access_token: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)


class WebhookConfig(BaseModel):
    integration_id: str
    url: Optional[str] = None
    secret: Optional[str] = None


class CalendarConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""


# =============================================================================
# PUBLIC API PAYLOADS
# =============================================================================

class ContactDescriptor(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ContactFormRequest(ContactDescriptor):
    message: Optional[str] = None


class BookingRequest(ContactDescriptor):
    service_type_id: Optional[str] = Field(default=None, alias="serviceTypeId")
    start_time: Optional[datetime] = Field(default=None, alias="dateTime")
    notes: Optional[str] = None


class WaitlistRequest(ContactDescriptor):
    service_type_id: Optional[str] = Field(default=None, alias="serviceTypeId")
    date: Optional[str] = None


class FormSubmitRequest(ContactDescriptor):
    data: Dict[str, Any] = Field(default_factory=dict)


class SlotOut(CamelModel):
    time: str
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")


class SlotsResponse(CamelModel):
    slots: List[SlotOut]
    message: Optional[str] = None


class BookingOut(CamelModel):
    id: str
    service: str
    start_time: datetime = Field(alias="dateTime")
    end_time: datetime = Field(alias="endTime")
    location: Optional[str] = None


# =============================================================================
# WORKSPACE (staff) API PAYLOADS
# =============================================================================

class BookingStatusUpdate(BaseModel):
    status: str


class StaffReplyRequest(BaseModel):
    content: Optional[str] = None
    channel: str = "EMAIL"


class InventoryUpdate(BaseModel):
    name: Optional[str] = None
    quantity: Optional[int] = None
    threshold: Optional[int] = None
    unit: Optional[str] = None


class WorkspaceSummary(BaseModel):
    bookings_today: int = 0
    open_conversations: int = 0
    pending_forms: int = 0
    overdue_forms: int = 0
    low_stock_items: int = 0
    unread_alerts: int = 0
