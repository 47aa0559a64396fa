"""
Database Models

Every tenant-owned row carries workspace_id (directly, or through its parent
for Availability, Message and FormSubmission). Timestamps are naive UTC.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, Integer, Float, ForeignKey, JSON,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC 'now', matching how every timestamp column is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMERATIONS (stored as plain strings)
# =============================================================================

class Role:
    OWNER = "OWNER"
    STAFF = "STAFF"


class MessageDirection:
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class MessageChannel:
    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"
    SYSTEM = "SYSTEM"

    ALL = (EMAIL, WHATSAPP, SYSTEM)


class BookingStatus:
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"

    ALL = (CONFIRMED, COMPLETED, NO_SHOW, CANCELLED)


class FormStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"


class IntegrationType:
    EMAIL = "EMAIL"
    CALENDAR = "CALENDAR"
    WEBHOOK = "WEBHOOK"
    FILE_STORAGE = "FILE_STORAGE"
    WHATSAPP = "WHATSAPP"


class AlertType:
    MISSED_MESSAGE = "MISSED_MESSAGE"
    UNCONFIRMED_BOOKING = "UNCONFIRMED_BOOKING"
    OVERDUE_FORM = "OVERDUE_FORM"
    LOW_INVENTORY = "LOW_INVENTORY"
    NEW_CONTACT = "NEW_CONTACT"
    NEW_BOOKING = "NEW_BOOKING"
    SYSTEM = "SYSTEM"


class LogStatus:
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# TENANT
# =============================================================================

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    contact_email = Column(String(320), nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    onboarding_step = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Workspace {self.name} active={self.is_active}>"


class User(Base):
    """Team member (owner or staff). Authentication lives outside this service."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), index=True, nullable=True)
    email = Column(String(320), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    role = Column(String(10), nullable=False, default=Role.STAFF)
    created_at = Column(DateTime, default=utcnow)


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), index=True, nullable=False)
    type = Column(String(20), nullable=False)
    provider = Column(String(50), nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CalendarConnection(Base):
    __tablename__ = "calendar_connections"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), index=True, nullable=False)
    provider = Column(String(20), nullable=False, default="google")
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    calendar_id = Column(String(200), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# CONTACTS & INBOX
# =============================================================================

class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_workspace_email", "workspace_id", "email"),
        Index("ix_contacts_workspace_phone", "workspace_id", "phone"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    source = Column(String(50), nullable=False, default="contact_form")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Contact {self.name}>"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("workspace_id", "contact_id", name="uq_conversation_workspace_contact"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    status = Column(String(20), nullable=False, default="open")
    automation_paused = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    contact = relationship("Contact", lazy="selectin")


class Message(Base):
    """Append-only timeline entry."""
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    direction = Column(String(10), nullable=False)
    channel = Column(String(10), nullable=False)
    content = Column(Text, nullable=False)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# BOOKING
# =============================================================================

class ServiceType(Base):
    __tablename__ = "service_types"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False)  # minutes
    price = Column(Float, nullable=False, default=0)
    location = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    availability = relationship(
        "Availability",
        lazy="selectin",
        order_by="Availability.position",
        cascade="all, delete-orphan",
    )


class Availability(Base):
    """Weekly recurring window. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "availability"

    id = Column(String(36), primary_key=True, default=new_id)
    service_type_id = Column(String(36), ForeignKey("service_types.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # insertion order


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_workspace_status_start", "workspace_id", "status", "start_time"),
        Index("ix_bookings_service_start", "service_type_id", "start_time"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    service_type_id = Column(String(36), ForeignKey("service_types.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED)
    notes = Column(Text, nullable=True)
    calendar_event_id = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", lazy="selectin")
    contact = relationship("Contact", lazy="selectin")
    service_type = relationship("ServiceType", lazy="selectin")

    def __repr__(self):
        return f"<Booking {self.id[:8]} {self.start_time} {self.status}>"


# =============================================================================
# FORMS
# =============================================================================

class FormTemplate(Base):
    __tablename__ = "form_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    fields = Column(JSON, nullable=True)
    linked_service_type_id = Column(String(36), ForeignKey("service_types.id"), nullable=True)
    google_form_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class FormSubmission(Base):
    __tablename__ = "form_submissions"
    __table_args__ = (
        Index("ix_form_submissions_template_status", "form_template_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    form_template_id = Column(String(36), ForeignKey("form_templates.id"), nullable=False)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    status = Column(String(20), nullable=False, default=FormStatus.PENDING)
    data = Column(JSON, nullable=True)
    due_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    form_template = relationship("FormTemplate", lazy="selectin")
    contact = relationship("Contact", lazy="selectin")


# =============================================================================
# INVENTORY
# =============================================================================

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    threshold = Column(Integer, nullable=False, default=5)
    unit = Column(String(30), nullable=False, default="units")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.threshold


# =============================================================================
# ALERTS & AUDIT
# =============================================================================

class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_workspace_read_created", "workspace_id", "is_read", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    type = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    # Structured guard for sweep-created alerts, e.g. LOW_INVENTORY:<item_id>:<yyyy-mm-dd>
    dedupe_key = Column(String(200), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow)


class AutomationLog(Base):
    """
    Append-only record of every automation / notification attempt.

    Also the de-duplication ledger for the time-windowed sweeps.
    """
    __tablename__ = "automation_logs"
    __table_args__ = (
        Index("ix_automation_logs_guard", "workspace_id", "event", "contact_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    event = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False)
    contact_id = Column(String(36), nullable=True)
    status = Column(String(10), nullable=False, default=LogStatus.SUCCESS)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
