"""
Outbound message copy used by the dispatcher and the sweeps.
"""

from datetime import datetime
from typing import Optional

from config import get_settings

settings = get_settings()


def format_when(value: datetime) -> str:
    """'Monday, October 19, 2026 at 09:00 AM'"""
    return value.strftime("%A, %B %d, %Y at %I:%M %p")


def form_link(submission_id: str) -> str:
    return f"{settings.FRONTEND_URL}/forms/{submission_id}"


def welcome(contact_name: str, workspace_name: str) -> str:
    return (
        f"Hi {contact_name}! Thank you for reaching out to {workspace_name}. "
        f"We'll get back to you shortly."
    )


def booking_confirmation(service_name: str, workspace_name: str, start: datetime,
                         location: Optional[str] = None) -> str:
    text = f"Your {service_name} appointment at {workspace_name} is confirmed for {format_when(start)}."
    if location:
        text += f" Location: {location}."
    return text


def booking_reminder(service_name: str, workspace_name: str, start: datetime,
                     location: Optional[str] = None) -> str:
    text = f"Reminder: Your {service_name} appointment at {workspace_name} is coming up on {format_when(start)}."
    if location:
        text += f" Location: {location}."
    return text


def form_request(contact_name: str, template_name: str, submission_id: str) -> str:
    return (
        f"Hi {contact_name}, please complete \"{template_name}\" before your appointment: "
        f"{form_link(submission_id)}"
    )


def form_overdue(contact_name: str, template_name: str, submission_id: str) -> str:
    return (
        f"Hi {contact_name}, \"{template_name}\" is now overdue. "
        f"Please complete it as soon as possible: {form_link(submission_id)}"
    )


def low_stock(item_name: str, quantity: int, unit: str, threshold: int) -> str:
    return f"Low stock: {item_name} has {quantity} {unit} (threshold: {threshold})"
