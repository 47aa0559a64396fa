"""
Wiring for the notification gateways, the dispatcher and the sweeps.

The API, the worker and the manual sweep script all build the same graph
from a session factory and one shared HTTP client.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from services.ai import TextGenerator
from services.automation import AutomationDispatcher
from services.calendar_gateway import CalendarGateway
from services.email_gateway import EmailGateway
from services.sweeps import SweepRunner
from services.webhook_service import WebhookService
from services.whatsapp_gateway import WhatsAppGateway


@dataclass
class Gateways:
    email: EmailGateway
    whatsapp: WhatsAppGateway
    calendar: CalendarGateway
    webhooks: WebhookService


def build_gateways(session_factory: Any, http: httpx.AsyncClient) -> Gateways:
    return Gateways(
        email=EmailGateway(session_factory, http),
        whatsapp=WhatsAppGateway(session_factory, http),
        calendar=CalendarGateway(session_factory, http),
        webhooks=WebhookService(session_factory, http),
    )


def build_dispatcher(session_factory: Any, gateways: Gateways) -> AutomationDispatcher:
    return AutomationDispatcher(
        session_factory,
        email=gateways.email,
        whatsapp=gateways.whatsapp,
        calendar=gateways.calendar,
        webhooks=gateways.webhooks,
    )


def build_sweeps(session_factory: Any, gateways: Gateways, text: TextGenerator = None) -> SweepRunner:
    return SweepRunner(session_factory, email=gateways.email, whatsapp=gateways.whatsapp, text=text)
