from fastapi import Header, Request

from errors import ValidationError
from services.automation import AutomationDispatcher
from services.cache import CacheService
from services.gateways import Gateways
from services.queue import QueueService


# Dependency Injection
def get_queue(request: Request) -> QueueService:
    return request.app.state.queue


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_gateways(request: Request) -> Gateways:
    return request.app.state.gateways


def get_dispatcher(request: Request) -> AutomationDispatcher:
    return request.app.state.dispatcher


def get_workspace_id(x_workspace_id: str = Header(default="")) -> str:
    # Set by the authenticating proxy in front of the staff API
    if not x_workspace_id:
        raise ValidationError("X-Workspace-Id header is required")
    return x_workspace_id
