"""
AutomationLog writer shared by the dispatcher, the sweeps and the gateways.

Writing the audit row must never break the caller, so failures here are
logged and swallowed.
"""

from typing import Any, Optional, Union

import orjson
import structlog

from models import AutomationLog, LogStatus

logger = structlog.get_logger("automation_log")


def encode_details(details: Union[str, dict, None]) -> Optional[str]:
    if details is None or isinstance(details, str):
        return details
    return orjson.dumps(details, default=str).decode("utf-8")


async def record(
    session_factory: Any,
    workspace_id: str,
    event: str,
    action: str,
    contact_id: Optional[str] = None,
    status: str = LogStatus.SUCCESS,
    details: Union[str, dict, None] = None,
):
    """Append one AutomationLog row in its own session."""
    try:
        async with session_factory() as session:
            session.add(AutomationLog(
                workspace_id=workspace_id,
                event=event,
                action=action,
                contact_id=contact_id,
                status=status,
                details=encode_details(details),
            ))
            await session.commit()
    except Exception as e:
        logger.error("Failed to write automation log",
                     workspace_id=workspace_id, event_name=event, error=str(e))
