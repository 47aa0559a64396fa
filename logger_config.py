import structlog
import logging
import sys
from config import get_settings

# Contact details that never reach log output in clear text
CONTACT_FIELDS = ("phone", "email", "to", "recipient")

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "openai", "sqlalchemy.engine", "aiosqlite")


def mask_phone(phone: str) -> str:
    """Keep only the last four digits of a phone number for log output."""
    if not phone:
        return ""
    return f"***{phone[-4:]}"


def mask_email(email: str) -> str:
    """ada@example.com -> a***@example.com"""
    if not email or "@" not in email:
        return ""
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def redact_contact_details(logger, method_name, event_dict):
    for key in CONTACT_FIELDS:
        value = event_dict.get(key)
        if not isinstance(value, str) or not value:
            continue
        event_dict[key] = mask_email(value) if "@" in value else mask_phone(value)
    return event_dict


def configure_logger():
    settings = get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_contact_details,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.APP_ENV == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
