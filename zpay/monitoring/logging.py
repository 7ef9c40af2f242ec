"""
Structured logging for the dashboard service.

Every record is a JSON object carrying the app name, environment and, inside
a request, the request ID. Credentials that end up in event fields (API keys,
passwords, session and reset tokens, verification codes) are masked before
rendering.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from zpay.config import Settings, get_settings

SENSITIVE_FIELDS = frozenset(
    {
        "api_key",
        "password",
        "new_password",
        "token",
        "session_token",
        "reset_token",
        "otp",
        "secret",
        "access_token",
    }
)

QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "stripe": logging.INFO,
    "twilio": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def mask_secret(value: Any) -> str:
    """Keep the recognisable prefix of a credential (e.g. ``zv_live_``) and hide the rest."""
    text = str(value)
    if text.startswith(("zv_live_", "zv_test_", "whsec_")):
        prefix = text[: text.index("_", 3) + 1]
        return f"{prefix}***"
    return "***"


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for field in SENSITIVE_FIELDS.intersection(event_dict):
        if event_dict[field] is not None:
            event_dict[field] = mask_secret(event_dict[field])
    return event_dict


def app_context_processor(settings: Settings) -> Any:
    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("app_name", settings.app_name)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return add_app_context


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    structlog events are rendered to JSON by structlog itself; records from
    third-party libraries (uvicorn, SQLAlchemy, httpx) go through
    python-json-logger so that stdout only ever carries JSON lines.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            app_context_processor(settings),
            redact_sensitive_fields,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_json_handler())
    root_logger.setLevel(settings.log_level)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, app_env=settings.app_env
    )


def bind_request_context(request_id: str, method: str, path: str) -> None:
    """Attach request fields to every event logged until the request ends."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
