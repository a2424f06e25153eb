from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from .context import get_request_id

SERVICE_NAME = "cardpicks"

_CONFIGURED = False


def _add_request_id(_: logging.Logger, __: str, event_dict: dict) -> dict:
    rid = get_request_id()
    if rid:
        event_dict["request_id"] = rid
    return event_dict


def _service_stamp(environment: str):
    def stamp(_: logging.Logger, __: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return stamp


def _shared_processors(environment: str) -> list[Any]:
    # Applied to structlog events and to records from plain stdlib loggers alike.
    return [
        _add_request_id,
        _service_stamp(environment),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_logging(*, level: str | int = "INFO", environment: str = "development") -> None:
    """
    Route structlog and stdlib logging to one JSON-lines stream on stdout.

    Click events, access lines and uvicorn's own messages all share the same
    shape so they can be ingested by one log pipeline. Calling this more than
    once is a no-op.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    shared = _shared_processors(environment)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name in ("uvicorn", "uvicorn.error"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
    # AccessLogMiddleware writes the per-request line.
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.handlers = []
    uvicorn_access.propagate = False

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
