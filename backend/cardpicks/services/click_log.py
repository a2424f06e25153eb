from __future__ import annotations

from typing import Protocol

from ..domain.clicks import SanitizedClickEvent
from ..observability.logging import get_logger


class ClickLog(Protocol):
    def record(self, event: SanitizedClickEvent) -> None: ...

    def parse_failed(self, error: Exception, *, client_ip: str) -> None: ...


class StructlogClickLog:
    """Writes one JSON log line per accepted click (logger `clicks`)."""

    def __init__(self, logger_name: str = "clicks") -> None:
        self._log = get_logger(logger_name)

    def record(self, event: SanitizedClickEvent) -> None:
        self._log.info("click", **event.to_log_dict())

    def parse_failed(self, error: Exception, *, client_ip: str) -> None:
        self._log.error(
            "click_parse_failed",
            error=str(error),
            error_type=type(error).__name__,
            clientIP=client_ip,
        )
