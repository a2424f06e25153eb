from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any

import orjson
from pydantic import ValidationError

from ..domain.clicks import CLICK_ACTIONS, FIELD_MAX_LENGTHS, Answers, SanitizedClickEvent

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_CARD_ID = re.compile(r"[a-zA-Z0-9_-]+")
_IPV4_MAPPED_PREFIX = "::ffff:"


class ClickRejected(Exception):
    """A click payload was refused; `message` is the terse client-facing body."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.message = message


class ClickParseError(ClickRejected):
    def __init__(self, cause: Exception):
        super().__init__(400, "Bad Request")
        self.cause = cause


def check_content_length(raw: str | None, *, max_bytes: int) -> None:
    # An unparsable header is treated like an absent one.
    try:
        n = int(str(raw).strip()) if raw is not None else None
    except ValueError:
        n = None
    if n is not None and n > max_bytes:
        raise ClickRejected(413, "Payload too large")


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    xff = (headers.get("x-forwarded-for") or "").strip()
    ip = xff.split(",")[0].strip() if xff else ""
    if not ip:
        ip = (headers.get("x-real-ip") or "").strip()
    return ip or "unknown"


def normalize_ip(ip: str) -> str:
    if ip.lower().startswith(_IPV4_MAPPED_PREFIX):
        return ip[len(_IPV4_MAPPED_PREFIX) :]
    return ip


def parse_body(raw: bytes) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ClickParseError(e) from e


def sanitize_text(value: Any, max_length: int) -> str:
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS.sub("", value)[:max_length]


def normalize_ts(value: Any, *, now: int, future_tolerance_ms: int = 60_000) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return now
    if not math.isfinite(value) or value <= 0 or value > now + future_tolerance_ms:
        return now
    return value


def validate_card_id(value: Any) -> str:
    if not isinstance(value, str) or not value or len(value) > FIELD_MAX_LENGTHS["cardId"]:
        raise ClickRejected(400, "Invalid cardId")
    if not _CARD_ID.fullmatch(value):
        raise ClickRejected(400, "Invalid cardId")
    return value


def validate_answers(value: Any) -> Answers:
    if not isinstance(value, dict):
        raise ClickRejected(400, "Invalid answers format")
    try:
        return Answers.model_validate(value)
    except ValidationError as e:
        raise ClickRejected(400, "Invalid answers format") from e


def sanitize_click(
    body: Any,
    *,
    client_ip: str,
    now: int,
    future_tolerance_ms: int = 60_000,
) -> SanitizedClickEvent:
    """
    Validate and clean an already-parsed click payload.

    Checks run in a fixed order (shape, action, cardId, answers) and the first
    failure raises `ClickRejected`.
    """
    if not isinstance(body, dict):
        raise ClickRejected(400, "Invalid payload format")

    action = body.get("action")
    if not isinstance(action, str) or action not in CLICK_ACTIONS:
        raise ClickRejected(400, "Invalid action")

    validate_card_id(body.get("cardId"))

    fields = {name: sanitize_text(body.get(name), cap) for name, cap in FIELD_MAX_LENGTHS.items()}
    ts = normalize_ts(body.get("ts"), now=now, future_tolerance_ms=future_tolerance_ms)
    answers = validate_answers(body.get("answers"))

    return SanitizedClickEvent(
        action=action,
        ts=ts,
        answers=answers,
        clientIP=normalize_ip(client_ip),
        **fields,
    )
