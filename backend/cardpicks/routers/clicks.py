from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.responses import PlainTextResponse, Response

from ..services.click_ingest import (
    ClickParseError,
    ClickRejected,
    check_content_length,
    client_ip_from_headers,
    parse_body,
    sanitize_click,
)
from ..services.click_log import ClickLog
from ..services.rate_limiter import FixedWindowRateLimiter
from ..settings import Settings

router = APIRouter(tags=["clicks"])


@router.post("/click", status_code=204)
async def ingest_click(request: Request) -> Response:
    """
    Log a referral interaction reported by the browser.

    Answers are plain text (or empty) by contract; the browser sends these
    fire-and-forget and never reads the body.
    """
    state = request.app.state
    cfg: Settings = state.settings
    limiter: FixedWindowRateLimiter = state.rate_limiter
    click_log: ClickLog = state.click_log

    client_ip = client_ip_from_headers(request.headers)
    try:
        check_content_length(request.headers.get("content-length"), max_bytes=cfg.click_max_body_bytes)

        decision = limiter.hit(client_ip)
        if not decision.allowed:
            return PlainTextResponse(
                cfg.click_rate_limit_message,
                status_code=429,
                headers={"Retry-After": str(decision.retry_after_seconds(limiter.now()))},
            )

        raw = await request.body()
        if len(raw) > cfg.click_max_body_bytes:
            raise ClickRejected(413, "Payload too large")

        body = parse_body(raw)
        event = sanitize_click(
            body,
            client_ip=client_ip,
            now=limiter.now(),
            future_tolerance_ms=cfg.click_ts_future_tolerance_ms,
        )
    except ClickParseError as e:
        click_log.parse_failed(e.cause, client_ip=client_ip)
        return PlainTextResponse(e.message, status_code=e.status_code)
    except ClickRejected as e:
        return PlainTextResponse(e.message, status_code=e.status_code)

    click_log.record(event)
    return Response(status_code=204)
