from __future__ import annotations

import json
import time

import anyio
import httpx
from fastapi.testclient import TestClient

from cardpicks.main import create_app
from cardpicks.services.rate_limiter import FixedWindowRateLimiter
from cardpicks.settings import Settings

NOW = 1_700_000_000_000

VALID = {
    "action": "apply",
    "cardId": "test-card-id",
    "cardName": "Test Card",
    "path": "/test",
    "ts": NOW - 1_000,
    "answers": {"priority": "dining_groceries", "feeComfort": "$$", "redemption": "points"},
    "referrer": "https://example.com",
    "ua": "Mozilla/5.0 Test Browser",
}


class RecordingClickLog:
    def __init__(self):
        self.events: list[dict] = []
        self.parse_errors: list[tuple[Exception, str]] = []

    def record(self, event):
        self.events.append(event.to_log_dict())

    def parse_failed(self, error, *, client_ip):
        self.parse_errors.append((error, client_ip))


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _setup(*, clock=None, settings: Settings | None = None):
    log = RecordingClickLog()
    limiter = FixedWindowRateLimiter(limit=30, window_ms=60_000, clock=clock or FakeClock())
    app = create_app(settings, rate_limiter=limiter, click_log=log)
    assert app.state.rate_limiter is limiter
    return TestClient(app), log, limiter


def _post(client: TestClient, payload, *, ip: str | None = "192.168.1.1", headers: dict | None = None):
    h = {"content-type": "application/json"}
    if ip is not None:
        h["x-forwarded-for"] = ip
    h.update(headers or {})
    body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
    return client.post("/api/click", content=body, headers=h)


def test_valid_apply_is_logged_and_returns_204():
    client, log, _ = _setup()

    r = _post(client, VALID)
    assert r.status_code == 204
    assert r.content == b""
    assert len(log.events) == 1
    ev = log.events[0]
    assert ev == {
        "action": "apply",
        "cardId": "test-card-id",
        "cardName": "Test Card",
        "path": "/test",
        "ts": NOW - 1_000,
        "answers": VALID["answers"],
        "referrer": "https://example.com",
        "ua": "Mozilla/5.0 Test Browser",
        "clientIP": "192.168.1.1",
    }


def test_valid_copy_link_is_accepted():
    client, log, _ = _setup()

    r = _post(client, {**VALID, "action": "copy_link"})
    assert r.status_code == 204
    assert log.events[0]["action"] == "copy_link"


def test_control_characters_are_stripped():
    client, log, _ = _setup()

    r = _post(client, {**VALID, "cardName": "Test\x00Card\x1f\x7f\x9f", "path": "/test\x01path", "ua": "a\u0085b"})
    assert r.status_code == 204
    ev = log.events[0]
    assert ev["cardName"] == "TestCard"
    assert ev["path"] == "/testpath"
    assert ev["ua"] == "ab"


def test_long_strings_are_truncated_after_stripping():
    client, log, _ = _setup()

    payload = {
        **VALID,
        "cardName": "\x00" * 10 + "b" * 300,
        "path": "c" * 600,
        "referrer": "r" * 400,
        "ua": "u" * 600,
    }
    r = _post(client, payload)
    assert r.status_code == 204
    ev = log.events[0]
    assert ev["cardName"] == "b" * 200
    assert ev["path"] == "c" * 500
    assert ev["referrer"] == "r" * 300
    assert ev["ua"] == "u" * 500


def test_non_string_fields_become_empty_strings():
    client, log, _ = _setup()

    payload = {**VALID, "cardName": 123, "path": None, "ua": True}
    payload.pop("referrer")
    r = _post(client, payload)
    assert r.status_code == 204
    ev = log.events[0]
    assert (ev["cardName"], ev["path"], ev["referrer"], ev["ua"]) == ("", "", "", "")


def test_timestamp_within_future_tolerance_is_kept():
    client, log, _ = _setup()

    assert _post(client, {**VALID, "ts": NOW + 30_000}).status_code == 204
    assert _post(client, {**VALID, "ts": NOW + 60_000}).status_code == 204
    assert [e["ts"] for e in log.events] == [NOW + 30_000, NOW + 60_000]


def test_bad_timestamps_are_replaced_with_server_time():
    client, log, _ = _setup()

    for ts in [NOW + 60_001, NOW + 120_000, "invalid", -5, 0, True, None, [1]]:
        assert _post(client, {**VALID, "ts": ts}).status_code == 204
    assert [e["ts"] for e in log.events] == [NOW] * 8


def test_far_future_timestamp_lands_between_request_and_response_with_real_clock():
    log = RecordingClickLog()
    app = create_app(rate_limiter=FixedWindowRateLimiter(), click_log=log)
    client = TestClient(app)

    before = int(time.time() * 1000)
    far = before + 120_000
    r = _post(client, {**VALID, "ts": far})
    after = int(time.time() * 1000)

    assert r.status_code == 204
    logged = log.events[0]["ts"]
    assert logged != far
    assert before <= logged <= after


def test_payload_too_large_is_rejected_before_rate_limiting():
    client, log, limiter = _setup()

    r = _post(client, {**VALID, "ua": "x" * 6000})
    assert r.status_code == 413
    assert r.text == "Payload too large"
    assert log.events == []
    assert len(limiter) == 0


def test_invalid_actions_are_rejected():
    client, log, _ = _setup()

    missing = dict(VALID)
    missing.pop("action")
    for payload in [{**VALID, "action": "invalid"}, missing, {**VALID, "action": 123}, {**VALID, "action": "APPLY"}]:
        r = _post(client, payload)
        assert r.status_code == 400
        assert r.text == "Invalid action"
    assert log.events == []


def test_invalid_card_ids_are_rejected():
    client, log, _ = _setup()

    for card_id in ["test@card!", "", "a" * 101, "has space", 42, None, "ünicode"]:
        r = _post(client, {**VALID, "cardId": card_id})
        assert r.status_code == 400, card_id
        assert r.text == "Invalid cardId"
    assert log.events == []


def test_card_id_with_allowed_characters_up_to_100_chars_is_accepted():
    client, log, _ = _setup()

    assert _post(client, {**VALID, "cardId": "test-card_123"}).status_code == 204
    assert _post(client, {**VALID, "cardId": "a" * 100}).status_code == 204
    assert [e["cardId"] for e in log.events] == ["test-card_123", "a" * 100]


def test_invalid_answers_are_rejected():
    client, log, _ = _setup()

    base = VALID["answers"]
    missing = dict(VALID)
    missing.pop("answers")
    cases = [
        {**VALID, "answers": {**base, "priority": "invalid"}},
        {**VALID, "answers": {**base, "feeComfort": "invalid"}},
        {**VALID, "answers": {**base, "redemption": "invalid"}},
        {**VALID, "answers": {"priority": "one_card", "feeComfort": "any"}},
        {**VALID, "answers": ["one_card", "any", "simple"]},
        {**VALID, "answers": "one_card"},
        {**VALID, "answers": None},
        missing,
    ]
    for payload in cases:
        r = _post(client, payload)
        assert r.status_code == 400
        assert r.text == "Invalid answers format"
    assert log.events == []


def test_every_valid_answer_value_is_accepted():
    client, log, _ = _setup()

    base = VALID["answers"]
    variants = (
        [{**base, "priority": p} for p in ["one_card", "dining_groceries", "flights_hotels", "everything_else"]]
        + [{**base, "feeComfort": f} for f in ["any", "$", "$$", "$$$", "$$$$"]]
        + [{**base, "redemption": x} for x in ["points", "cashback", "simple"]]
    )
    for answers in variants:
        assert _post(client, {**VALID, "answers": answers}).status_code == 204
    assert [e["answers"] for e in log.events] == variants


def test_malformed_json_is_logged_server_side_only():
    client, log, _ = _setup()

    r = _post(client, b'{"invalid": json}', ip=None)
    assert r.status_code == 400
    assert r.text == "Bad Request"
    assert log.events == []
    assert len(log.parse_errors) == 1
    err, ip = log.parse_errors[0]
    assert ip == "unknown"
    assert str(err) not in r.text


def test_empty_body_is_bad_request():
    client, log, _ = _setup()

    r = _post(client, b"")
    assert r.status_code == 400
    assert r.text == "Bad Request"
    assert len(log.parse_errors) == 1


def test_non_object_payloads_are_rejected():
    client, log, _ = _setup()

    for payload in [None, "not an object", 42, [VALID]]:
        r = _post(client, json.dumps(payload))
        assert r.status_code == 400
        assert r.text == "Invalid payload format"
    assert log.events == []
    assert log.parse_errors == []


def test_client_ip_comes_from_first_forwarded_for_token():
    client, log, _ = _setup()

    assert _post(client, VALID, ip="203.0.113.1, 192.168.1.1").status_code == 204
    assert log.events[0]["clientIP"] == "203.0.113.1"


def test_client_ip_falls_back_to_real_ip_then_unknown():
    client, log, _ = _setup()

    assert _post(client, VALID, ip=None, headers={"x-real-ip": "203.0.113.2"}).status_code == 204
    assert _post(client, VALID, ip=None).status_code == 204
    assert [e["clientIP"] for e in log.events] == ["203.0.113.2", "unknown"]


def test_ipv4_mapped_ipv6_prefix_is_stripped():
    client, log, _ = _setup()

    assert _post(client, VALID, ip="::ffff:192.168.1.1").status_code == 204
    assert log.events[0]["clientIP"] == "192.168.1.1"


def test_thirty_requests_pass_and_the_thirty_first_is_limited():
    client, log, _ = _setup()

    statuses = [_post(client, VALID, ip="192.168.1.101").status_code for _ in range(31)]
    assert statuses[:30] == [204] * 30
    assert statuses[30] == 429
    assert len(log.events) == 30

    r = _post(client, VALID, ip="192.168.1.101")
    assert r.status_code == 429
    assert r.text == "Rate limit exceeded"
    assert r.headers["Retry-After"] == "60"


def test_rate_limit_is_checked_before_body_validation():
    client, _, _ = _setup()

    for _ in range(30):
        _post(client, VALID, ip="10.0.0.9")
    assert _post(client, b"not json", ip="10.0.0.9").status_code == 429
    assert _post(client, {**VALID, "cardId": "bad!"}, ip="10.0.0.9").status_code == 429


def test_invalid_requests_still_consume_the_budget():
    client, _, _ = _setup()

    for _ in range(30):
        assert _post(client, {**VALID, "action": "nope"}, ip="10.0.0.7").status_code == 400
    assert _post(client, VALID, ip="10.0.0.7").status_code == 429


def test_each_ip_has_its_own_budget():
    client, _, _ = _setup()

    for _ in range(30):
        _post(client, VALID, ip="192.168.1.102")

    assert _post(client, VALID, ip="192.168.1.103").status_code == 204
    assert _post(client, VALID, ip="192.168.1.102").status_code == 429


def test_budget_resets_once_the_window_expires():
    clock = FakeClock()
    client, _, limiter = _setup(clock=clock)

    for _ in range(30):
        _post(client, VALID)
    assert _post(client, VALID).status_code == 429
    assert limiter.get("192.168.1.1").reset_time == NOW + 60_000

    clock.now += 60_000
    assert _post(client, VALID).status_code == 429
    clock.now += 1
    assert _post(client, VALID).status_code == 204


def test_rate_limit_body_can_be_empty():
    client, _, _ = _setup(settings=Settings(CLICK_RATE_LIMIT_MESSAGE=""))

    for _ in range(30):
        _post(client, VALID)
    r = _post(client, VALID)
    assert r.status_code == 429
    assert r.text == ""


def test_concurrent_identical_requests_are_each_logged_once():
    log = RecordingClickLog()
    app = create_app(rate_limiter=FixedWindowRateLimiter(clock=FakeClock()), click_log=log)
    body = json.dumps(VALID)

    async def main():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            results: list[int] = []

            async def send():
                r = await client.post(
                    "/api/click",
                    content=body,
                    headers={"content-type": "application/json", "x-forwarded-for": "198.51.100.4"},
                )
                results.append(r.status_code)

            async with anyio.create_task_group() as tg:
                for _ in range(10):
                    tg.start_soon(send)
            return results

    statuses = anyio.run(main)
    assert statuses == [204] * 10
    assert len(log.events) == 10


def test_click_responses_carry_request_id_and_security_headers():
    client, _, _ = _setup()

    r = _post(client, VALID, headers={"X-Request-Id": "click-1"})
    assert r.status_code == 204
    assert r.headers["X-Request-Id"] == "click-1"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_injected_limiter_is_used_even_when_empty():
    clock = FakeClock(now=5)
    limiter = FixedWindowRateLimiter(clock=clock)
    assert len(limiter) == 0

    app = create_app(rate_limiter=limiter, click_log=RecordingClickLog())
    assert app.state.rate_limiter is limiter
    assert app.state.rate_limit_sweeper.limiter is limiter

    _post(TestClient(app), VALID, ip="198.51.100.4")
    assert limiter.get("198.51.100.4").reset_time == 5 + 60_000


def test_snake_case_answer_key_is_rejected():
    client, log, _ = _setup()

    answers = {"priority": "one_card", "fee_comfort": "any", "redemption": "simple"}
    r = _post(client, {**VALID, "answers": answers})
    assert r.status_code == 400
    assert r.text == "Invalid answers format"
    assert log.events == []
