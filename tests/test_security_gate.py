import hashlib
import hmac

import pytest
from prometheus_client import REGISTRY

from app.errors import (
    AutomationDetected,
    InvalidSignature,
    InvalidToken,
    MissingCredentials,
    OriginDenied,
    PayloadTooLarge,
    RateLimited,
    RecaptchaFailed,
)
from app.security.gate import ChatCredentials, SecurityGate, client_ip, validate_origin
from conftest import ORIGIN

BROWSER = {
    "user-agent": "Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/125.0",
    "accept": "application/json",
    "accept-language": "en",
}


async def _recaptcha_ok(secret, token, **kwargs):
    return 1.0


async def _recaptcha_fail(secret, token, **kwargs):
    raise RecaptchaFailed()


def _gate(settings, clock, verifier=_recaptcha_ok):
    return SecurityGate.from_settings(settings, clock=clock, recaptcha_verifier=verifier)


def _creds(gate=None, session_id="s1", token=None, recaptcha="rc", origin=ORIGIN, **kwargs):
    if token is None and gate is not None:
        token = gate.issue_session_token({"session_id": session_id}).token
    fields = dict(
        origin=origin,
        ip="203.0.113.7",
        headers=BROWSER,
        raw_body=b'{"session_id":"s1","message":"hi"}',
        session_id=session_id,
        message_length=2,
        session_token=token,
        recaptcha_token=recaptcha,
    )
    fields.update(kwargs)
    return ChatCredentials(**fields)


@pytest.mark.parametrize("origin, ok", [
    ("https://www.investonline.in", True),
    ("https://www.investonline.in/", True),
    ("https://www.investonline.in:443", True),
    ("https://www.investonline.in.evil.com", False),
    ("http://www.investonline.in", False),
    ("https://evil.com", False),
    ("", False),
    (None, False),
])
def test_validate_origin(origin, ok):
    assert validate_origin(origin, [ORIGIN + "/"]) is ok


def test_empty_allowlist_rejects_everything():
    assert not validate_origin(ORIGIN, [])


def test_client_ip_prefers_forwarded_for():
    assert client_ip({"x-forwarded-for": "198.51.100.1, 10.0.0.1"}, "10.0.0.1") == "198.51.100.1"
    assert client_ip({}, "10.0.0.9") == "10.0.0.9"
    assert client_ip({}, None) == "unknown"


@pytest.mark.asyncio
async def test_admits_valid_chat(settings, clock):
    gate = _gate(settings, clock)
    verified = await gate.admit_chat(_creds(gate))
    assert verified.payload == {"session_id": "s1"}
    gate.check_session_binding(verified, "s1")


@pytest.mark.asyncio
async def test_origin_checked_before_credentials(settings, clock):
    gate = _gate(settings, clock)
    with pytest.raises(OriginDenied):
        await gate.admit_chat(_creds(gate, origin="https://evil.com", token="", recaptcha=""))


@pytest.mark.asyncio
@pytest.mark.parametrize("token, recaptcha", [("", "rc"), ("tok", ""), (None, None)])
async def test_both_credentials_required(settings, clock, token, recaptcha):
    gate = _gate(settings, clock)
    creds = _creds(token=token or "", recaptcha=recaptcha)
    with pytest.raises(MissingCredentials) as exc:
        await gate.admit_chat(creds)
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_recaptcha_failure_is_429(settings, clock):
    gate = _gate(settings, clock, verifier=_recaptcha_fail)
    with pytest.raises(RecaptchaFailed) as exc:
        await gate.admit_chat(_creds(gate))
    assert exc.value.status_code == 429
    assert exc.value.code == "recaptcha_failed"


@pytest.mark.asyncio
async def test_invalid_and_expired_tokens(settings, clock):
    gate = _gate(settings, clock)
    with pytest.raises(InvalidToken):
        await gate.admit_chat(_creds(token="garbage.token"))

    token = gate.issue_session_token({"session_id": "s1"}).token
    clock.advance(settings.token_ttl_seconds)
    with pytest.raises(InvalidToken):
        await gate.admit_chat(_creds(token=token))


@pytest.mark.asyncio
async def test_token_bound_to_session(settings, clock):
    gate = _gate(settings, clock)
    verified = await gate.admit_chat(_creds(gate, session_id="s1"))
    with pytest.raises(InvalidToken):
        gate.check_session_binding(verified, "someone-else")


@pytest.mark.asyncio
async def test_rate_limit_runs_before_credentials(make_settings, clock):
    gate = _gate(make_settings(rate_limit_max_requests=2), clock)
    await gate.admit_chat(_creds(gate))
    await gate.admit_chat(_creds(gate))
    with pytest.raises(RateLimited):
        await gate.admit_chat(_creds(token="", recaptcha=""))


@pytest.mark.asyncio
async def test_rate_limit_window_rolls_over(make_settings, clock):
    gate = _gate(make_settings(rate_limit_max_requests=1, rate_limit_window_seconds=60), clock)
    await gate.admit_chat(_creds(gate))
    with pytest.raises(RateLimited):
        await gate.admit_chat(_creds(gate))
    clock.advance(60)
    await gate.admit_chat(_creds(gate))


@pytest.mark.asyncio
async def test_oversized_body_rejected(make_settings, clock):
    gate = _gate(make_settings(max_body_bytes=16), clock)
    with pytest.raises(PayloadTooLarge) as exc:
        await gate.admit_chat(_creds(gate, raw_body=b"x" * 17))
    assert exc.value.status_code == 413


@pytest.mark.asyncio
async def test_automation_distinct_from_rate_limit(make_settings, clock):
    gate = _gate(make_settings(automation_enabled=True), clock)
    with pytest.raises(AutomationDetected) as exc:
        await gate.admit_chat(_creds(gate, headers={"user-agent": "python-requests/2.31", "accept": "*/*"}))
    assert exc.value.code == "automation_detected"
    assert exc.value.code != RateLimited.code


@pytest.mark.asyncio
async def test_request_signature_when_required(make_settings, clock):
    gate = _gate(make_settings(require_request_signature=True), clock)
    issued = gate.issue_session_token({"session_id": "s1"})
    body = b'{"session_id":"s1","message":"hi"}'
    ts = str(int(clock() * 1000))
    sig = hmac.new(issued.client_key.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()

    await gate.admit_chat(_creds(token=issued.token, raw_body=body, timestamp=ts, signature=sig))
    with pytest.raises(InvalidSignature):
        await gate.admit_chat(_creds(token=issued.token, raw_body=body, timestamp=ts, signature="0" * 64))


@pytest.mark.asyncio
async def test_session_start_admission(settings, clock):
    gate = _gate(settings, clock)
    await gate.admit_session_start(ORIGIN, "1.1.1.1")
    with pytest.raises(OriginDenied):
        await gate.admit_session_start(None, "1.1.1.1")


@pytest.mark.asyncio
async def test_rejections_are_counted_by_kind(settings, clock):
    gate = _gate(settings, clock)
    before = REGISTRY.get_sample_value("buddy_security_rejections_total", {"kind": "origin_not_allowed"}) or 0.0
    with pytest.raises(OriginDenied):
        await gate.admit_chat(_creds(gate, origin="https://evil.com"))
    after = REGISTRY.get_sample_value("buddy_security_rejections_total", {"kind": "origin_not_allowed"})
    assert after == before + 1
