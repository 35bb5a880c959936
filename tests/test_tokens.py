import hashlib
import hmac

import pytest

from app.errors import InvalidToken
from app.security.tokens import TokenSigner, verify_request_signature


def _signer(clock, ttl=60, secret="s3cret"):
    return TokenSigner(secret, ttl_seconds=ttl, clock=clock)


def test_issue_then_verify_returns_payload_and_client_key(clock):
    signer = _signer(clock)
    issued = signer.issue({"session_id": "abc", "created_at": 1})

    verified = signer.verify(issued.token)
    assert verified.payload == {"session_id": "abc", "created_at": 1}
    assert verified.client_key == issued.client_key
    assert verified.expires_at == issued.expires_at == int(clock() * 1000) + 60_000


def test_client_keys_are_random_per_issue(clock):
    signer = _signer(clock)
    a = signer.issue({"session_id": "abc"})
    b = signer.issue({"session_id": "abc"})
    assert a.client_key != b.client_key
    assert len(a.client_key) == 48


def test_tampering_any_character_fails(clock):
    signer = _signer(clock)
    token = signer.issue({"session_id": "abc"}).token
    for i, ch in enumerate(token):
        forged = token[:i] + ("A" if ch != "A" else "B") + token[i + 1:]
        with pytest.raises(InvalidToken):
            signer.verify(forged)


def test_expired_token_fails_even_with_valid_signature(clock):
    signer = _signer(clock, ttl=60)
    token = signer.issue({"session_id": "abc"}).token

    clock.advance(59)
    assert signer.verify(token).payload["session_id"] == "abc"

    clock.advance(1)
    with pytest.raises(InvalidToken):
        signer.verify(token)


def test_failure_kinds_are_indistinguishable(clock):
    signer = _signer(clock, ttl=10)
    token = signer.issue({"session_id": "abc"}).token
    encoded, sig = token.rsplit(".", 1)

    with pytest.raises(InvalidToken) as bad_sig:
        signer.verify(f"{encoded}.{'0' * len(sig)}")
    clock.advance(11)
    with pytest.raises(InvalidToken) as expired:
        signer.verify(token)

    assert bad_sig.value.to_body() == expired.value.to_body()
    assert bad_sig.value.status_code == expired.value.status_code == 401


def test_other_secret_rejects(clock):
    token = _signer(clock, secret="one").issue({"session_id": "abc"}).token
    with pytest.raises(InvalidToken):
        _signer(clock, secret="two").verify(token)


@pytest.mark.parametrize("token", [None, "", "no-dot", ".", "abc.", "!!!.deadbeef"])
def test_malformed_tokens_rejected(clock, token):
    with pytest.raises(InvalidToken):
        _signer(clock).verify(token)


def test_empty_secret_is_a_configuration_error():
    with pytest.raises(ValueError):
        TokenSigner("")


def _sign(key, ts, body):
    return hmac.new(key.encode(), f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()


def test_request_signature_roundtrip(clock):
    ts = str(int(clock() * 1000))
    body = '{"session_id":"abc","message":"hi"}'
    sig = _sign("client-key", ts, body)

    assert verify_request_signature("client-key", ts, body.encode(), sig, clock=clock)
    assert not verify_request_signature("client-key", ts, body + " ", sig, clock=clock)
    assert not verify_request_signature("other-key", ts, body, sig, clock=clock)
    assert not verify_request_signature("client-key", None, body, sig, clock=clock)
    assert not verify_request_signature("client-key", "not-a-number", body, sig, clock=clock)


def test_request_signature_replay_window(clock):
    ts = str(int(clock() * 1000))
    sig = _sign("k", ts, "{}")

    clock.advance(299)
    assert verify_request_signature("k", ts, "{}", sig, max_skew_seconds=300, clock=clock)
    clock.advance(2)
    assert not verify_request_signature("k", ts, "{}", sig, max_skew_seconds=300, clock=clock)
