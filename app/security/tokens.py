"""Stateless session tokens.

Token wire format: ``<base64url(json body)>.<hex HMAC-SHA256(secret, base64 part)>`` where the
body is ``{"payload": {...}, "clientKey": "...", "exp": <ms since epoch>}``. The signature covers
payload, client key and expiry, so none of them can be altered without invalidating the token.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from app.errors import InvalidToken


@dataclass(frozen=True)
class IssuedToken:
    token: str
    client_key: str
    expires_at: int  # ms since epoch


@dataclass(frozen=True)
class VerifiedToken:
    payload: Dict[str, Any]
    client_key: str
    expires_at: int


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def _hmac_hex(key: Union[str, bytes], message: Union[str, bytes]) -> str:
    k = key.encode("utf-8") if isinstance(key, str) else key
    m = message.encode("utf-8") if isinstance(message, str) else message
    return hmac.new(k, m, hashlib.sha256).hexdigest()


def _same(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class TokenSigner:
    def __init__(self, secret: str, ttl_seconds: int = 1800, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self._ttl_ms = max(1, int(ttl_seconds)) * 1000
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def issue(self, payload: Dict[str, Any]) -> IssuedToken:
        client_key = secrets.token_hex(24)
        expires_at = self._now_ms() + self._ttl_ms
        body = {"payload": payload, "clientKey": client_key, "exp": expires_at}
        encoded = _b64encode(json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8"))
        signature = _hmac_hex(self._secret, encoded)
        return IssuedToken(token=f"{encoded}.{signature}", client_key=client_key, expires_at=expires_at)

    def verify(self, token: Optional[str]) -> VerifiedToken:
        """Return the verified token contents or raise InvalidToken.

        Signature mismatch, malformed input and expiry all raise the same error.
        """
        if not token or not isinstance(token, str) or "." not in token:
            raise InvalidToken()
        encoded, signature = token.rsplit(".", 1)
        expected = _hmac_hex(self._secret, encoded)
        if not _same(expected, signature):
            raise InvalidToken()
        try:
            body = json.loads(_b64decode(encoded).decode("utf-8"))
            payload = body["payload"]
            client_key = str(body.get("clientKey") or "")
            expires_at = int(body["exp"])
        except (ValueError, KeyError, TypeError, binascii.Error, UnicodeDecodeError):
            raise InvalidToken() from None
        if not isinstance(payload, dict) or not client_key:
            raise InvalidToken()
        if self._now_ms() >= expires_at:
            raise InvalidToken()
        return VerifiedToken(payload=payload, client_key=client_key, expires_at=expires_at)


def verify_request_signature(
    client_key: str,
    timestamp: Optional[str],
    body: Union[str, bytes],
    signature: Optional[str],
    *,
    max_skew_seconds: int = 300,
    clock: Callable[[], float] = time.time,
) -> bool:
    """Check ``HMAC-SHA256(client_key, "<timestamp>.<body>")`` with a replay window."""
    if not client_key or not timestamp or not signature:
        return False
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    if abs(int(clock() * 1000) - ts) > max_skew_seconds * 1000:
        return False
    raw = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    expected = _hmac_hex(client_key, f"{timestamp}.{raw}")
    return _same(expected, signature)
