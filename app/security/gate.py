from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, NoReturn, Optional

from app.errors import (
    AutomationDetected,
    ChatApiError,
    InvalidSignature,
    InvalidToken,
    MissingCredentials,
    OriginDenied,
    PayloadTooLarge,
    RateLimited,
    RecaptchaFailed,
)
from app.metrics import SECURITY_REJECTIONS_TOTAL
from app.settings import Settings

from .automation import AllowAllPolicy, AutomationPolicy, HeuristicAutomationPolicy, RequestShape
from .rate_limit import MemoryWindowCounter, RateLimiter, RateLimitRule, RedisWindowCounter, WindowCounter
from .recaptcha import verify_recaptcha
from .tokens import IssuedToken, TokenSigner, VerifiedToken, verify_request_signature

logger = logging.getLogger("buddy.security")

RecaptchaVerifier = Callable[..., Awaitable[float]]


def validate_origin(origin: Optional[str], allowlist: Iterable[str]) -> bool:
    """Prefix match of ``origin`` against the allow-list.

    The prefix must end on a boundary (end of string, ``/`` or ``:``), so an allowed
    ``https://site.in`` does not admit ``https://site.in.evil.com``.
    """
    if not origin:
        return False
    origin = origin.strip()
    for allowed in allowlist:
        allowed = (allowed or "").strip().rstrip("/")
        if not allowed:
            continue
        if origin == allowed:
            return True
        if origin.startswith(allowed) and origin[len(allowed)] in "/:":
            return True
    return False


def client_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    return first or peer or "unknown"


@dataclass
class ChatCredentials:
    """Everything the gate inspects for one chat call. Header names are lowercase."""

    origin: Optional[str]
    ip: str
    headers: Mapping[str, str]
    raw_body: bytes = b""
    session_id: Optional[str] = None
    message_length: int = 0
    session_token: Optional[str] = None
    recaptcha_token: Optional[str] = None
    timestamp: Optional[str] = None
    signature: Optional[str] = None
    request_id: Optional[str] = None


class SecurityGate:
    """Origin, abuse and credential checks run before any business logic.

    Every failure is terminal for the request and raised as a distinct ChatApiError.
    """

    def __init__(
        self,
        settings: Settings,
        signer: TokenSigner,
        rate_limiter: RateLimiter,
        automation: AutomationPolicy,
        recaptcha_verifier: RecaptchaVerifier = verify_recaptcha,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.signer = signer
        self.rate_limiter = rate_limiter
        self.automation = automation
        self._recaptcha = recaptcha_verifier
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        counter: Optional[WindowCounter] = None,
        clock: Callable[[], float] = time.time,
        recaptcha_verifier: RecaptchaVerifier = verify_recaptcha,
    ) -> "SecurityGate":
        if counter is None:
            if settings.session_store == "redis" and settings.redis_url:
                import redis.asyncio as redis_async

                counter = RedisWindowCounter(redis_async.Redis.from_url(settings.redis_url, decode_responses=True))
            else:
                counter = MemoryWindowCounter(clock=clock)
        rules = [
            RateLimitRule("window", settings.rate_limit_window_seconds, settings.rate_limit_max_requests),
            RateLimitRule("hour", 3600, settings.rate_limit_hourly_max),
        ]
        if settings.automation_enabled:
            automation: AutomationPolicy = HeuristicAutomationPolicy(
                threshold=settings.automation_score_threshold,
                min_interval_ms=settings.min_inter_message_ms,
                max_message_chars=settings.max_message_chars,
                clock=clock,
            )
        else:
            automation = AllowAllPolicy()
        return cls(
            settings=settings,
            signer=TokenSigner(settings.signing_secret, settings.token_ttl_seconds, clock=clock),
            rate_limiter=RateLimiter(rules, counter, clock=clock),
            automation=automation,
            recaptcha_verifier=recaptcha_verifier,
            clock=clock,
        )

    # -----------------------------
    # Individual checks
    # -----------------------------

    def validate_origin(self, origin: Optional[str]) -> bool:
        return validate_origin(origin, self.settings.allowed_origins)

    def require_origin(self, origin: Optional[str], request_id: Optional[str] = None) -> None:
        if not self.validate_origin(origin):
            self._reject(OriginDenied(), request_id, origin=origin)

    def issue_session_token(self, payload: Dict[str, Any]) -> IssuedToken:
        return self.signer.issue(payload)

    def verify_token(self, token: Optional[str]) -> VerifiedToken:
        return self.signer.verify(token)

    async def verify_recaptcha(self, token: Optional[str], remote_ip: Optional[str] = None) -> float:
        return await self._recaptcha(
            self.settings.recaptcha_secret,
            token,
            min_score=self.settings.recaptcha_min_score,
            timeout=self.settings.recaptcha_timeout_seconds,
            remote_ip=remote_ip,
        )

    async def rate_limit(self, ip: str, request_id: Optional[str] = None) -> None:
        decision = await self.rate_limiter.hit(ip)
        if not decision.allowed:
            self._reject(RateLimited(), request_id, ip=ip, rule=decision.rule)

    def detect_automation(self, shape: RequestShape, request_id: Optional[str] = None) -> None:
        verdict = self.automation.evaluate(shape)
        if not verdict.allowed:
            self._reject(AutomationDetected(), request_id, ip=shape.ip, score=verdict.score, reasons=verdict.reasons)

    # -----------------------------
    # Endpoint admission
    # -----------------------------

    async def admit_session_start(self, origin: Optional[str], ip: str, request_id: Optional[str] = None) -> None:
        self.require_origin(origin, request_id)
        await self.rate_limit(ip, request_id)

    async def admit_chat(self, creds: ChatCredentials) -> VerifiedToken:
        """Run the chat checks in order: origin, body size, IP rate, automation,
        credential presence, reCAPTCHA, session token, optional request signature."""
        rid = creds.request_id
        self.require_origin(creds.origin, rid)

        if self.settings.max_body_bytes > 0 and len(creds.raw_body) > self.settings.max_body_bytes:
            self._reject(PayloadTooLarge(), rid, ip=creds.ip, size=len(creds.raw_body))

        await self.rate_limit(creds.ip, rid)

        shape = RequestShape(
            ip=creds.ip,
            headers=creds.headers,
            body_size=len(creds.raw_body),
            message_length=creds.message_length,
            session_id=creds.session_id,
            received_at=self._clock(),
        )
        self.detect_automation(shape, rid)

        if not creds.session_token or not creds.recaptcha_token:
            self._reject(MissingCredentials(), rid, ip=creds.ip)

        try:
            await self.verify_recaptcha(creds.recaptcha_token, remote_ip=creds.ip)
        except RecaptchaFailed as exc:
            self._reject(exc, rid, ip=creds.ip)

        try:
            verified = self.verify_token(creds.session_token)
        except InvalidToken as exc:
            self._reject(exc, rid, ip=creds.ip)

        if self.settings.require_request_signature:
            ok = verify_request_signature(
                verified.client_key,
                creds.timestamp,
                creds.raw_body,
                creds.signature,
                max_skew_seconds=self.settings.signature_max_skew_seconds,
                clock=self._clock,
            )
            if not ok:
                self._reject(InvalidSignature(), rid, ip=creds.ip)
        return verified

    def check_session_binding(self, verified: VerifiedToken, session_id: str, request_id: Optional[str] = None) -> None:
        bound = verified.payload.get("session_id")
        if bound and bound != session_id:
            self._reject(InvalidToken(), request_id, reason="session_mismatch")

    async def close(self) -> None:
        await self.rate_limiter.close()

    def _reject(self, exc: ChatApiError, request_id: Optional[str], **fields: Any) -> NoReturn:
        SECURITY_REJECTIONS_TOTAL.labels(kind=exc.code).inc()
        log = {"event": "security_reject", "kind": exc.code, "requestId": request_id}
        log.update({k: v for k, v in fields.items() if v is not None})
        logger.warning(json.dumps(log, default=str))
        raise exc
