from __future__ import annotations

from typing import Optional


class ChatApiError(Exception):
    """Base error carrying an HTTP status and a stable machine-readable code."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if code:
            self.code = code

    def to_body(self) -> dict:
        return {"error": self.message, "code": self.code}


class OriginDenied(ChatApiError):
    status_code = 403
    code = "origin_not_allowed"
    message = "Origin not allowed"


class AutomationDetected(ChatApiError):
    status_code = 403
    code = "automation_detected"
    message = "Client not allowed"


class PayloadTooLarge(ChatApiError):
    status_code = 413
    code = "payload_too_large"
    message = "Payload too large"


class MissingCredentials(ChatApiError):
    status_code = 401
    code = "missing_credentials"
    message = "Missing session or recaptcha token"


class InvalidToken(ChatApiError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid or expired session token"


class InvalidSignature(ChatApiError):
    status_code = 401
    code = "invalid_signature"
    message = "Invalid request signature"


class RecaptchaFailed(ChatApiError):
    status_code = 429
    code = "recaptcha_failed"
    message = "Recaptcha verification failed"


class RateLimited(ChatApiError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests"


class SessionLimitReached(ChatApiError):
    status_code = 429
    code = "session_limit_reached"
    message = "You've hit the message limit for this session. Start a new chat."


class ValidationError(ChatApiError):
    status_code = 400
    code = "validation_error"
    message = "session_id and message required"


class SearchUnavailable(ChatApiError):
    """Raised inside the search layer only; never reaches a client."""

    status_code = 503
    code = "search_unavailable"
    message = "Search unavailable"


class UpstreamModelFailure(ChatApiError):
    status_code = 502
    code = "upstream_model_failure"
    message = "Sorry, I'm having trouble right now. Please try again."


class InternalError(ChatApiError):
    status_code = 500
    code = "internal_error"
    message = "Internal error"
