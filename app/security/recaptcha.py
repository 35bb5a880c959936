from __future__ import annotations

import json
import logging
from typing import Optional

import httpx

from app.errors import RecaptchaFailed

logger = logging.getLogger("buddy.security")

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


async def verify_recaptcha(
    secret: str,
    token: Optional[str],
    *,
    min_score: float = 0.5,
    timeout: float = 5.0,
    remote_ip: Optional[str] = None,
) -> float:
    """Verify a reCAPTCHA token with Google and return its score.

    With no secret configured verification is disabled and always succeeds (score 1.0).
    A failed check, a below-threshold score and an unreachable verifier all raise
    RecaptchaFailed.
    """
    if not secret:
        return 1.0
    if not token:
        raise RecaptchaFailed()

    form = {"secret": secret, "response": token}
    if remote_ip:
        form["remoteip"] = remote_ip
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(RECAPTCHA_VERIFY_URL, data=form)
            if resp.status_code >= 400:
                raise RecaptchaFailed(code="recaptcha_failed")
            data = resp.json()
    except RecaptchaFailed:
        logger.warning(json.dumps({"event": "recaptcha_http_error"}))
        raise
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(json.dumps({"event": "recaptcha_unreachable", "error": type(exc).__name__}))
        raise RecaptchaFailed() from exc

    if not isinstance(data, dict) or not data.get("success"):
        codes = data.get("error-codes") if isinstance(data, dict) else None
        logger.info(json.dumps({"event": "recaptcha_rejected", "errorCodes": codes}))
        raise RecaptchaFailed()

    score = data.get("score")
    if score is None:
        # v2 checkbox tokens carry no score
        return 1.0
    try:
        score_f = float(score)
    except (TypeError, ValueError):
        raise RecaptchaFailed() from None
    if score_f < min_score:
        logger.info(json.dumps({"event": "recaptcha_low_score", "score": score_f, "minScore": min_score}))
        raise RecaptchaFailed()
    return score_f
