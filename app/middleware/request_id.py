import json
import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("buddy.http.access")

# client-supplied ids are echoed and logged, so keep them short and printable
_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, persists on request.state, and echoes on response.

    Also emits one JSON access log line per request with method, path, status and latency_ms.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.time()
        incoming = request.headers.get("X-Request-Id") or ""
        req_id = incoming if _VALID_ID.match(incoming) else str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = req_id

        logger.info(json.dumps({
            "ts": int(time.time() * 1000),
            "event": "http_request",
            "requestId": req_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": int((time.time() - start) * 1000),
        }))
        return response
