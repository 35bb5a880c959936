from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import json
import logging
import os
import re
import time
import uuid

from dotenv import load_dotenv
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from app.errors import ChatApiError, InternalError, SessionLimitReached, ValidationError
from app.knowledge.flows import Flows, load_flows
from app.knowledge.matcher import KnowledgeMatcher
from app.metrics import HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION_SECONDS
from app.middleware.request_id import RequestIdMiddleware
from app.providers.base import ChatClient
from app.providers.factory import get_chat_client
from app.routing.router import END_CHAT_REPLY, ConversationRouter, is_end_chat
from app.search.base import SearchAugmenter
from app.search.factory import get_search_augmenter
from app.security.gate import ChatCredentials, SecurityGate, client_ip
from app.sessions.base import SessionStore
from app.sessions.factory import get_session_store
from app.sessions.locks import SessionLocks
from app.sessions.models import Session
from app.settings import Settings, load_settings

logger = logging.getLogger("buddy.http")

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")
FEEDBACK_MAX_CHARS = 2000


def configure_logging(level_name: str) -> logging.Logger:
    # Ensure our application loggers emit under Uvicorn:
    # - honor LOG_LEVEL (default INFO)
    # - attach a StreamHandler if none present
    # - disable propagate to avoid duplicate logs with Uvicorn root handlers
    root = logging.getLogger("buddy")
    lvl = getattr(logging, (level_name or "INFO").strip().upper(), logging.INFO)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    root.setLevel(lvl)
    if not root.handlers:
        h = logging.StreamHandler()
        h.setLevel(lvl)
        h.setFormatter(logging.Formatter('%(message)s'))
        root.addHandler(h)
    root.propagate = False
    return root


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id") or str(uuid.uuid4())


def _json_body(raw: bytes) -> Dict[str, Any]:
    """Lenient JSON object parse; anything else is treated as an empty body."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _str_field(body: Dict[str, Any], key: str) -> Optional[str]:
    val = body.get(key)
    if isinstance(val, str) and val.strip():
        return val.strip()
    return None


def _message_text(val: Any) -> str:
    # widget clients send a string; older ones send {"text": ...}
    if isinstance(val, str):
        return val
    if isinstance(val, dict) and isinstance(val.get("text"), str):
        return val["text"]
    return ""


def _peer(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_store: Optional[SessionStore] = None,
    chat_client: Optional[ChatClient] = None,
    search: Optional[SearchAugmenter] = None,
    gate: Optional[SecurityGate] = None,
    flows: Optional[Flows] = None,
) -> FastAPI:
    """Build the API from one immutable Settings; collaborators can be injected for tests."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    flows = flows if flows is not None else load_flows(settings.flows_path)
    store = session_store if session_store is not None else get_session_store(settings)
    client = chat_client if chat_client is not None else get_chat_client(settings)
    augmenter = search if search is not None else get_search_augmenter(settings)
    gate = gate if gate is not None else SecurityGate.from_settings(settings)
    router = ConversationRouter(
        flows,
        KnowledgeMatcher(flows),
        augmenter,
        client,
        model_timeout=settings.model_timeout_seconds,
    )
    locks = SessionLocks()

    app = FastAPI(
        title="InvestOnline Buddy Chat API",
        description="Support chat backend: session tokens, abuse defenses, scripted answers and model fallback.",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.session_store = store
    app.state.chat_client = client
    app.state.search = augmenter
    app.state.gate = gate
    app.state.router = router

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: background site indexing (no-op without a sitemap)
        await augmenter.start()
        logger.info(json.dumps({
            "event": "startup",
            "sessionStore": store.backend_name,
            "search": augmenter.name,
            "chatProvider": client.provider_name,
            "chatModel": client.model,
            "allowedOrigins": settings.allowed_origins,
        }))
        try:
            yield
        finally:
            await augmenter.close()
            await client.close()
            await store.close()
            await gate.close()

    # Register lifespan context
    app.router.lifespan_context = lifespan

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
        allow_credentials=False,
    )
    app.add_middleware(RequestIdMiddleware)

    # HTTP metrics middleware
    @app.middleware("http")
    async def _http_metrics_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        method = request.method
        path = request.url.path
        status_code = 500
        try:
            response = await call_next(request)
            status_code = getattr(response, "status_code", 500)
            return response
        finally:
            status_class = f"{status_code // 100}xx"
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)

    @app.exception_handler(ChatApiError)
    async def _chat_api_error(request: Request, exc: ChatApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception(json.dumps({
            "event": "internal_error",
            "path": request.url.path,
            "requestId": getattr(request.state, "request_id", None),
            "error": type(exc).__name__,
        }))
        error = InternalError()
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    @app.post("/session/start", tags=["session"], description="Issue a signed session token for the chat widget.")
    async def session_start(request: Request):
        rid = _request_id(request)
        body = _json_body(await request.body())
        headers = {k.lower(): v for k, v in request.headers.items()}
        await gate.admit_session_start(request.headers.get("origin"), client_ip(headers, _peer(request)), rid)

        session_id = _str_field(body, "session_id")
        if session_id is None:
            session_id = f"s_{uuid.uuid4().hex}"
        elif not SESSION_ID_RE.match(session_id):
            raise ValidationError("invalid session_id")

        issued = gate.issue_session_token({"session_id": session_id, "created_at": int(time.time() * 1000)})
        logger.info(json.dumps({"event": "session_started", "sessionId": session_id, "requestId": rid}))
        return {
            "ok": True,
            "session_id": session_id,
            "session_token": issued.token,
            "client_key": issued.client_key,
            "expires_at": issued.expires_at,
        }

    @app.post("/chat", tags=["chat"], description="Answer one widget message.")
    async def chat(request: Request):
        rid = _request_id(request)
        raw = await request.body()
        body = _json_body(raw)
        headers = {k.lower(): v for k, v in request.headers.items()}
        session_id = _str_field(body, "session_id")
        message = _message_text(body.get("message"))

        creds = ChatCredentials(
            origin=headers.get("origin"),
            ip=client_ip(headers, _peer(request)),
            headers=headers,
            raw_body=raw,
            session_id=session_id,
            message_length=len(message),
            session_token=headers.get("x-session-token") or _str_field(body, "session_token"),
            recaptcha_token=headers.get("x-recaptcha-token") or _str_field(body, "recaptchaToken"),
            timestamp=headers.get("x-timestamp"),
            signature=headers.get("x-signature"),
            request_id=rid,
        )
        verified = await gate.admit_chat(creds)

        if not session_id or not message.strip():
            raise ValidationError()
        if len(message) > settings.max_message_chars:
            raise ValidationError("message too long")
        gate.check_session_binding(verified, session_id, rid)

        page = _str_field(body, "page") or "/"
        lang = _str_field(body, "lang") or "en"
        message = message.strip()

        async with locks.hold(session_id):
            session = await store.get(session_id)
            if session is None:
                session = Session(id=session_id)
            elif session.user_turn_count() >= settings.session_message_limit:
                await store.delete(session_id)
                logger.info(json.dumps({"event": "session_limit_reached", "sessionId": session_id, "requestId": rid}))
                raise SessionLimitReached()

            if is_end_chat(message):
                await store.delete(session_id)
                logger.info(json.dumps({"event": "session_ended", "sessionId": session_id, "requestId": rid}))
                return {"reply": END_CHAT_REPLY, "suggested": []}

            result = await router.route(session, message, page=page, lang=lang, request_id=rid)
            await store.set(session_id, session, settings.session_ttl_seconds)
        return result.to_body()

    @app.post("/feedback", tags=["chat"], description="Best-effort user feedback sink.")
    async def feedback(request: Request):
        body = _json_body(await request.body())
        comment = body.get("comment") or body.get("feedback") or body.get("message")
        logger.info(json.dumps({
            "event": "feedback",
            "sessionId": body.get("session_id"),
            "rating": body.get("rating"),
            "comment": str(comment)[:FEEDBACK_MAX_CHARS] if comment is not None else None,
            "requestId": _request_id(request),
        }, default=str))
        return {"status": "ok"}

    @app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/service-metrics", tags=["meta"], description="Backend configuration snapshot.")
    async def service_metrics():
        return {
            "sessionStore": store.backend_name,
            "searchIndexSize": augmenter.index_size(),
            "search": augmenter.name,
            "chatProvider": client.provider_name,
            "chatModel": client.model,
        }

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema["tags"] = [
            {"name": "meta", "description": "Service metadata and liveness"},
            {"name": "session", "description": "Session token issuance"},
            {"name": "chat", "description": "Widget chat and feedback"},
        ]
        openapi_schema["servers"] = [
            {"url": "http://localhost:8080", "description": "Local dev"}
        ]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[assignment]
    return app


app = create_app()
