"""Per-message decision cascade.

Stages run in a fixed order and the first one that produces a reply wins:

    off_topic -> advice -> page_shortcut -> scripted -> model

Every stage appends the user turn and then the bot turn to the session before
returning. The model stage is the only one that touches the network: search
failures are absorbed by the augmenter, model failures surface as
``UpstreamModelFailure`` and leave the session untouched.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from app.errors import UpstreamModelFailure
from app.knowledge.flows import Flows
from app.knowledge.matcher import KnowledgeMatcher
from app.metrics import CHAT_ROUTE_TOTAL, MODEL_FAILURES_TOTAL, MODEL_SECONDS
from app.providers.base import ChatClient, ProviderError
from app.search.base import SearchAugmenter
from app.sessions.models import Session

from .filters import PageShortcutTable, is_advice_request, is_off_topic
from .postprocess import build_suggestions, render_reply, sources_footer
from .prompt import build_messages

logger = logging.getLogger("buddy.router")

END_CHAT_PHRASES = ("end chat", "stop", "close chat")
END_CHAT_REPLY = "Session ended. Start again anytime."


def is_end_chat(message: str) -> bool:
    return (message or "").strip().lower() in END_CHAT_PHRASES


@dataclass
class RouteResult:
    reply: str
    suggested: List[str]
    stage: str
    sources: List[Dict[str, str]] = field(default_factory=list)

    def to_body(self) -> Dict[str, object]:
        body: Dict[str, object] = {"reply": self.reply, "suggested": list(self.suggested)}
        if self.sources:
            body["sources"] = list(self.sources)
        return body


class ConversationRouter:
    def __init__(
        self,
        flows: Flows,
        matcher: KnowledgeMatcher,
        search: SearchAugmenter,
        chat_client: ChatClient,
        context_turns: int = 6,
        search_top_k: int = 3,
        model_timeout: float = 20.0,
        clock: Callable[[], float] = time.time,
    ):
        self.flows = flows
        self.matcher = matcher
        self.search = search
        self.chat_client = chat_client
        self.shortcuts = PageShortcutTable(flows.page_shortcuts)
        self.context_turns = context_turns
        self.search_top_k = search_top_k
        self.model_timeout = model_timeout
        self._clock = clock

    def _finish(
        self,
        session: Session,
        message: str,
        page: Optional[str],
        reply: str,
        suggested: Sequence[str],
        stage: str,
        sources: Optional[List[Dict[str, str]]] = None,
        request_id: Optional[str] = None,
    ) -> RouteResult:
        now = self._clock()
        session.append("user", message, page=page, timestamp=now)
        session.append("bot", reply, page=page, timestamp=now)
        CHAT_ROUTE_TOTAL.labels(stage=stage).inc()
        logger.info(json.dumps({
            "event": "chat_routed",
            "stage": stage,
            "sessionId": session.id,
            "turns": len(session.turns),
            "requestId": request_id,
        }))
        return RouteResult(reply=reply, suggested=list(suggested), stage=stage, sources=sources or [])

    async def route(
        self,
        session: Session,
        message: str,
        page: Optional[str] = None,
        lang: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> RouteResult:
        flows = self.flows
        # context excludes the message being answered
        history = session.recent(self.context_turns)

        if is_off_topic(message, flows.off_topic_terms):
            return self._finish(session, message, page, flows.off_topic_reply, flows.default_suggestions,
                                "off_topic", request_id=request_id)

        if is_advice_request(message):
            return self._finish(session, message, page, flows.advice_reply, flows.advice_suggestions,
                                "advice", request_id=request_id)

        shortcut = self.shortcuts.lookup(page, message)
        if shortcut is not None:
            return self._finish(session, message, page, shortcut.response, shortcut.suggested,
                                "page_shortcut", request_id=request_id)

        scripted = self.matcher.match(message)
        if scripted is not None:
            return self._finish(session, message, page, scripted.reply, scripted.suggested,
                                "scripted", request_id=request_id)

        results = await self.search.search(message, top_k=self.search_top_k, request_id=request_id)
        raw = await self._complete(build_messages(flows, history, message, results, lang), request_id)
        reply = render_reply(raw) + sources_footer(results)
        return self._finish(
            session,
            message,
            page,
            reply,
            build_suggestions(results, flows.generic_suggestions),
            "model",
            sources=[r.to_source() for r in results],
            request_id=request_id,
        )

    async def _complete(self, messages, request_id: Optional[str]) -> str:
        client = self.chat_client
        provider = client.provider_name
        model = client.model or "unknown"
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(client.complete(messages, request_id=request_id), timeout=self.model_timeout)
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                reason = "timeout"
            elif isinstance(exc, ProviderError):
                reason = exc.reason
            else:
                reason = type(exc).__name__
            MODEL_FAILURES_TOTAL.labels(provider=provider, reason=reason).inc()
            logger.error(
                json.dumps({"event": "model_failure", "provider": provider, "model": model,
                            "reason": reason, "requestId": request_id}),
                exc_info=True,
            )
            raise UpstreamModelFailure() from exc
        finally:
            MODEL_SECONDS.labels(provider=provider, model=model).observe(time.perf_counter() - start)
