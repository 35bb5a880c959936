from __future__ import annotations

import html
import re
from typing import List, Optional, Sequence

from app.knowledge.flows import Flows
from app.providers.base import ChatMessage
from app.search.base import SearchResult
from app.sessions.models import Turn

SYSTEM_INSTRUCTIONS = (
    "You are InvestOnline Buddy, the support assistant on investonline.in. "
    "Answer questions about mutual funds, SIPs, registration, KYC and using the InvestOnline platform. "
    "Keep answers short and factual, in plain text. "
    "Never recommend specific funds, stocks or schemes and never give personalised investment advice. "
    "Do not invent fees, returns, dates or phone numbers. "
    "When reference material is provided, prefer it and cite links from it as markdown links."
)

_BR = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


def plain_text(rendered: str) -> str:
    """Widget HTML back to prompt text."""
    return html.unescape(_TAG.sub("", _BR.sub("\n", rendered or ""))).strip()


def system_prompt(flows: Flows, results: Sequence[SearchResult], lang: Optional[str] = None) -> str:
    parts = [SYSTEM_INSTRUCTIONS]
    support = []
    if flows.support_email:
        support.append(f"email {flows.support_email}")
    if flows.support_phone:
        support.append(f"phone {flows.support_phone}")
    if support:
        parts.append(
            f"If you are not sure, say \"{flows.fallback_message}\" and point the user to support ({', '.join(support)})."
        )
    if lang and lang.lower() not in ("en", "en-in", "en-us", "en-gb"):
        parts.append(f"Reply in the language with code '{lang}'.")
    if results:
        refs = "\n\n".join(f"[{i}] {r.title} ({r.url})\n{r.snippet}" for i, r in enumerate(results, start=1))
        parts.append("Reference material from investonline.in:\n" + refs)
    return "\n\n".join(parts)


def build_messages(
    flows: Flows,
    history: Sequence[Turn],
    message: str,
    results: Sequence[SearchResult] = (),
    lang: Optional[str] = None,
) -> List[ChatMessage]:
    messages: List[ChatMessage] = [{"role": "system", "content": system_prompt(flows, results, lang)}]
    for turn in history:
        text = plain_text(turn.text)
        if text:
            messages.append({"role": "assistant" if turn.role == "bot" else "user", "content": text})
    messages.append({"role": "user", "content": message})
    return messages
