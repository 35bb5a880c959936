"""Pre-match filters that short-circuit the cascade before any scripted lookup."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple

from app.knowledge.flows import PageShortcut

_HOLDINGS = r"(fund|funds|scheme|schemes|stock|stocks|share|shares|sip|sips|portfolio)"
ADVICE_PHRASING = re.compile(
    r"\b((should|shall) i (invest|buy|sell|redeem|switch|hold|exit|put (my )?money)"
    r"|(recommend|suggest|advise)( me)?( a| an| any| some)?( good| top| best)? " + _HOLDINGS +
    r"|(best|top|safest) " + _HOLDINGS +
    r"|which " + _HOLDINGS +
    r"|where (should i |to )?invest"
    r"|is it (good|safe|wise) to (invest|buy|sell)"
    r"|good time to (invest|buy|sell))\b"
)
INVESTMENT_TERMS = re.compile(
    r"\b(invest|investing|investment|fund|funds|stock|stocks|share|shares|scheme|schemes|sip|portfolio|buy|sell|equity|debt)\b"
)


def is_off_topic(message: str, terms: Sequence[str]) -> bool:
    text = (message or "").lower()
    return any(term and term in text for term in terms)


def is_advice_request(message: str) -> bool:
    """Asking what to buy, sell or hold, as opposed to how the platform works."""
    text = (message or "").lower()
    return bool(ADVICE_PHRASING.search(text)) and bool(INVESTMENT_TERMS.search(text))


@dataclass(frozen=True)
class CompiledShortcut:
    name: str
    page: str
    message: Pattern[str]
    response: str
    suggested: Tuple[str, ...]


class PageShortcutTable:
    """Ordered ``(page fragment, message pattern) -> reply`` rows; first hit wins."""

    def __init__(self, shortcuts: Sequence[PageShortcut]):
        self.rows = tuple(
            CompiledShortcut(
                name=s.name,
                page=s.page.lower(),
                message=re.compile(s.message, re.IGNORECASE),
                response=s.response,
                suggested=s.suggested,
            )
            for s in shortcuts
        )

    def lookup(self, page: Optional[str], message: str) -> Optional[CompiledShortcut]:
        if not page:
            return None
        where = page.lower()
        for row in self.rows:
            if row.page in where and row.message.search(message or ""):
                return row
        return None
