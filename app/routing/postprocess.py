from __future__ import annotations

import html
import re
from typing import Iterable, List, Sequence

from app.search.base import SearchResult

# applied to escaped text, so quote and angle-bracket entities terminate a bare URL
_LINKS = re.compile(
    r"\[([^\]\n]+)\]\((https?://[^\s)]+)\)"
    r"|&lt;(https?://(?:(?!&gt;)[^\s<])+)&gt;"
    r"|(https?://(?:(?!&quot;|&#x27;|&lt;|&gt;)[^\s<])+)"
)
_TRAILING = ".,;:!?)"
_NEWLINES = re.compile(r"\r\n?")
_PARAGRAPH = re.compile(r"\n{2,}")


def anchor(url: str, label: str) -> str:
    return f'<a href="{url}" target="_blank" rel="noopener noreferrer">{label}</a>'


def _link(m: "re.Match[str]") -> str:
    if m.group(1) is not None:
        return anchor(m.group(2), m.group(1))
    if m.group(3) is not None:
        return anchor(m.group(3), m.group(3))
    url = m.group(4)
    tail = ""
    while url and url[-1] in _TRAILING:
        tail = url[-1] + tail
        url = url[:-1]
    return anchor(url, url) + tail


def render_reply(raw: str) -> str:
    """Model text to widget HTML.

    The text is escaped first, so only the markup produced here reaches the page:
    markdown links and bare URLs become anchors, blank lines become ``<br><br>``
    and single newlines ``<br>``.
    """
    text = html.escape((raw or "").strip(), quote=True)
    text = _LINKS.sub(_link, text)
    text = _NEWLINES.sub("\n", text)
    text = _PARAGRAPH.sub("<br><br>", text)
    return text.replace("\n", "<br>")


def sources_footer(results: Sequence[SearchResult]) -> str:
    if not results:
        return ""
    lines = [
        f"{i}. {anchor(html.escape(r.url, quote=True), html.escape(r.title or r.url))}"
        for i, r in enumerate(results, start=1)
    ]
    return "<br><br><b>Sources:</b><br>" + "<br>".join(lines)


def build_suggestions(results: Iterable[SearchResult], generic: Iterable[str], limit: int = 5) -> List[str]:
    out: List[str] = []
    seen = set()
    for label in [r.title for r in results] + list(generic):
        key = (label or "").strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(label.strip())
        if len(out) >= limit:
            break
    return out
