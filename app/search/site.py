from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from app.errors import SearchUnavailable

from .base import SearchAugmenter, SearchResult

logger = logging.getLogger("buddy.search")

BOT_USER_AGENT = "InvestOnlineBot/1.0"
MAX_CONTENT_CHARS = 8000
SNIPPET_CHARS = 240
STRIP_SELECTORS = "script, style, nav, footer, header, iframe, noscript, .advertisement, .cookie-banner, .popup"
MAIN_SELECTORS = ("main", "article", ".content", ".main-content", "#main-content", "#content", ".page-content", "body")
STOP_WORDS = frozenset("""
the a an and or but in on at to for of with by from as is was are were be been being have has had do does did
will would should could may might can this that these those it its they their them we us our you your
""".split())

_NON_WORD = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def extract_keywords(text: str, limit: int = 20) -> List[str]:
    """Most frequent lowercase words longer than 3 chars, stop words removed."""
    if not text:
        return []
    words = [w for w in _NON_WORD.sub(" ", text.lower()).split() if len(w) > 3 and w not in STOP_WORDS]
    return [w for w, _ in Counter(words).most_common(limit)]


@dataclass
class IndexedPage:
    url: str
    title: str
    meta_description: str
    content: str
    keywords: List[str]
    fetched_at: float

    def score(self, query_keywords: Iterable[str]) -> int:
        title = self.title.lower()
        meta = self.meta_description.lower()
        content = self.content.lower()
        kws = set(self.keywords)
        total = 0
        for kw in query_keywords:
            if kw in title:
                total += 10
            if kw in meta:
                total += 5
            if kw in kws:
                total += 3
            if kw in content:
                total += 1
        return total

    def snippet(self) -> str:
        if self.meta_description:
            return self.meta_description
        return self.content[:SNIPPET_CHARS]


def parse_page(url: str, html: str, fetched_at: float) -> IndexedPage:
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(strip=True) if h1 else ""
    title = title or "Untitled"

    meta = soup.find("meta", attrs={"name": "description"}) or soup.find("meta", attrs={"property": "og:description"})
    meta_description = (meta.get("content") or "").strip() if meta else ""

    for node in soup.select(STRIP_SELECTORS):
        node.decompose()
    content = ""
    for selector in MAIN_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            content = node.get_text(" ")
            break
    content = _SPACES.sub(" ", content).strip()[:MAX_CONTENT_CHARS]

    return IndexedPage(
        url=url,
        title=title,
        meta_description=meta_description,
        content=content,
        keywords=extract_keywords(f"{title} {meta_description} {content}"),
        fetched_at=fetched_at,
    )


class SiteSearchAugmenter(SearchAugmenter):
    """In-memory keyword index over the site's own pages, seeded from its sitemap.

    Only URLs on the allowed domains are fetched. Pages are refetched once older than
    ``cache_ttl_seconds``; at most ``max_pages`` are kept, oldest evicted first.
    """

    name = "site"

    def __init__(
        self,
        allowed_domains: Iterable[str],
        sitemap_url: str = "",
        timeout: float = 4.0,
        fetch_timeout: float = 8.0,
        max_pages: int = 200,
        cache_ttl_seconds: int = 86400,
        index_on_startup: int = 50,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(timeout=timeout)
        self.allowed_domains = tuple(d.strip().lower() for d in allowed_domains if d and d.strip())
        self.sitemap_url = sitemap_url
        self.fetch_timeout = fetch_timeout
        self.max_pages = max(1, max_pages)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.index_on_startup = max(0, index_on_startup)
        self._transport = transport
        self._clock = clock
        self._pages: "OrderedDict[str, IndexedPage]" = OrderedDict()
        self._task: Optional[asyncio.Task] = None

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            transport=self._transport,
            follow_redirects=True,
            headers={"User-Agent": BOT_USER_AGENT},
        )

    def is_allowed_url(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        if parsed.scheme not in ("http", "https") or not host:
            return False
        allowed = any(host == d or host.endswith(f".{d}") for d in self.allowed_domains)
        if not allowed:
            logger.info(json.dumps({"event": "search_url_blocked", "url": url}))
        return allowed

    def index_size(self) -> int:
        return len(self._pages)

    async def fetch_and_index(self, url: str, client: Optional[httpx.AsyncClient] = None) -> Optional[IndexedPage]:
        if not self.is_allowed_url(url):
            return None
        cached = self._pages.get(url)
        now = self._clock()
        if cached is not None and now - cached.fetched_at < self.cache_ttl_seconds:
            return cached
        try:
            if client is None:
                async with self._client(self.fetch_timeout) as own:
                    resp = await own.get(url, headers={"Accept": "text/html,application/xhtml+xml"})
            else:
                resp = await client.get(url, headers={"Accept": "text/html,application/xhtml+xml"})
        except httpx.HTTPError as exc:
            logger.warning(json.dumps({"event": "search_index_fetch_error", "url": url, "error": type(exc).__name__}))
            return None
        if resp.status_code >= 400:
            logger.info(json.dumps({"event": "search_index_fetch_failed", "url": url, "status": resp.status_code}))
            return None

        page = parse_page(url, resp.text, fetched_at=now)
        self._pages[url] = page
        self._pages.move_to_end(url)
        while len(self._pages) > self.max_pages:
            evicted, _ = self._pages.popitem(last=False)
            logger.debug(json.dumps({"event": "search_index_evicted", "url": evicted}))
        logger.info(json.dumps({
            "event": "search_indexed",
            "url": url,
            "contentChars": len(page.content),
            "keywords": len(page.keywords),
        }))
        return page

    async def crawl_sitemap(self, sitemap_url: str, client: Optional[httpx.AsyncClient] = None) -> List[str]:
        if not self.is_allowed_url(sitemap_url):
            return []
        try:
            if client is None:
                async with self._client(self.fetch_timeout) as own:
                    resp = await own.get(sitemap_url)
            else:
                resp = await client.get(sitemap_url)
        except httpx.HTTPError as exc:
            logger.warning(json.dumps({"event": "sitemap_fetch_error", "url": sitemap_url, "error": type(exc).__name__}))
            return []
        if resp.status_code >= 400:
            logger.warning(json.dumps({"event": "sitemap_fetch_failed", "url": sitemap_url, "status": resp.status_code}))
            return []
        soup = BeautifulSoup(resp.text, "html.parser")
        urls = [loc.get_text(strip=True) for loc in soup.select("url > loc")]
        return [u for u in urls if u and self.is_allowed_url(u)]

    async def build_index(self, limit: Optional[int] = None) -> int:
        if not self.sitemap_url:
            return 0
        limit = self.index_on_startup if limit is None else limit
        async with self._client(self.fetch_timeout) as client:
            urls = await self.crawl_sitemap(self.sitemap_url, client=client)
            if not urls:
                logger.warning(json.dumps({"event": "search_index_empty", "sitemap": self.sitemap_url}))
                return 0
            sem = asyncio.Semaphore(8)

            async def _one(u: str) -> None:
                async with sem:
                    await self.fetch_and_index(u, client=client)

            await asyncio.gather(*(_one(u) for u in urls[:limit]))
        logger.info(json.dumps({"event": "search_index_built", "pages": len(self._pages), "sitemapUrls": len(urls)}))
        return len(self._pages)

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.build_index()
            except Exception:
                logger.exception(json.dumps({"event": "search_index_build_error"}))
            await asyncio.sleep(max(60, self.cache_ttl_seconds))

    async def start(self) -> None:
        if self.sitemap_url and self._task is None:
            self._task = asyncio.create_task(self._refresh_loop())

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _search(self, query: str, top_k: int) -> List[SearchResult]:
        if not self._pages:
            if self.sitemap_url and self._task is None:
                raise SearchUnavailable("search index not built")
            return []
        query_keywords = extract_keywords(query)
        if not query_keywords:
            return []
        scored = []
        for page in list(self._pages.values()):
            s = page.score(query_keywords)
            if s > 0:
                scored.append((s, page))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            SearchResult(title=p.title, url=p.url, snippet=p.snippet(), score=float(s))
            for s, p in scored[:top_k]
        ]
