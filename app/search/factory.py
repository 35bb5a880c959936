from app.settings import Settings

from .base import NullSearchAugmenter, SearchAugmenter
from .site import SiteSearchAugmenter


def get_search_augmenter(settings: Settings) -> SearchAugmenter:
    """Site index when a sitemap is configured, otherwise the empty augmenter."""
    if not settings.search_sitemap_url:
        return NullSearchAugmenter(timeout=settings.search_timeout_seconds)
    return SiteSearchAugmenter(
        allowed_domains=settings.search_allowed_domains,
        sitemap_url=settings.search_sitemap_url,
        timeout=settings.search_timeout_seconds,
        max_pages=settings.search_max_pages,
        cache_ttl_seconds=settings.search_cache_ttl_seconds,
        index_on_startup=settings.search_index_on_startup,
    )
