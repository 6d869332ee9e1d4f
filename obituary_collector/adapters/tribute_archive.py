"""Tribute Archive funeral home sites."""

from __future__ import annotations

from typing import ClassVar

from ..config import SourceConfig
from .base import BaseHtmlAdapter, register_adapter, with_query


@register_adapter
class TributeArchiveAdapter(BaseHtmlAdapter):
    """``?page=N`` pagination, or ``/page/N`` when ``pagination_style`` is ``path``."""

    adapter_type = "tribute_archive"
    label = "Tribute Archive (funeral home sites)"
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="tribute-listing"] div[class*="tribute"]',
        'div[class*="obituary-listing"] div[class*="obituary"]',
        'ul[class*="tributes"] li',
        'div[class*="obit-list"] article',
        'div[class*="recent-tributes"] div[class*="tribute-item"]',
    )
    name_selectors: ClassVar[tuple[str, ...]] = (
        "h2 a",
        "h3 a",
        "h4 a",
        '[class*="tribute-name"]',
        '[class*="name"] a',
        'a[class*="tribute"]',
        "h2",
        "h3",
        "h4",
    )
    date_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="tribute-dates"]',
        '[class*="date"]',
        "time",
    )
    location_selectors: ClassVar[tuple[str, ...]] = ()
    funeral_home_selectors: ClassVar[tuple[str, ...]] = ()
    detail_description_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="tribute-text"]',
        'div[class*="obituary-text"]',
        'div[class*="tribute-content"]',
        'div[class*="entry-content"]',
    )
    detail_image_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="tribute"] img[class*="portrait"]',
        'div[class*="tribute"] img[class*="photo"]',
        'div[class*="obituary"] img',
        'img[class*="tribute-image"]',
    )

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        pages = range(2, source.max_pages + 1)
        if source.pagination_style == "path":
            base_url = source.base_url.rstrip("/")
            return [base_url] + [f"{base_url}/page/{page}" for page in pages]
        return [source.base_url] + [with_query(source.base_url, page=page) for page in pages]


__all__ = ["TributeArchiveAdapter"]
