"""Legacy.com newspaper obituary listings, browsed by publication date."""

from __future__ import annotations

from datetime import timedelta
from typing import ClassVar

from ..config import SourceConfig
from .base import BaseHtmlAdapter, register_adapter, with_query

MAX_BROWSE_DAYS = 7


@register_adapter
class LegacyComAdapter(BaseHtmlAdapter):
    """Today's page first, then ``/browse?date=YYYY-MM-DD`` for recent days."""

    adapter_type = "legacy_com"
    label = "Legacy.com (Newspaper Obituary Network)"
    link_base = "https://www.legacy.com"
    stop_on_empty_page = False
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obit-card"]',
        'div[class*="PersonCard"]',
        'div[class*="Obituary"] div[class*="Card"]',
        'div[data-testid*="obituary"]',
        'div[class*="results"] div[class*="item"]',
    )
    name_selectors: ClassVar[tuple[str, ...]] = (
        "h3 a",
        "h2 a",
        'a[class*="obit-name"]',
        'a[class*="name"]',
        '[class*="PersonName"]',
        "strong a",
        "h3",
        "h2",
    )
    date_selectors: ClassVar[tuple[str, ...]] = ('[class*="date"]', '[class*="Date"]', "time")
    location_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="location"]',
        '[class*="Location"]',
        '[class*="city"]',
    )
    funeral_home_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="funeral"]',
        '[class*="Funeral"]',
        '[class*="provider"]',
    )
    description_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="excerpt"]',
        '[class*="snippet"]',
        '[class*="summary"]',
        "p",
    )

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        base_url = source.base_url.rstrip("/")
        urls = [base_url]
        if "/today" in base_url:
            browse_base = base_url.replace("/today", "/browse")
            today = self._today()
            for offset in range(1, min(max_age_days, MAX_BROWSE_DAYS) + 1):
                day = today - timedelta(days=offset)
                urls.append(with_query(browse_base, date=day.isoformat()))
        return urls


__all__ = ["LegacyComAdapter"]
