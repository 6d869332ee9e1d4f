"""Remembering.ca / Postmedia newspaper obituary network."""

from __future__ import annotations

import re
from typing import ClassVar

from selectolax.parser import Node

from ..config import SourceConfig
from .base import BaseHtmlAdapter, node_text, register_adapter, with_query

_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_FULL_DATE_RANGE = re.compile(
    rf"(\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{4}})\s*[-–—~]\s*(\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{4}})"
)
_PUBLISHED = re.compile(
    rf"Published\s+online\s+.*?(\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{4}})\b", re.IGNORECASE
)


@register_adapter
class RememberingCaAdapter(BaseHtmlAdapter):
    """Listing-level facts only; paginates with ``?page=N``."""

    adapter_type = "remembering_ca"
    label = "Remembering.ca / Postmedia Newspapers"
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="ap_ad_wrap"]',
        'div[class*="obituary-card"]',
        'div[class*="obit-listing"] article',
        'div[class*="listing"] div[class*="card"]',
        'ul[class*="obituaries"] li',
        'div[class*="search-results"] div[class*="result"]',
    )
    description_selectors: ClassVar[tuple[str, ...]] = ("p", '[class*="excerpt"]')

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        return [source.base_url] + [
            with_query(source.base_url, page=page) for page in range(2, source.max_pages + 1)
        ]

    def extract_card(self, node: Node, source: SourceConfig, page_url: str) -> dict[str, str]:
        fields = super().extract_card(node, source, page_url)
        # Newspaper photos are not republished.
        fields.pop("image_url", None)
        if fields.get("date_text"):
            return fields
        text = node_text(node)
        dates = _FULL_DATE_RANGE.search(text)
        if dates:
            fields["date_text"] = f"{dates.group(1)} - {dates.group(2)}"
            return fields
        published = _PUBLISHED.search(text)
        if published:
            fields["published_date"] = published.group(1)
        return fields


__all__ = ["RememberingCaAdapter"]
