"""Dignity Memorial obituary search listings."""

from __future__ import annotations

from typing import ClassVar

from selectolax.parser import Node

from ..config import SourceConfig
from .base import BaseHtmlAdapter, register_adapter, with_query

MAX_CARD_DESCRIPTION_LENGTH = 200


@register_adapter
class DignityMemorialAdapter(BaseHtmlAdapter):
    """Listing cards only; photos are never kept."""

    adapter_type = "dignity_memorial"
    label = "Dignity Memorial"
    link_base = "https://www.dignitymemorial.com"
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obit-card"]',
        'div[class*="obituary-card"]',
        'article[class*="obit"]',
        'div[class*="search-results"] div[class*="result"]',
        'ul[class*="obituaries"] li',
    )
    date_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="date"]',
        '[class*="life-span"]',
        "time",
    )
    funeral_home_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="funeral"]',
        '[class*="provider"]',
        '[class*="location-name"]',
    )

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        return [source.base_url] + [
            with_query(source.base_url, page=page) for page in range(2, source.max_pages + 1)
        ]

    def extract_card(self, node: Node, source: SourceConfig, page_url: str) -> dict[str, str]:
        fields = super().extract_card(node, source, page_url)
        fields.pop("image_url", None)
        description = fields.get("description", "")
        if len(description) > MAX_CARD_DESCRIPTION_LENGTH:
            fields["description"] = description[: MAX_CARD_DESCRIPTION_LENGTH - 3] + "..."
        return fields


__all__ = ["DignityMemorialAdapter"]
