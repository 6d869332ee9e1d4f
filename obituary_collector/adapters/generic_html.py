"""Configurable adapter for simple funeral-home listing pages."""

from __future__ import annotations

from typing import ClassVar

from ..config import SourceConfig
from .base import BaseHtmlAdapter, register_adapter, with_query


@register_adapter
class GenericHtmlAdapter(BaseHtmlAdapter):
    """Selectors come from ``SourceConfig.selectors``; pagination via ``pagination_param``."""

    adapter_type = "generic_html"
    label = "Generic HTML (configurable selectors)"
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obituary"]',
        'article[class*="obit"]',
    )

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        urls = [source.base_url]
        if source.pagination_param:
            urls.extend(
                with_query(source.base_url, **{source.pagination_param: page})
                for page in range(2, source.max_pages + 1)
            )
        return urls


__all__ = ["GenericHtmlAdapter"]
