"""FrontRunner-hosted funeral home sites (``/obituaries/page/N`` listings)."""

from __future__ import annotations

import re
from typing import ClassVar

from selectolax.parser import HTMLParser

from ..config import SourceConfig
from ..engine.normalizer import extract_age_from_text
from ..records import RawRecord
from .base import BaseHtmlAdapter, register_adapter

_LOCATION_FACT = re.compile(
    r"\b(?:of|in|from)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*),?\s*(?:Ontario|ON)\b"
)
_PASSING_FACT = re.compile(r"passed\s+away\s+(peacefully|suddenly|unexpectedly)", re.IGNORECASE)
MAX_SUMMARY_LENGTH = 200


def factual_summary(text: str, name: str) -> str:
    """Condense an obituary body to place, manner and age, else its first sentence."""

    facts: list[str] = []
    location = _LOCATION_FACT.search(text)
    if location:
        facts.append(f"of {location.group(1)}, Ontario")
    passing = _PASSING_FACT.search(text)
    if passing:
        facts.append(f"passed away {passing.group(1).lower()}")
    age = extract_age_from_text(text)
    if age is not None:
        facts.append(f"aged {age}")
    if facts:
        return f"{name}, {', '.join(facts)}."

    first = text.split(". ", 1)[0].rstrip(".")
    if len(first) > MAX_SUMMARY_LENGTH:
        return first[: MAX_SUMMARY_LENGTH - 3].rstrip() + "..."
    return first + "."


@register_adapter
class FrontRunnerAdapter(BaseHtmlAdapter):
    """Funeral home name and city come from the source; details from each obituary page."""

    adapter_type = "frontrunner"
    label = "FrontRunner Professional (funeral home sites)"
    card_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obituary-item"]',
        'div[class*="obit-listing"]',
        'article[class*="obituary"]',
        'div[class*="tribute-item"]',
        'li[class*="obituary"]',
    )
    date_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="date"]',
        "time",
        'span[class*="born"]',
        'span[class*="died"]',
    )
    location_selectors: ClassVar[tuple[str, ...]] = ()
    funeral_home_selectors: ClassVar[tuple[str, ...]] = ()
    detail_description_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obituary-text"]',
        'div[class*="obit-content"]',
        'div[class*="tribute-text"]',
        'div[class*="entry-content"]',
        'article div[class*="content"]',
    )
    detail_image_selectors: ClassVar[tuple[str, ...]] = (
        'div[class*="obituary"] img',
        'div[class*="tribute"] img',
        'img[class*="portrait"]',
        'img[class*="photo"]',
    )

    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        base_url = source.base_url.rstrip("/")
        return [base_url] + [
            f"{base_url}/page/{page}" for page in range(2, source.max_pages + 1)
        ]

    def parse_detail(
        self, tree: HTMLParser, card: RawRecord, source: SourceConfig
    ) -> dict[str, str]:
        enriched = super().parse_detail(tree, card, source)
        published = tree.css_first('meta[property="article:published_time"]')
        if published is not None and published.attributes.get("content"):
            enriched["published_date"] = published.attributes["content"]
        else:
            stamp = tree.css_first("time[datetime]")
            if stamp is not None and stamp.attributes.get("datetime"):
                enriched["published_date"] = stamp.attributes["datetime"]
        return enriched

    def detail_description(self, text: str, card: RawRecord) -> str:
        return factual_summary(text, card.get("name") or "")


__all__ = ["FrontRunnerAdapter", "factual_summary"]
