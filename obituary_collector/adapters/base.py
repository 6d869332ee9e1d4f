"""Adapter interface, shared HTML listing machinery and the adapter registry."""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, ClassVar, Iterable
from urllib.parse import urljoin

import httpx
import structlog
from selectolax.parser import HTMLParser, Node

from ..config import FetchPolicy, SourceConfig
from ..engine.fetcher import FetchDiagnostics, Fetcher
from ..engine.normalizer import is_placeholder_image
from ..errors import AdapterNotFound, FetchError, ParseError
from ..records import RawRecord

_YEAR_RANGE = re.compile(r"^(\d{4})\s*[-–—~]\s*(\d{4})$")
_SINGLE_YEAR = re.compile(r"^\d{4}$")
_TEXT_DATE_RANGE = re.compile(
    r"(\w+\s+\d{1,2},?\s+\d{4})\s*[-–—]\s*(\w+\s+\d{1,2},?\s+\d{4})"
)
_TEXT_YEAR_RANGE = re.compile(r"\b(\d{4})\s*[-–—]\s*(\d{4})\b")
MIN_DESCRIPTION_LENGTH = 15
MIN_DETAIL_TEXT_LENGTH = 50
MAX_DETAIL_DESCRIPTION_LENGTH = 2000


@dataclass(slots=True)
class SourceBudget:
    """Per-source limits applied by the orchestrator."""

    max_pages: int | None = None

    def pages_for(self, source: SourceConfig) -> int:
        if self.max_pages is None:
            return source.max_pages
        return max(1, min(source.max_pages, self.max_pages))


@dataclass(slots=True)
class ListingDiagnostics:
    """Fetch diagnostics for every listing page visited, plus non-fatal page errors."""

    pages: list[FetchDiagnostics] = field(default_factory=list)
    page_errors: list[str] = field(default_factory=list)

    @property
    def first(self) -> FetchDiagnostics | None:
        return self.pages[0] if self.pages else None

    @property
    def duration_ms(self) -> int:
        return sum(page.duration_ms for page in self.pages)


class SourceAdapter(ABC):
    """Fetch and parse one site family into raw field sets."""

    adapter_type: ClassVar[str] = ""
    label: ClassVar[str] = ""

    @abstractmethod
    def fetch_listing(
        self,
        source: SourceConfig,
        fetcher: Fetcher,
        budget: SourceBudget | None = None,
        max_age_days: int = 7,
    ) -> tuple[list[RawRecord], ListingDiagnostics]:
        """Return raw records for ``source`` plus per-page diagnostics."""


# ----------------------------------------------------------------------
# Node helpers
# ----------------------------------------------------------------------
def node_text(node: Node | None) -> str:
    if node is None:
        return ""
    return " ".join(node.text(separator=" ", strip=True).split())


def first_match(node: Node, selectors: Iterable[str], min_length: int = 1) -> Node | None:
    """Return the first node matched by the first selector yielding usable text."""

    for selector in selectors:
        for candidate in node.css(selector):
            if len(node_text(candidate)) >= min_length:
                return candidate
    return None


def resolve_url(href: str | None, base: str) -> str:
    if not href:
        return ""
    href = href.strip()
    if not href or href.startswith(("javascript:", "#", "mailto:")):
        return ""
    return urljoin(base, href)


def with_query(url: str, **params: object) -> str:
    return str(httpx.URL(url).copy_merge_params({k: str(v) for k, v in params.items()}))


def split_year_dates(fields: dict[str, str]) -> None:
    """Move year-only date text into ``year_birth``/``year_death``."""

    text = fields.get("date_text", "").strip()
    years = _YEAR_RANGE.match(text)
    if years:
        fields["year_birth"], fields["year_death"] = years.group(1), years.group(2)
        fields["date_text"] = ""
    elif _SINGLE_YEAR.match(text):
        fields["year_birth"] = text
        fields["date_text"] = ""


# ----------------------------------------------------------------------
# HTML listing adapter
# ----------------------------------------------------------------------
class BaseHtmlAdapter(SourceAdapter):
    """Paginated listing fetch with selectolax card extraction and fallback selectors."""

    card_selectors: ClassVar[tuple[str, ...]] = ()
    name_selectors: ClassVar[tuple[str, ...]] = (
        "h2 a",
        "h3 a",
        "h4 a",
        "h2",
        "h3",
        "h4",
        '[class*="name"]',
        "strong a",
        "strong",
    )
    date_selectors: ClassVar[tuple[str, ...]] = ('[class*="date"]', "time")
    link_selectors: ClassVar[tuple[str, ...]] = (
        'a[href*="obituar"]',
        'a[href*="memorial"]',
        'a[href*="tribute"]',
        "a[href]",
    )
    location_selectors: ClassVar[tuple[str, ...]] = ('[class*="location"]', '[class*="city"]')
    funeral_home_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="funeral"]',
        '[class*="provider"]',
    )
    description_selectors: ClassVar[tuple[str, ...]] = (
        '[class*="excerpt"]',
        '[class*="summary"]',
        "p",
    )
    image_selectors: ClassVar[tuple[str, ...]] = ("img",)
    detail_description_selectors: ClassVar[tuple[str, ...]] = ()
    detail_image_selectors: ClassVar[tuple[str, ...]] = ()
    # Base used to resolve card links; None means the page URL.
    link_base: ClassVar[str | None] = None
    # Listing URLs are successive pages; False when each URL is independent (per-day pages).
    stop_on_empty_page: ClassVar[bool] = True

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._sleep = sleep
        self._today = today
        self.logger = structlog.get_logger("obituary_collector.adapters").bind(
            adapter=self.adapter_type
        )

    # ------------------------------------------------------------------
    def discover_listing_urls(self, source: SourceConfig, max_age_days: int) -> list[str]:
        return [source.base_url]

    def fetch_listing(
        self,
        source: SourceConfig,
        fetcher: Fetcher,
        budget: SourceBudget | None = None,
        max_age_days: int = 7,
    ) -> tuple[list[RawRecord], ListingDiagnostics]:
        budget = budget or SourceBudget()
        urls = self.discover_listing_urls(source, max_age_days)[: budget.pages_for(source)]
        policy = source.fetch_policy(fetcher.policy)
        diagnostics = ListingDiagnostics()
        records: list[RawRecord] = []

        for index, url in enumerate(urls):
            if index and source.min_request_interval > 0:
                self._sleep(source.min_request_interval)
            try:
                response = fetcher.fetch(url, policy)
            except FetchError as exc:
                diagnostics.pages.append(exc.diagnostics)
                if index == 0:
                    raise
                diagnostics.page_errors.append(f"{url}: {exc}")
                self.logger.warning("listing_page_failed", url=url, error=str(exc))
                continue
            diagnostics.pages.append(response.diagnostics)
            cards = self.extract_cards(response.text, source, response.url)
            if not cards:
                if index == 0:
                    raise ParseError(
                        f"no obituary cards found on {url}", diagnostics=response.diagnostics
                    )
                if self.stop_on_empty_page:
                    self.logger.info("listing_exhausted", url=url, page=index + 1)
                    break
                self.logger.info("listing_page_empty", url=url, page=index + 1)
                continue
            if self.fetches_details:
                self.enrich_cards(cards, source, fetcher, policy)
            records.extend(cards)
        return records, diagnostics

    # ------------------------------------------------------------------
    # Detail pages
    # ------------------------------------------------------------------
    @property
    def fetches_details(self) -> bool:
        return bool(self.detail_description_selectors or self.detail_image_selectors)

    def enrich_cards(
        self,
        cards: list[RawRecord],
        source: SourceConfig,
        fetcher: Fetcher,
        policy: FetchPolicy,
    ) -> None:
        """Merge detail-page fields into each card; a failed detail fetch keeps the card as is."""

        for card in cards:
            detail_url = card.get("detail_url")
            if not detail_url:
                continue
            if source.min_request_interval > 0:
                self._sleep(source.min_request_interval)
            try:
                enriched = self.fetch_detail(detail_url, card, source, fetcher, policy)
            except FetchError as exc:
                self.logger.warning("detail_fetch_failed", url=detail_url, error=str(exc))
                continue
            if enriched:
                card.fields.update(enriched)

    def fetch_detail(
        self,
        detail_url: str,
        card: RawRecord,
        source: SourceConfig,
        fetcher: Fetcher,
        policy: FetchPolicy | None = None,
    ) -> dict[str, str] | None:
        response = fetcher.fetch(detail_url, policy)
        return self.parse_detail(HTMLParser(response.text), card, source) or None

    def parse_detail(
        self, tree: HTMLParser, card: RawRecord, source: SourceConfig
    ) -> dict[str, str]:
        enriched: dict[str, str] = {}
        body = first_match(
            tree, self.detail_description_selectors, min_length=MIN_DETAIL_TEXT_LENGTH + 1
        )
        if body is not None:
            enriched["description"] = self.detail_description(node_text(body), card)
        for selector in self.detail_image_selectors:
            image = tree.css_first(selector)
            if image is None:
                continue
            src = image.attributes.get("data-src") or image.attributes.get("src") or ""
            if src and not is_placeholder_image(src):
                enriched["image_url"] = resolve_url(src, source.base_url)
                break
        return enriched

    def detail_description(self, text: str, card: RawRecord) -> str:
        if len(text) > MAX_DETAIL_DESCRIPTION_LENGTH:
            return text[: MAX_DETAIL_DESCRIPTION_LENGTH - 3] + "..."
        return text

    # ------------------------------------------------------------------
    def selectors_for(self, source: SourceConfig, key: str) -> tuple[str, ...]:
        """Per-source override from ``source.selectors``, else the class default."""

        override = source.selectors.get(key)
        if override:
            return (override,)
        return getattr(self, f"{key}_selectors")

    def card_nodes(self, tree: HTMLParser, source: SourceConfig) -> list[Node]:
        for selector in self.selectors_for(source, "card"):
            nodes = tree.css(selector)
            if nodes:
                return nodes
        return self.anchor_card_nodes(tree)

    @staticmethod
    def anchor_card_nodes(tree: HTMLParser) -> list[Node]:
        """Fallback: parents of obituary links, de-duplicated in document order."""

        parents: list[Node] = []
        seen: set[str] = set()
        for anchor in tree.css('a[href*="/obituary/"], a[href*="/obituaries/"]'):
            parent = anchor.parent
            if parent is None:
                continue
            key = parent.html or ""
            if key in seen:
                continue
            seen.add(key)
            parents.append(parent)
        return parents

    def extract_cards(self, html: str, source: SourceConfig, page_url: str) -> list[RawRecord]:
        tree = HTMLParser(html)
        cards: list[RawRecord] = []
        for node in self.card_nodes(tree, source):
            fields = self.extract_card(node, source, page_url)
            if fields.get("name"):
                cards.append(RawRecord(fields=fields, listing_url=page_url))
        return cards

    def extract_card(self, node: Node, source: SourceConfig, page_url: str) -> dict[str, str]:
        base = self.link_base or page_url
        fields: dict[str, str] = {}

        name_node = first_match(node, self.selectors_for(source, "name"))
        fields["name"] = node_text(name_node)
        if name_node is not None and name_node.tag == "a":
            fields["detail_url"] = resolve_url(name_node.attributes.get("href"), base)
        if not fields.get("detail_url"):
            link = first_match(node, self.selectors_for(source, "link"), min_length=0)
            if link is not None:
                fields["detail_url"] = resolve_url(link.attributes.get("href"), base)

        fields["date_text"] = self._date_text(node, source)
        split_year_dates(fields)
        fields["image_url"] = self._image_url(node, source, base)

        location = first_match(node, self.selectors_for(source, "location"))
        if location is not None:
            fields["location"] = node_text(location)
        funeral_home = first_match(node, self.selectors_for(source, "funeral_home"))
        if funeral_home is not None:
            fields["funeral_home"] = node_text(funeral_home)
        description = first_match(
            node, self.selectors_for(source, "description"), min_length=MIN_DESCRIPTION_LENGTH + 1
        )
        if description is not None:
            fields["description"] = node_text(description)
        return {key: value for key, value in fields.items() if value}

    def _date_text(self, node: Node, source: SourceConfig) -> str:
        date_node = first_match(node, self.selectors_for(source, "date"))
        if date_node is None:
            date_node = node.css_first("time[datetime]")
        if date_node is not None:
            return date_node.attributes.get("datetime") or node_text(date_node)
        text = node_text(node)
        match = _TEXT_DATE_RANGE.search(text)
        if match:
            return f"{match.group(1)} - {match.group(2)}"
        years = _TEXT_YEAR_RANGE.search(text)
        if years:
            return f"{years.group(1)} - {years.group(2)}"
        return ""

    def _image_url(self, node: Node, source: SourceConfig, base: str) -> str:
        image = first_match(node, self.selectors_for(source, "image"), min_length=0)
        if image is None:
            return ""
        src = image.attributes.get("data-src") or image.attributes.get("src") or ""
        if not src or is_placeholder_image(src):
            return ""
        return resolve_url(src, base)


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
_ADAPTERS: dict[str, type[SourceAdapter]] = {}


def register_adapter(cls: type[SourceAdapter]) -> type[SourceAdapter]:
    """Class decorator adding ``cls`` under its ``adapter_type``."""

    if not cls.adapter_type:
        raise ValueError(f"{cls.__name__} must declare adapter_type")
    _ADAPTERS[cls.adapter_type] = cls
    return cls


def get_adapter(adapter_type: str, **kwargs) -> SourceAdapter:
    try:
        adapter_cls = _ADAPTERS[adapter_type]
    except KeyError:
        raise AdapterNotFound(f'No adapter registered for type "{adapter_type}"') from None
    return adapter_cls(**kwargs)


def available_adapters() -> dict[str, str]:
    return {name: cls.label for name, cls in sorted(_ADAPTERS.items())}


__all__ = [
    "BaseHtmlAdapter",
    "ListingDiagnostics",
    "SourceAdapter",
    "SourceBudget",
    "available_adapters",
    "first_match",
    "get_adapter",
    "node_text",
    "register_adapter",
    "resolve_url",
    "split_year_dates",
    "with_query",
]
