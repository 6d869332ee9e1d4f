"""Map raw adapter field sets onto the canonical :class:`Obituary` record."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Callable
from urllib.parse import urlparse

from dateutil import parser as date_parser

from ..config import NormalizerConfig, SourceConfig
from ..errors import ValidationError
from ..records import Obituary, RawRecord

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)\b", re.IGNORECASE)
_ABBREVIATION_DOT = re.compile(r"(?<=[A-Za-z])\.")
_ISO_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:[T ].*)?$")
_BARE_YEAR = re.compile(r"^\d{4}$")
_HAS_YEAR = re.compile(r"\b\d{4}\b")
_NAME_SUFFIX = re.compile(r"\s+obit(?:uary)?\.?$", re.IGNORECASE)
_AGE_PATTERNS = (
    re.compile(r"\bage[d]?\s+(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bat\s+the\s+age\s+of\s+(\d{1,3})\b", re.IGNORECASE),
)
_PROVINCE_SUFFIX = re.compile(r",?\s*(ON|Ontario|Canada)\s*$", re.IGNORECASE)
_POSTAL_SUFFIX = re.compile(r",?\s*[A-Z]\d[A-Z]\s*\d[A-Z]\d\s*$", re.IGNORECASE)
_PLACEHOLDER_IMAGE = re.compile(
    r"^(placeholder|default|generic|no-?photo|no-?image|avatar|logo|spacer|1x1)(?![a-z])",
    re.IGNORECASE,
)
DATE_RANGE_SEPARATORS = (" - ", " – ", " — ", " to ", "~")
_PARSE_DEFAULT = datetime(1900, 1, 1)
TORONTO_AREAS = frozenset(
    {
        "north york",
        "scarborough",
        "etobicoke",
        "east york",
        "york",
        "willowdale",
        "don mills",
        "agincourt",
        "thornhill",
    }
)
MAX_PLAUSIBLE_AGE = 130


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------
def clean_text(value: Any) -> str:
    """Strip control characters and collapse whitespace."""

    if value is None:
        return ""
    text = _CONTROL_CHARS.sub(" ", str(value))
    return " ".join(text.split())


def parse_date(value: Any) -> date | None:
    """Parse a free-text listing date; bare years and year-less text are rejected."""

    text = clean_text(value)
    if not text or _BARE_YEAR.match(text) or not _HAS_YEAR.search(text):
        return None
    iso = _ISO_PREFIX.match(text)
    if iso:
        try:
            return date.fromisoformat(iso.group(1))
        except ValueError:
            return None
    cleaned = _ABBREVIATION_DOT.sub("", _ORDINAL.sub(r"\1", text))
    try:
        return date_parser.parse(cleaned, default=_PARSE_DEFAULT).date()
    except (ValueError, OverflowError):
        return None


def parse_date_range(text: Any) -> tuple[date | None, date | None]:
    """Split "birth - death" style text; a single date is taken as the death date."""

    cleaned = clean_text(text)
    if not cleaned:
        return None, None
    for separator in DATE_RANGE_SEPARATORS:
        if separator in cleaned:
            birth, death = cleaned.split(separator, 1)
            return parse_date(birth.strip()), parse_date(death.strip())
    return None, parse_date(cleaned)


def _year_start(value: Any) -> date | None:
    text = clean_text(value)
    if not _BARE_YEAR.match(text):
        return None
    try:
        return date(int(text), 1, 1)
    except ValueError:
        return None


def extract_age_from_text(text: str) -> int | None:
    for pattern in _AGE_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def calculate_age(birth: date, death: date) -> int:
    years = death.year - birth.year
    if (death.month, death.day) < (birth.month, birth.day):
        years -= 1
    return years


def normalize_city(city: str) -> str:
    """Return the canonical display form of ``city``."""

    cleaned = clean_text(city)
    if not cleaned:
        return ""
    cleaned = _PROVINCE_SUFFIX.sub("", cleaned)
    cleaned = _POSTAL_SUFFIX.sub("", cleaned)
    cleaned = cleaned.strip(", ")
    # Multi-part locations ("Oakville, Halton") keep the leading city.
    cleaned = cleaned.split(",", 1)[0].strip()
    if cleaned.lower() in TORONTO_AREAS:
        return "Toronto"
    return cleaned.title()


def city_slug(city: str) -> str:
    canonical = normalize_city(city)
    slug = "".join(ch.lower() if ch.isalnum() else "-" for ch in canonical)
    return re.sub(r"-{2,}", "-", slug).strip("-")


def is_placeholder_image(url: str) -> bool:
    """Judge only the file name; hosts and directories often carry these words."""

    filename = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    return bool(_PLACEHOLDER_IMAGE.search(filename))


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def _coerce_age(value: Any) -> int | None:
    try:
        age = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if 0 < age <= MAX_PLAUSIBLE_AGE:
        return age
    return None


# ----------------------------------------------------------------------
# Normalizer
# ----------------------------------------------------------------------
class Normalizer:
    """Validate required fields and clean optional ones."""

    def __init__(
        self,
        config: NormalizerConfig | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config or NormalizerConfig()
        self._today = today

    def normalize(self, raw: RawRecord, source: SourceConfig) -> Obituary:
        """Return an :class:`Obituary` or raise :class:`ValidationError`."""

        try:
            return self._build(raw, source)
        except (ValueError, TypeError, OverflowError) as exc:
            raise ValidationError("record", f"{type(exc).__name__}: {exc}") from exc

    def _build(self, raw: RawRecord, source: SourceConfig) -> Obituary:
        name = self._name(raw)
        date_of_birth, date_of_death = self._dates(raw)
        if date_of_death is None:
            raise ValidationError("date_of_death", "missing or unparseable")
        if date_of_death > self._today():
            raise ValidationError("date_of_death", f"{date_of_death.isoformat()} is in the future")
        if date_of_birth is not None and date_of_birth > date_of_death:
            date_of_birth = None

        description = _truncate(clean_text(raw.get("description")), self.config.description_max_length)
        location = clean_text(raw.get("location")) or source.city
        funeral_home = clean_text(raw.get("funeral_home")) or source.funeral_home or source.name

        return Obituary(
            name=name,
            date_of_death=date_of_death,
            date_of_birth=date_of_birth,
            age=self._age(raw, description, date_of_birth, date_of_death),
            funeral_home=funeral_home,
            location=_truncate(location, self.config.location_max_length),
            city_normalized=city_slug(location),
            image_url=self._image(raw),
            description=description,
            source_url=clean_text(raw.get("detail_url")) or raw.listing_url,
            source_domain=source.domain,
            source_type=source.adapter_type,
        )

    # ------------------------------------------------------------------
    def _name(self, raw: RawRecord) -> str:
        name = _NAME_SUFFIX.sub("", clean_text(raw.get("name"))).strip(" ,")
        if len(name) < self.config.min_name_length:
            raise ValidationError(
                "name", f"must be at least {self.config.min_name_length} characters"
            )
        return name

    @staticmethod
    def _dates(raw: RawRecord) -> tuple[date | None, date | None]:
        birth, death = parse_date_range(raw.get("date_text"))
        death = parse_date(raw.get("date_of_death")) or death
        birth = parse_date(raw.get("date_of_birth")) or birth
        if death is None:
            death = _year_start(raw.get("year_death"))
        if birth is None:
            birth = _year_start(raw.get("year_birth"))
        if death is None:
            # Notices are usually published within days of the death.
            death = parse_date(raw.get("published_date"))
        return birth, death

    @staticmethod
    def _age(
        raw: RawRecord, description: str, birth: date | None, death: date
    ) -> int | None:
        age = _coerce_age(raw.get("age")) if raw.get("age") not in (None, "") else None
        if age is None and description:
            age = _coerce_age(extract_age_from_text(description))
        if age is None and birth is not None:
            age = _coerce_age(calculate_age(birth, death))
        return age

    @staticmethod
    def _image(raw: RawRecord) -> str | None:
        url = clean_text(raw.get("image_url"))
        if not url or not url.startswith(("http://", "https://")) or is_placeholder_image(url):
            return None
        return url


__all__ = [
    "Normalizer",
    "calculate_age",
    "city_slug",
    "clean_text",
    "extract_age_from_text",
    "is_placeholder_image",
    "normalize_city",
    "parse_date",
    "parse_date_range",
]
