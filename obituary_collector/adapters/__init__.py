"""Source adapters, one per supported site family."""

from .base import (
    BaseHtmlAdapter,
    ListingDiagnostics,
    SourceAdapter,
    SourceBudget,
    available_adapters,
    get_adapter,
    register_adapter,
)
from .dignity_memorial import DignityMemorialAdapter
from .frontrunner import FrontRunnerAdapter
from .generic_html import GenericHtmlAdapter
from .legacy_com import LegacyComAdapter
from .remembering_ca import RememberingCaAdapter
from .tribute_archive import TributeArchiveAdapter

__all__ = [
    "BaseHtmlAdapter",
    "DignityMemorialAdapter",
    "FrontRunnerAdapter",
    "GenericHtmlAdapter",
    "LegacyComAdapter",
    "ListingDiagnostics",
    "RememberingCaAdapter",
    "SourceAdapter",
    "SourceBudget",
    "TributeArchiveAdapter",
    "available_adapters",
    "get_adapter",
    "register_adapter",
]
