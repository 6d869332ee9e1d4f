"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    CircuitBreakerConfig,
    FetchPolicy,
    GlobalConfig,
    NormalizerConfig,
    ResetConfig,
    SourceConfig,
)

__all__ = [
    "CircuitBreakerConfig",
    "ConfigLocator",
    "ConfigRepository",
    "FetchPolicy",
    "GlobalConfig",
    "NormalizerConfig",
    "ResetConfig",
    "SourceConfig",
]
