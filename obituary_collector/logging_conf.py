"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Iterable

import structlog

from .config.loader import HOME_ENV_VAR, _slugify

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get(HOME_ENV_VAR)
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    collector_log = log_dir / "collector.log"
    (log_dir / "sources").mkdir(parents=True, exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": "WARNING" if not verbose else "DEBUG",
                        "formatter": "plain",
                    },
                    "collector_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(collector_log),
                        "formatter": "plain",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    "obituary_collector": {
                        "handlers": ["console", "collector_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger("obituary_collector")


def source_logger(domain: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to a specific source and ensure its file handler exists."""

    configure_logging(verbose)
    slug = _slugify(domain) or "source"
    log_path = source_log_path(domain)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"obituary_collector.source.{slug}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        global_logger = logging.getLogger("obituary_collector")
        if global_logger.handlers:
            file_handler.setFormatter(global_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(source=domain)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_source_logs() -> Iterable[Path]:
    """Yield available source log file paths."""

    sources_dir = _default_log_dir() / "sources"
    if not sources_dir.exists():
        return []
    return sorted(p for p in sources_dir.glob("*.log"))


def collector_log_path() -> Path:
    return _default_log_dir() / "collector.log"


def source_log_path(domain: str) -> Path:
    return _default_log_dir() / "sources" / f"{_slugify(domain) or 'source'}.log"


__all__ = [
    "available_source_logs",
    "collector_log_path",
    "configure_logging",
    "source_log_path",
    "source_logger",
    "tail_log",
]
