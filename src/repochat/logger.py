"""
Structured logging for repochat.

structlog events are routed through the standard ``logging`` module so that
uvicorn, LangChain and our own modules share one set of handlers. Library
modules only call ``get_logger(__name__)``; the CLI and the API server decide
where records go and how they are rendered.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

LevelLike = Union[int, str]

_SHARED_PROCESSORS: tuple[Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)

# HTTP client chatter from the model SDK and the GitHub lookups.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai", "urllib3")


def resolve_level(level: LevelLike) -> int:
    """Accept either a numeric level or a level name such as ``"INFO"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def _formatter(json_output: bool) -> ProcessorFormatter:
    return ProcessorFormatter(
        processors=[ProcessorFormatter.remove_processors_meta, _renderer(json_output)],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


def _configure_structlog(min_level: int) -> None:
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _install_handlers(level: int, handlers: Iterable[logging.Handler]) -> None:
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    quiet = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def configure_logging(
    level: LevelLike = logging.INFO,
    enable_console: bool = True,
    console_level: Optional[LevelLike] = None,
    json_output: bool = False,
) -> None:
    """
    Configure process-wide logging.

    Parameters
    ----------
    level:
        Minimum level for every logger, as a number or a level name.
    enable_console:
        When False, nothing is written to stderr. The CLI uses this so
        command output stays clean unless ``--log`` is given.
    console_level:
        Separate threshold for the console handler. Defaults to ``level``.
    json_output:
        Render one JSON object per line instead of the human console format.
    """
    min_level = resolve_level(level)
    _configure_structlog(min_level)
    logging.captureWarnings(True)

    handler: logging.Handler
    if enable_console:
        handler = logging.StreamHandler()
        handler.setLevel(resolve_level(console_level) if console_level is not None else min_level)
        handler.setFormatter(_formatter(json_output))
    else:
        handler = logging.NullHandler()
    _install_handlers(min_level, [handler])


def redirect_logging_to_file(path: Path, level: LevelLike = logging.INFO) -> None:
    """Send all log records to ``path``, replacing any existing handlers."""
    min_level = resolve_level(level)
    _configure_structlog(min_level)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setFormatter(_formatter(json_output=False))
    _install_handlers(min_level, [handler])


def get_logger(name: Optional[str] = None) -> BoundLogger:
    return structlog.get_logger(name)
