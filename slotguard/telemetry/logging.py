"""
SlotGuard — Structured Logging

All logging via structlog. Every log entry carries the emitting component
under the ``system`` key; components bind it with ``logger.bind(system=...)``
and anything logged without one is attributed to ``slotguard``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from slotguard.config import LoggingConfig

DEFAULT_SYSTEM = "slotguard"

_CALLSITE = [
    structlog.processors.CallsiteParameter.MODULE,
    structlog.processors.CallsiteParameter.FUNC_NAME,
    structlog.processors.CallsiteParameter.LINENO,
]


def add_default_system(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("system", DEFAULT_SYSTEM)
    return event_dict


def build_processors(config: LoggingConfig, instance_id: str = "") -> list[Any]:
    """The shared processor chain, before the stdlib formatter hand-off."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_default_system,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # Multi-instance runs and explicit requests both want to know where a line came from
    if config.include_callsite or instance_id:
        processors.insert(0, structlog.processors.CallsiteParameterAdder(parameters=_CALLSITE))
    return processors


def setup_logging(config: LoggingConfig, instance_id: str = "") -> None:
    """
    Configure structured logging for the whole process. Call once at startup,
    before building a core.
    """
    if instance_id:
        structlog.contextvars.bind_contextvars(instance_id=instance_id)

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *build_processors(config, instance_id),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
