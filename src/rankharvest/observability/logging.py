"""
structlog setup shared by the CLI, the daemon and the scheduler.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, Dict, List

import structlog

if TYPE_CHECKING:
    from rankharvest.config.config import MonitoringConfig


def add_sweep_id(logger: logging.Logger, method_name: str, event_dict: Dict[Any, Any]) -> Dict[Any, Any]:
    """Adds the sweep_id bound by the scheduler, when a sweep is in progress."""
    ctx = structlog.contextvars.get_contextvars()
    if "sweep_id" in ctx:
        event_dict.setdefault("sweep_id", ctx["sweep_id"])
    return event_dict


def configure_logging(config: MonitoringConfig) -> None:
    """
    Route structlog and stdlib records through one handler, JSON when writing to a file.
    """
    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_sweep_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    log_renderer: Any
    if config.log_file:
        log_renderer = structlog.processors.JSONRenderer()
        handler: logging.Handler = logging.FileHandler(config.log_file)
    else:
        log_renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=log_renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(config.log_level.upper())

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("rankharvest.logging")
    logger.info("Logging configured", level=config.log_level, output=config.log_file or "console")
