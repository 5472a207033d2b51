from __future__ import annotations

import logging
import os
import threading
from typing import Any

import structlog

_configured = False


def _add_process_context(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict["process"] = os.getpid()
    event_dict["thread_name"] = threading.current_thread().name
    return event_dict


def setup_logging(level: str = "INFO") -> None:
    """Route structlog and stdlib logging through one JSON handler on stderr."""
    global _configured

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    foreign_pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
        _add_process_context,
    ]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            _add_process_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=foreign_pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    root_logger = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
        _configured = True

    resolved_level = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved_level, int):
        structlog.get_logger(__name__).warning("unknown_log_level", level=level, fallback="INFO")
        resolved_level = logging.INFO
    root_logger.setLevel(resolved_level)
