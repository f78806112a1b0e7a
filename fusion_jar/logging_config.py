"""
Structured logging for the execution engine.

Everything goes to stdout through one structlog ``ProcessorFormatter``: JSON
lines by default, a console renderer when running at DEBUG. Records from
plain ``logging.getLogger(__name__)`` loggers get the same timestamp, level
and run context as the named pipeline events from ``get_event_logger``.
"""

import logging
import sys
from typing import Any, List, Optional

import structlog

from .config import settings

SERVICE_NAME = "fusion-jar"

# Aggregator polling is chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def _tag_service(_logger: Any, _method: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _pre_chain(use_json: bool) -> List[structlog.types.Processor]:
    chain: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _tag_service,
    ]
    if use_json:
        chain += [structlog.processors.dict_tracebacks]
    return chain


def setup_logging(log_level: Optional[str] = None, *, json_logs: Optional[bool] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: from settings.log_level)
        json_logs: Force JSON (True) or console (False) rendering
    """
    level_name = (log_level or settings.log_level or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    use_json = json_logs if json_logs is not None else level > logging.DEBUG

    pre_chain = _pre_chain(use_json)
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    logging.basicConfig(handlers=[handler], level=level, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_event_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for named pipeline events (``swap_completed`` etc.)."""
    return structlog.stdlib.get_logger(name)


def bind_run_context(**values: Any) -> None:
    """Attach identifiers (run_id, intent_id) to every log line in this task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
