"""structlog setup shared by the API process, the sweep CLI and simulation.py.

Console output in development, one JSON object per line elsewhere. Every
entry carries the service name and environment; entries logged during a
request also carry the request_id bound by RequestIDMiddleware.

Event names are dotted, `<area>.<what_happened>`:

    logger.info("order.confirmed", order_id=str(order.id), total=order.total)
    logger.warning("sweep.auto_confirmed", order_id=str(order.id))

Money (Decimal), ids (UUID) and timestamps may be passed as-is; they are
rendered as strings so the JSON output never fails on them.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog

SERVICE_NAME = "resale-escrow"

_QUIET_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncpg",
    "httpx",
    "httpcore",
)


def _stringify(value: Any) -> Any:
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _render_domain_values(
    _logger: Any, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    for key, value in event_dict.items():
        event_dict[key] = _stringify(value)
    return event_dict


def _add_service(environment: str) -> structlog.types.Processor:
    def processor(
        _logger: Any, _method: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", environment)
        return event_dict

    return processor


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    environment: str = "development",
) -> None:
    """Configure structlog and route the stdlib root logger through it.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_logs: JSON lines (deployed) instead of the coloured console.
        environment: Stamped on every entry as `env`.
    """
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service(environment),
        _render_domain_values,
    ]

    if json_logs:
        renderers: list[structlog.types.Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
