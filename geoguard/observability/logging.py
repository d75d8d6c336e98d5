# geoguard/observability/logging.py
from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from ..settings import AppSettings

__all__ = [
    "configure_logging",
    "bind_request",
    "clear_request",
]


def configure_logging(settings: AppSettings, *, stream: Optional[Any] = None) -> None:
    """
    stdlib logging -> stdout; structlog поверх него.
    JSON-рендер в проде, консольный для локальной отладки.
    """
    level = settings.log.level_numeric
    logging.basicConfig(level=level, stream=stream or sys.stdout, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("geoguard").setLevel(level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer = structlog.processors.JSONRenderer() if settings.log.json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(app=settings.app_name, env=settings.environment.value)


def bind_request(request_id: str, client_ip: str, route: str) -> None:
    structlog.contextvars.bind_contextvars(req_id=request_id, client_ip=client_ip, route=route)


def clear_request() -> None:
    structlog.contextvars.unbind_contextvars("req_id", "client_ip", "route")
