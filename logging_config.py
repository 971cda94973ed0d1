import logging
import os
import sys

import structlog
from structlog.contextvars import merge_contextvars

SERVICE_NAME = "gym-planner"


def _add_service_and_env(service_name: str, app_env: str):
    def processor(logger, method_name, event_dict):
        event_dict["service"] = service_name
        event_dict["env"] = app_env
        return event_dict

    return processor


def configure_logging(level: str | None = None, app_env: str | None = None) -> None:
    """Route structlog through stdlib logging on stdout.

    ``level`` and ``app_env`` fall back to ``LOG_LEVEL`` and ``APP_ENV``.
    Local and dev environments get the console renderer, everything else
    JSON lines.
    """
    log_level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    app_env = app_env or os.getenv("APP_ENV", "local")
    is_dev = app_env in {"local", "dev"}

    shared_processors = [
        merge_contextvars,
        _add_service_and_env(SERVICE_NAME, app_env),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer = structlog.dev.ConsoleRenderer() if is_dev else structlog.processors.JSONRenderer()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
