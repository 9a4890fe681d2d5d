"""structlog setup shared by the API process and the reaper worker.

Every event carries ``service`` and ``component`` so API and reaper lines
can be told apart once they land in the same sink.
"""

import logging

import structlog

from wikirace.config import Settings

SERVICE_NAME = "wikirace"

# Libraries whose DEBUG output is one line per pub/sub poll or connection
_NOISY_LOGGERS = ("redis", "httpx", "httpcore")


def add_component(component: str) -> structlog.types.Processor:
    """Processor stamping the service and process role on every event."""

    def _add(_logger: object, _method: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("component", component)
        return event_dict

    return _add


def setup_logging(settings: Settings, component: str = "api") -> None:
    """Configure structlog for JSON (default) or console output."""
    renderer: structlog.types.Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.debug)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_component(component),
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
