"""structlog setup shared by the API process and the delivery workers.

Workers run many claim loops in one event loop, so per-delivery fields
(``tenant_id``, ``subscription_id``, ``delivery_id``, ``worker``) are kept in
contextvars and merged into every event. Values under secret-like keys are
masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

SERVICE_NAME = "courier"

# Event keys whose values are never written to logs
REDACTED_KEYS = frozenset({"secret", "signature", "authorization"})

_configured = False


def redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask signing secrets and signatures that end up in an event."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def add_service(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _processors(json_output: bool) -> list[Processor]:
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]
    if json_output:
        chain += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structlog and route stdlib records to the same stream.

    Storage and queue modules log through ``logging.getLogger(__name__)``;
    they share the level and the stream with structlog output.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: ``json`` for production, ``text`` for a console renderer.

    Example:
        ```python
        from courier.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        get_logger(__name__).info("Worker pool starting", concurrency=8)
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(levelname)s %(name)s %(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(log_level)
    # httpx logs every outbound request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=_processors(format.lower() == "json"),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a logger that tags events with its module name.

    The logger resolves the configuration on every call, so loggers created
    at import time pick up a later ``configure_logging``.
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name, logger_name=name or SERVICE_NAME)


def bind_context(**kwargs: object) -> None:
    """Attach fields to every event logged from the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


logger = get_logger(SERVICE_NAME)
