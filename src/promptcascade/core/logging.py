# src/promptcascade/core/logging.py
"""Structured logging for cascade runs.

A run talks to three chatty libraries: httpx streams every generation
request, SQLAlchemy persists prompts and trace spans, and OpenTelemetry
exports the cascade/node/action spans. Their stdlib records go through the
same structlog processor chain as our own, so ``--json-logs`` yields one JSON
shape per line. Log lines go to stderr; stdout belongs to the run formatters.

While a cascade runs, :func:`cascade_log_context` binds the root node and,
once the trace exists, its trace id, so nested child cascades and plugin
code log against the run they belong to without threading ids through.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# One line per HTTP request and SSE connection from the generation client
_HTTP_LOGGERS = ("httpx", "httpcore")
# Statement echo from the prompt store and trace recorder
_STORE_LOGGERS = ("sqlalchemy", "sqlalchemy.engine")
# Span processor and exporter internals
_TRACING_LOGGERS = ("opentelemetry", "opentelemetry.sdk")

_NOISY_LOGGERS: tuple[str, ...] = (*_HTTP_LOGGERS, *_STORE_LOGGERS, *_TRACING_LOGGERS)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop the bookkeeping keys ProcessorFormatter always adds."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON lines. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would go stale
        cache_logger_on_first_use=False,
    )

    # Logs go to stderr so run output on stdout stays pipeable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound structlog logger.
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def cascade_log_context(root_node_id: str) -> Iterator[None]:
    """Bind ``root_node_id`` to every log line emitted inside the block.

    ``trace_id`` starts as None and is filled in by :func:`bind_trace_id`.
    Both keys revert to their previous values on exit, so a child cascade
    run inside a parent leaves the parent's context intact.
    """
    with structlog.contextvars.bound_contextvars(root_node_id=root_node_id, trace_id=None):
        yield


def bind_trace_id(trace_id: str | None) -> None:
    """Attach the run's trace id to subsequent log lines in this context."""
    structlog.contextvars.bind_contextvars(trace_id=trace_id)
