"""Structured logging setup using structlog.

One shared processor chain (context vars, log level, timestamps, stack info)
feeds either a coloured ConsoleRenderer for local development or a
JSONRenderer in production.  The composition root passes ``app_env`` from
:class:`~src.config.settings.Settings`; ``APP_ENV`` in the environment is the
fallback for callers (tests, one-off scripts) that configure logging before
settings exist.

Standard-library ``logging`` is routed through the same formatter so that
uvicorn, httpx and chromadb log lines look like ours.

Request- and ingestion-scoped identifiers are attached with
:func:`bind_context` and show up on every event emitted inside that scope.
"""

import logging
import os
import sys
from typing import Any, TextIO

import structlog


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    app_env: str | None = None,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output regardless of environment.
        app_env: Deployment environment; ``"production"`` selects JSON.
                 Defaults to the ``APP_ENV`` environment variable.
        stream: Where log lines go. Defaults to stdout; the CLI passes
                stderr so command output stays clean.

    Returns:
        A configured structlog BoundLogger.
    """
    env = app_env if app_env is not None else os.environ.get("APP_ENV", "development")
    use_json = json_output or env == "production"
    out = stream if stream is not None else sys.stdout

    # contextvars must run first so bound request/ingestion ids are merged
    # before anything renders.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=out.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # chromadb and httpx are chatty at INFO.
    for noisy in ("chromadb", "httpx"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, root_logger.level))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger bound with ``logger_name``.

    Configures logging with defaults on first use if nobody has yet.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


def bind_context(**values: Any) -> None:
    """Bind key/value pairs onto every event logged in the current context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Drop all context bound with :func:`bind_context`."""
    structlog.contextvars.clear_contextvars()
