"""Structured logging setup using structlog.

One shared processor chain (context vars, log level, timestamps, stack
info) feeds either a coloured ConsoleRenderer for local work or a
JSONRenderer for production.  The renderer follows ``APP_ENV``
(default ``"development"``) unless ``json_output`` forces JSON.

Standard-library ``logging`` is routed through the same formatter so that
httpx, openai and uvicorn output lines up with ours.  Those client
libraries log every request at INFO, which drowns out pipeline events
during an embedding or summary run, so they are held at WARNING unless
the service itself runs at DEBUG.

Pipeline stages bind ``document_id`` and ``stage`` with
:func:`bind_stage_context` so every line logged inside a stage carries
them without threading the values through each call.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import structlog

# Third-party loggers that emit one line per HTTP request.
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai", "youtube_transcript_api")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output. When False, uses console rendering in
                     development and JSON in production (detected via APP_ENV).
        stream: Output stream for log lines (default: stdout).  The CLI
                passes stderr so stdout stays clean for its JSON result.

    Returns:
        A configured structlog BoundLogger.
    """
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"
    stream = stream or sys.stdout
    level = log_level.upper()

    # Applied to every event, structlog-native or bridged from stdlib.
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
        # No colour codes when output is piped or captured.
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Events below the level are dropped before any processor runs.
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    # Bridge: stdlib records get the same processors and renderer.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # configure_logging may run more than once
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if level == "DEBUG" else logging.WARNING)

    return structlog.get_logger()


@contextmanager
def bind_stage_context(document_id: str, stage: str) -> Iterator[None]:
    """Bind ``document_id`` and ``stage`` to every log line inside the block.

    Bindings live in contextvars, so concurrent stages running as separate
    asyncio tasks each see only their own values.  The previous values are
    restored on exit, including when the block raises.
    """
    tokens = structlog.contextvars.bind_contextvars(document_id=document_id, stage=stage)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
