"""
Tool: Logging Setup
Purpose: structlog over stdlib for the estimator, pipeline and CLI

Several estimation sessions can run side by side, each with background
classification and step-estimation calls. Log lines are tagged so they can
be told apart:

    session_id   bound once per pipeline (logger.bind)
    stage        "classify" or "estimate", set inside a background call
    request      the request number of that background call

Console output by default, JSON lines with FOCUSFLOW_LOG_FORMAT=json.
Logs always go to stderr; stdout carries CLI results.

Usage:
    from focusflow.logging_config import get_logger, setup_logging, stage_context

    setup_logging(level="DEBUG")
    log = get_logger(__name__).bind(session_id="a1b2c3d4")
    with stage_context("estimate", 3):
        log.info("step estimated", minutes=12)
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import IO, Iterator

import structlog

LEVEL_ENV = "FOCUSFLOW_LOG_LEVEL"
FORMAT_ENV = "FOCUSFLOW_LOG_FORMAT"

# One INFO line per HTTP request otherwise
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore")


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer()


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    stream: IO[str] | None = None,
) -> None:
    """
    Route structlog and stdlib records through one stderr handler.

    Args:
        level: Level name; defaults to $FOCUSFLOW_LOG_LEVEL, then INFO
        json_output: JSON lines instead of console; defaults to $FOCUSFLOW_LOG_FORMAT
        stream: Where to write (stderr when omitted)
    """
    level = level or os.environ.get(LEVEL_ENV, "INFO")
    if json_output is None:
        json_output = os.environ.get(FORMAT_ENV, "").lower() == "json"
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Also applied to stdlib records (anthropic, httpx) via foreign_pre_chain
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def stage_context(stage: str, request: int) -> Iterator[None]:
    """Tag every log line inside one background call with its stage and request number.

    Context variables are copied per asyncio task, so concurrent calls keep
    their own tags.
    """
    with structlog.contextvars.bound_contextvars(stage=stage, request=request):
        yield


__all__ = ["get_logger", "setup_logging", "stage_context"]
