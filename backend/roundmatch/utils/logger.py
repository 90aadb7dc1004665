# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Structured Logging
JSON logs via structlog. Matching runs bind session_id and round_id into
the context (see `round_context`) so every entry of a run is traceable,
including entries written by the store from a worker thread.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from roundmatch.config import Settings, get_settings


def _add_app_info(
    logger: Any, method: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = "roundmatch"
    return event_dict


def _render_domain_values(
    logger: Any, method: str, event_dict: EventDict
) -> EventDict:
    """
    Statuses and timestamps are logged as their wire form, so a log line
    reads `status=matched now=2026-03-14T17:00:00+00:00` rather than reprs.
    """
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (datetime, date)):
            event_dict[key] = value.isoformat()
    return event_dict


def _drop_color_message_key(
    logger: Any, method: str, event_dict: EventDict
) -> EventDict:
    """Remove uvicorn's color_message to keep logs clean."""
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Console output at DEBUG, JSON otherwise.
    Called once from the app lifespan and from scripts.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_app_info,
        _render_domain_values,
        _drop_color_message_key,
    ]

    if settings.log_level == "DEBUG":
        renderer: list[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)


@contextmanager
def round_context(session_id: str, round_id: str, **extra: Any) -> Iterator[None]:
    """
    Bind a round into the logging context for the duration of the block.
    Previously bound keys are restored on exit.

        with round_context(session.id, round_.id, source="cron"):
            run_matching(...)
    """
    with structlog.contextvars.bound_contextvars(
        session_id=session_id, round_id=round_id, **extra
    ):
        yield


def get_logger(name: str = "roundmatch") -> structlog.BoundLogger:
    """
    Return a structlog bound logger.

        log = get_logger(__name__)
        log.info("matching_complete", match_count=3, unmatched_count=0)
    """
    return structlog.get_logger(name)
