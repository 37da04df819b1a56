"""
Structured logging for notepress.

Sync services log through structlog with keyword fields. Repositories,
the note client and the asset backends use stdlib loggers, which are
routed through the same renderer. A sync pass tags every line it emits
with the blog and path it is working on:

    with sync_context(blog_id="blog_1", sync_kind="note"):
        logger.info("Sync pass finished", created=3, unpublished=1)

JSON lines in production, coloured console output otherwise.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor

from notepress.config.settings import get_settings

# Client libraries that log every request or decoded image at INFO/DEBUG
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "PIL")


def setup_logging() -> None:
    """Configure structlog and the stdlib root logger from settings.

    Called once by the CLI before any command runs. `--debug` sets
    LOG_LEVEL=DEBUG before this reads the settings.
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def sync_context(**fields) -> Iterator[None]:
    """
    Bind `fields` to every log line emitted inside the block.

    Nested blocks add to the outer fields, and leaving a block restores
    whatever was bound before it, so an owner-wide pass keeps `owner_id`
    on the lines of each blog pass it runs.
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield
