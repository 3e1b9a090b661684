"""Loguru setup for the auth backend.

The sink level comes from ``Settings.LOG_LEVEL``. Records emitted through
the standard library ``logging`` module (uvicorn, SQLAlchemy engine echo)
are forwarded into Loguru so every line shares one format and sink.

Credentials never reach the log: messages carry user ids, emails and
reason codes, not tokens, passwords or hashes.
"""

import logging
import sys

from loguru import logger

from makeit_auth.config.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}"
FORWARDED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine")


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records to Loguru.

    The frame walk skips the ``logging`` module itself so Loguru reports
    the module and line that made the original call.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(level: str) -> None:
    """Replace Loguru's sinks with one stdout sink at ``level``.

    Safe to call again; later calls reset the level.
    """
    level = level.upper()
    logger.remove()
    logger.add(
        sys.stdout, level=level, format=LOG_FORMAT, backtrace=True, diagnose=False
    )

    handler = InterceptHandler()
    logging.basicConfig(handlers=[handler], level=level, force=True)
    for name in FORWARDED_LOGGERS:
        forwarded = logging.getLogger(name)
        forwarded.handlers = [handler]
        forwarded.propagate = False


configure_logging(settings.LOG_LEVEL)
