"""
Logging Configuration
loguru sinks for the API, scripts and tests; stdlib loggers are routed through loguru
"""

import logging
import sys
from typing import Any

from loguru import logger as loguru_logger

from lms_backend.core.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Libraries whose own loggers are too chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "aiohttp.access", "aiosqlite", "passlib")


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging records into loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging() -> None:
    """
    Configure loguru for the current environment

    - DEBUG: colored human-readable console output
    - otherwise: one JSON document per line on stdout
    - LOG_FILE set: an extra rotating JSON file sink
    """
    loguru_logger.remove()
    loguru_logger.configure(extra={"name": "lms_backend"})

    if settings.DEBUG:
        loguru_logger.add(sys.stdout, format=CONSOLE_FORMAT, level="DEBUG", colorize=True)
    else:
        loguru_logger.add(sys.stdout, level=settings.LOG_LEVEL, serialize=True)

    if settings.LOG_FILE:
        loguru_logger.add(
            settings.LOG_FILE,
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            level=settings.LOG_LEVEL,
            serialize=True,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> Any:
    """Logger bound to a module name plus optional context (e.g. user_id)"""
    return loguru_logger.bind(name=name, **context)
