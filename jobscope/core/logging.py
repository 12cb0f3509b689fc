import logging
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from jobscope.config import get_settings

# Polled endpoints, only shown at DEBUG level
QUIET_PATHS = ("/health", "/api/queues/depth")

INTERCEPTED_LOGGERS = [
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpx",
    "apscheduler",
]


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _polling_filter(record: dict[str, Any]) -> bool:
    message = record.get("message", "")
    if any(path in message for path in QUIET_PATHS):
        return bool(record["level"].no <= 10)
    return True


def setup_logging() -> None:
    """
    Configure loguru for the API, the CLI and embedded workers.

    Event names are snake_case with context passed through `logger.bind`,
    so `{extra}` is part of every console line. When `LOG_DIR` is set,
    records are also written there as JSON lines, rotated daily.
    """
    settings = get_settings()

    logger.remove()

    if settings.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level> | {extra}"
            ),
            backtrace=True,
            diagnose=True,
        )
    else:
        logger.add(
            sys.stderr,
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}",
            filter=_polling_filter,
            backtrace=True,
            diagnose=False,
        )

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "jobscope.log",
            level="INFO",
            serialize=True,
            rotation="00:00",
            retention="14 days",
            compression="gz",
            enqueue=True,
            filter=_polling_filter,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
