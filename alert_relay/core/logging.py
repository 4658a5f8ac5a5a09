import logging
import sys
from typing import Any

from loguru import logger

from alert_relay.config import get_settings

# Stdlib loggers routed through loguru
INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "apscheduler",
    "alembic",
)

# Access-log paths polled often enough to drown the queue logs at INFO
QUIET_PATHS = ("/health", "/api/cron/queue/process")

DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
PLAIN_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}"

REDACTED = "***"


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _access_log_filter(record: dict[str, Any]) -> bool:
    """Drop successful polling requests below DEBUG; errors always pass."""
    message = record.get("message", "")
    if record["level"].no >= logging.WARNING:
        return True
    if any(path in message for path in QUIET_PATHS) and " 200" in message:
        return False
    return True


def _secret_redactor(secrets: list[str]):
    """Build a patcher that masks configured secrets in messages and bound context."""
    secrets = [s for s in secrets if s]

    def patcher(record: dict[str, Any]) -> None:
        for secret in secrets:
            if secret in record["message"]:
                record["message"] = record["message"].replace(secret, REDACTED)
            for key, value in record["extra"].items():
                if isinstance(value, str) and secret in value:
                    record["extra"][key] = value.replace(secret, REDACTED)

    return patcher


def setup_logging() -> None:
    """Configure loguru sinks and route library logging through them.

    Debug mode logs everything with colours and diagnostics. Otherwise the
    sink is plain INFO, with bound context in {extra} so queue item, worker
    and subscription ids survive in container logs. The cron secret and
    mail API key are masked wherever they appear.
    """
    settings = get_settings()

    logger.remove()
    logger.configure(patcher=_secret_redactor([settings.cron_secret, settings.resend_api_key]))

    if settings.debug:
        logger.add(sys.stderr, level="DEBUG", format=DEBUG_FORMAT, backtrace=True, diagnose=True)
    else:
        logger.add(
            sys.stderr,
            level="INFO",
            format=PLAIN_FORMAT,
            filter=_access_log_filter,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
