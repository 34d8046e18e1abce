"""
Centralized logging manager for the application.

Every logger gets a console handler on stdout and a per-worker log file under ``LOG_DIR``.
When ``LOKI_ENABLED`` is set, a Loki handler ships records to ``LOKI_URL`` as well.

Loki downtime:
- Records emitted while Loki is unreachable are not replayed; the console and worker file keep a local copy.
- For audit-grade delivery ship the worker files with a log shipper (e.g., Promtail).

Usage:
- Use get_logger() to obtain a logger instance, optionally with a prefix such as "[FAMILY]".
"""

import logging
import os
import sys

from loki_logger_handler.loki_logger_handler import LokiLoggerHandler

from family_ledger.config import settings

LOG_LEVEL: str = os.getenv("LOG_LEVEL", settings.LOG_LEVEL).upper()
LOG_DIR: str = settings.LOG_DIR
LOKI_TAGS: dict[str, str] = {
    "app": settings.APP_NAME,
    "env": settings.ENV,
}

_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"


def _ensure_console_handler(logger: logging.Logger, formatter: logging.Formatter) -> bool:
    """
    Ensure logger has a StreamHandler for console output.

    Returns:
        bool: True if a new StreamHandler was added, False if one already existed
    """
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            return False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logger.level)
    logger.addHandler(console_handler)
    return True


def get_worker_log_filename() -> str:
    """Per-process log file so multiple uvicorn workers never interleave writes."""
    return os.path.join(LOG_DIR, f"worker_{os.getpid()}.log")


def _ensure_file_handler(logger: logging.Logger, formatter: logging.Formatter) -> None:
    log_filename = get_worker_log_filename()
    try:
        os.makedirs(os.path.dirname(log_filename), exist_ok=True)
    except OSError as e:
        logger.warning("[LoggingManager] Could not create log directory %s: %s", LOG_DIR, e)
        return
    target = os.path.abspath(log_filename)
    if any(isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target for h in logger.handlers):
        return
    file_handler = logging.FileHandler(log_filename)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


class PrefixFilter(logging.Filter):
    """Prepend a fixed tag such as "[FAMILY]" to every record of a logger."""

    def __init__(self, prefix: str):
        super().__init__()
        self.prefix = prefix

    def filter(self, record: logging.LogRecord) -> bool:
        if self.prefix and not getattr(record, "_prefix_applied", False):
            record.msg = f"{self.prefix} {record.msg}"
            record._prefix_applied = True
        return True


def get_logger(name: str = "Family_Ledger", add_loki: bool = True, prefix: str = "") -> logging.Logger:
    # One logger per prefix; sharing a logger would let the first prefix filter win for every caller.
    if prefix:
        name = f"{name}.{prefix.strip('[] ').replace(' ', '_')}"
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    logger.propagate = False

    formatter = logging.Formatter(_FORMAT)

    if _ensure_console_handler(logger, formatter):
        logger.debug("[LoggingManager] Console StreamHandler attached to logger '%s'", name)

    _ensure_file_handler(logger, formatter)

    if prefix and not any(isinstance(f, PrefixFilter) and f.prefix == prefix for f in logger.filters):
        logger.addFilter(PrefixFilter(prefix))

    if add_loki and settings.LOKI_ENABLED and not any(isinstance(h, LokiLoggerHandler) for h in logger.handlers):
        try:
            loki_handler = LokiLoggerHandler(
                url=settings.LOKI_URL,
                labels=LOKI_TAGS,
                auth=None,
                compressed=settings.LOKI_COMPRESS,
            )
            logger.addHandler(loki_handler)
            logger.info(
                "[LoggingManager] LokiLoggerHandler attached to logger '%s' (url=%s, labels=%s)",
                name,
                settings.LOKI_URL,
                LOKI_TAGS,
            )
        except (ValueError, OSError) as e:
            logger.error("[LoggingManager] Failed to attach LokiLoggerHandler: %s", e, exc_info=True)
    return logger
