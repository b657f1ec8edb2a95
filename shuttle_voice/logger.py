"""
Logging Configuration Module

Centralized logging for the voice streaming service. Console output is colored
when attached to a terminal; an optional file handler records call sites.

Usage:
    from shuttle_voice.logger import get_logger, session_logger

    logger = get_logger(__name__)
    logger.info("Server starting")

    log = session_logger(logger, session_id)
    log.debug("Queued audioInput")   # -> "[session abc123] Queued audioInput"
"""

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for terminal output."""

    COLORS = {
        logging.DEBUG: "\033[36m",      # Cyan
        logging.INFO: "\033[32m",       # Green
        logging.WARNING: "\033[33m",    # Yellow
        logging.ERROR: "\033[31m",      # Red
        logging.CRITICAL: "\033[1;31m", # Bold Red
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the owning session id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[session {self.extra['session_id']}] {msg}", kwargs


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True
) -> None:
    """
    Configure the root logger with console and optional file handlers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        use_colors: Whether to use colored output in console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)

    if use_colors and sys.stdout.isatty():
        console_format: logging.Formatter = ColoredFormatter(
            "%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    else:
        console_format = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    console_handler.setFormatter(console_format)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        root_logger.addHandler(file_handler)

    # botocore and the websocket stack are chatty at DEBUG
    for noisy in ("botocore", "urllib3", "websockets"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module (usually ``__name__``)."""
    return logging.getLogger(name)


def session_logger(logger: logging.Logger, session_id: str) -> SessionLoggerAdapter:
    """Wrap a module logger so its lines carry the session id."""
    return SessionLoggerAdapter(logger, {"session_id": session_id})


_initialized = False


def init_logging() -> None:
    """
    Initialize logging from settings. Call once at application startup.
    """
    global _initialized
    if _initialized:
        return

    from shuttle_voice.config import settings
    setup_logging(
        level=settings.logging.level,
        log_file=settings.logging.file
    )

    _initialized = True
