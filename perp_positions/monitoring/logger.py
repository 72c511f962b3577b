"""
Structured logging for the position tracker.

structlog on top of stdlib logging: JSON lines in production, console
rendering for local runs. Session identity (chain, account) is carried in
contextvars so every event logged while a session is active is tagged
with it.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

_FILE_HANDLER_NAME = "perp_positions_file"
_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def _shared_processors():
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _install_file_handler(log_file: str, level: int) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _FILE_HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_path, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=_LOG_FILE_BACKUPS)
    file_handler.set_name(_FILE_HANDLER_NAME)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(file_handler)


def setup_logging(log_level: str = "INFO", log_format: str = "json", log_file: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Safe to call more than once; the last call wins.

    Args:
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        log_format: Renderer, "json" or "text"
        log_file: Optional rotating log file, written in addition to stdout
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    processors = _shared_processors()
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        _install_file_handler(log_file, level)
        get_logger(__name__).info("LOGGING_INITIALIZED", log_file=str(log_file), log_level=log_level)


def bind_session_context(chain: str, account: Optional[str]) -> None:
    """Tag subsequent log events with the active chain and account."""
    structlog.contextvars.bind_contextvars(chain=chain, account=account)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars("chain", "account")


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger (typically `get_logger(__name__)`)."""
    return structlog.get_logger(name)
