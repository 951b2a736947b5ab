"""
Docsync logging setup.

Console output always; a rotating log file when LOG_FILE is set. With
LOG_JSON=true each record is one JSON object, and sync context passed via
`extra=` (source, revision, status...) is grouped under "context".

Usage:
    from docsync.logging_config import setup_logging_from_config

    setup_logging_from_config(load_settings().logging)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .config import LoggingConfig

# Record attributes the sync code attaches with `extra=`
CONTEXT_FIELDS = ("source", "doc_id", "revision", "status", "duration")

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "chromadb", "openai")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Output format:
        {"time": "...", "level": "INFO", "logger": "docsync.sync.coordinator",
         "message": "...", "context": {"source": "...", "revision": "..."}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: getattr(record, key)
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        }
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _build_handlers(log_file: Optional[str], max_bytes: int, backup_count: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    return handlers


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Replace the root handlers and return the "docsync" logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_output: Emit JSON lines instead of text
        log_file: Also write to this file, rotated at max_bytes
    """
    formatter = JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    for handler in _build_handlers(log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    package_logger = logging.getLogger("docsync")
    package_logger.debug(f"Logging to stdout{f' and {log_file}' if log_file else ''} at {level}")
    return package_logger


def setup_logging_from_config(config: LoggingConfig) -> logging.Logger:
    """Configure logging from a LoggingConfig section."""
    return setup_logging(
        level=config.level,
        json_output=config.json_logs,
        log_file=config.log_file,
        max_bytes=config.max_bytes,
        backup_count=config.backup_count,
    )
