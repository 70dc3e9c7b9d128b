"""
Logging utilities for the roadwatch toolkit.

Provides unified structured logging:
- pretty console output via Rich
- structured (JSON) file output to `replay.log` when running `roadwatch replay`

Ride-scoped records can carry context through ``extra``; the JSON output
keeps any of CONTEXT_FIELDS found on the record.
"""

import logging
import sys
import json
from pathlib import Path

from rich.logging import RichHandler

FILE_LOGGED_COMMANDS = ("replay",)
CONTEXT_FIELDS = ("session_id", "user_id", "report_id")


class JSONFormatter(logging.Formatter):
    """
    Formatter that serializes log records to JSON.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def ride_context(session_id: str | None, user_id: str | None = None) -> dict:
    """
    ``extra`` mapping tagging a log record with its ride.
    """
    return {"session_id": session_id, "user_id": user_id}


def get_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """
    Return a configured logger for the given name.

    Attaches:
    - a RichHandler for console output
    - for the commands in FILE_LOGGED_COMMANDS, a FileHandler writing JSON
      logs to {cwd}/{command}.log

    Parameters
    ----------
    name
        Logger name (typically __name__).
    level
        Log level (int or string), defaults to INFO.

    Returns
    -------
    logging.Logger
        Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    console_handler = RichHandler(rich_tracebacks=True, show_path=False)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    command = sys.argv[1] if len(sys.argv) > 1 else None
    if command in FILE_LOGGED_COMMANDS:
        log_path = Path.cwd() / f"{command}.log"
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger
