"""
Logging utilities for the wt toolkit.

Provides unified structured logging:
- pretty console output via Rich
- structured (JSON) file output to `analyze.log` when running `wt analyze`
"""

import logging
import sys
import json
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

# sub-commands whose runs are also logged to {cwd}/{command}.log
FILE_LOGGED_COMMANDS = ("analyze",)


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
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _active_command() -> str | None:
    if len(sys.argv) > 1 and sys.argv[1] in FILE_LOGGED_COMMANDS:
        return sys.argv[1]
    return None


def get_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """
    Return a configured logger for the given name.

    Attaches:
    - a RichHandler for console output (stderr, so `wt analyze --json`
      keeps stdout clean)
    - when the command is 'analyze', a FileHandler writing JSON logs to
      {cwd}/analyze.log

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

    if not logger.handlers:
        # Console via Rich
        console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

        command = _active_command()
        if command is not None:
            log_path = Path.cwd() / f"{command}.log"
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)

    return logger
