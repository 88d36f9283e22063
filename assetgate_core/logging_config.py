"""
Logging setup for the gateway process.

Two console formats:
  - ``human``: coloured single line, ``HH:MM:SS [LEVEL] logger: message``
  - ``json``:  one JSON object per line, for log shippers

An optional log file always receives JSON.  HTTP access lines are emitted
by aiohttp on the ``aiohttp.access`` logger in Apache combined format
(``ACCESS_LOG_FORMAT``) and stay at INFO whatever the root level is.
The Fabric SDK and gRPC loggers are held at WARNING unless the gateway
itself runs at DEBUG.

Usage:
    from assetgate_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/assetgate.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

ACCESS_LOG_FORMAT = '%a - - %t "%r" %s %b "%{Referer}i" "%{User-Agent}i"'

ACCESS_LOGGER = "aiohttp.access"
SDK_LOGGERS = ("hfc", "grpc")


class _JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    """Single line with the level coloured; tracebacks follow on new lines."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        colour = self.COLOURS.get(record.levelname, "")
        text = f"{colour}{stamp} [{record.levelname:<7}]{self.RESET} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _formatter(fmt: str) -> logging.Formatter:
    return _JSONFormatter() if fmt == "json" else _HumanFormatter()


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Replace the root logger's handlers.

    Parameters
    ----------
    level : str
        Root level name (case-insensitive); unknown names fall back to INFO.
    fmt : str
        Console format, ``"human"`` or ``"json"``.
    log_file : str, optional
        Extra JSON-lines file; parent directories are created.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(fmt))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path))
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)

    logging.getLogger(ACCESS_LOGGER).setLevel(logging.INFO)
    sdk_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)
