"""
Logging setup

Routing logs carry per-turn fields (conversation_id, intent, entity_id,
data_source, ...) next to the message. JSON output puts them at the top
level of each document; console output appends them as key=value pairs.
"""

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime, UTC
from typing import Any

_LINE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Keyword arguments the stdlib logger understands; everything else is a routing field
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

# Marks handlers installed by configure_logging so a host's own handlers survive reconfiguration
_HANDLER_TAG = "_merchant_assistant_handler"


def _routing_fields(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "routing", None) or {}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, routing fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in _routing_fields(record).items():
            document.setdefault(key, value)

        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)

        return json.dumps(document, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output, optionally with a colored level name."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = False):
        super().__init__(_LINE_FORMAT, datefmt=_DATE_FORMAT)
        self.color = color

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        if self.color and record.levelname in self.LEVEL_COLORS:
            line = line.replace(
                f"| {record.levelname} |",
                f"| {self.LEVEL_COLORS[record.levelname]}{record.levelname}{self.RESET} |",
                1,
            )
        fields = _routing_fields(record)
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class RoutingLogger(logging.LoggerAdapter):
    """
    Adapter that attaches routing fields to every record.

    Fields bound at creation apply to every call; fields passed as keyword
    arguments apply to that call only:

        log = get_logger(__name__, conversation_id="c1")
        log.info("Turn routed", intent="diagnosis", entity_id="m-002")
    """

    def __init__(self, logger: logging.Logger, fields: dict[str, Any] | None = None):
        super().__init__(logger, fields or {})

    def bind(self, **fields) -> "RoutingLogger":
        """New adapter with extra bound fields."""
        return RoutingLogger(self.logger, {**self.extra, **fields})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        call_fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _LOGGING_KWARGS}
        extra = dict(kwargs.get("extra") or {})
        extra["routing"] = {**self.extra, **call_fields}
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    format_type: str = "colored",
    log_file: str | None = None,
) -> None:
    """
    Install console (and optional file) handlers on the root logger.

    Calling it again replaces the handlers a previous call installed and
    leaves every other handler alone.

    Args:
        level: Log level name
        format_type: 'colored', 'json', or 'plain'
        log_file: Optional file path; file output is always JSON
    """
    numeric_level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_TAG, False)]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    if format_type == "json":
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(ConsoleFormatter(color=format_type == "colored"))
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)


def configure_from_settings(settings) -> None:
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.LOG_FILE)


def get_logger(name: str, **fields) -> RoutingLogger:
    """Routing logger for a module, with optional bound fields."""
    return RoutingLogger(logging.getLogger(name), fields)
