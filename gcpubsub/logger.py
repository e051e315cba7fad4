"""Logging configuration for GCPubSub."""

import json
import logging
import os
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, cast

_log_context: ContextVar[dict[str, Any]] = ContextVar("gcpubsub_log_context", default={})


class ContextFilter(logging.Filter):
    """A logging filter that injects context.

    The contextualized values and the 'extra' kwarg of each log record
    are merged into a single ``context`` attribute.
    """

    # These are the standard attributes of a LogRecord
    RESERVED_ATTRS = (
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        """Filters a log record.

        Args:
            record: The log record to filter.

        Returns:
            True if the record should be logged, False otherwise.
        """
        context = _log_context.get().copy()

        extra_context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.RESERVED_ATTRS and key not in ("context",)
        }

        # The per-call 'extra' context takes precedence.
        context.update(extra_context)
        record.context = context

        return True


class GCPubSubLogger(logging.Logger):
    """A custom logger class with a 'contextualize' method."""

    @contextmanager
    def contextualize(self, **kwargs: Any) -> Generator[None]:
        """A context manager to add temporary context to logs.

        Example:
            with logger.contextualize(message_id="12345"):
                logger.info("This log will have the message_id.")
        """
        token = _log_context.set({**_log_context.get(), **kwargs})
        try:
            yield
        finally:
            _log_context.reset(token)


class TextFormatter(logging.Formatter):
    """Formats logs as a human-readable string."""

    def format(self, record: logging.LogRecord) -> str:
        log_message = super().format(record)

        if hasattr(record, "context") and record.context:
            context_text = " ".join(f"{k}={v}" for k, v in record.context.items() if v)
            if context_text:
                log_message += f" | {context_text}"

        return log_message


class JsonFormatter(logging.Formatter):
    """Formats logs as a JSON string."""

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
            "thread": record.thread,
            **getattr(record, "context", {}),
        }

        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, indent=None, separators=(",", ":"), default=str)


def get_log_level(level: str | int | None) -> int:
    """Translates a level name or number into a logging level.

    Unknown values fall back to INFO.
    """
    if level is None or level == "":
        return logging.INFO

    if isinstance(level, int):
        return level

    if level.isdigit():
        return int(level)

    translated = logging.getLevelName(level.upper())
    if isinstance(translated, int):
        return translated

    return logging.INFO


def setup_logger(level: str | int | None = None, serialize: bool | None = None) -> GCPubSubLogger:
    """Enables and configures the GCPubSub logger.

    Args:
        level: The log level. Defaults to ``GCPUBSUB_LOG_LEVEL``.
        serialize: Whether to emit JSON logs. Defaults to ``GCPUBSUB_ENABLE_LOG_SERIALIZE``.
    """
    if level is None:
        level = os.getenv("GCPUBSUB_LOG_LEVEL")

    if serialize is None:
        serialize = bool(int(os.getenv("GCPUBSUB_ENABLE_LOG_SERIALIZE", 0)))

    logging.setLoggerClass(GCPubSubLogger)
    logger = logging.getLogger("gcpubsub")
    logging.setLoggerClass(logging.Logger)

    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(get_log_level(level))
    logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())

    formatter: logging.Formatter = JsonFormatter()
    if not serialize:
        fmt = (
            "%(asctime)s | %(levelname)-8s "
            "| %(process)d:%(thread)d "
            "| %(module)s:%(funcName)s:%(lineno)d "
            "| %(message)s"
        )
        formatter = TextFormatter(fmt)

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return cast(GCPubSubLogger, logger)


logger: GCPubSubLogger = setup_logger()
