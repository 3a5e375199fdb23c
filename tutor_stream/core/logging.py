"""Structured logging for Tutor Stream.

Records are rendered as ``key=value`` pairs. Turn-scoped fields
(``session_id`` first, then any counters passed as context) follow the
message so one grep on a session id recovers a whole turn.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

ROOT_LOGGER = "tutor_stream"

_BASE_FIELDS = ("timestamp", "level", "module", "function", "message")


def _render(value: Any) -> str:
    text = str(value)
    if isinstance(value, str) and (" " in text or not text):
        return repr(text)
    return text


class StructuredFormatter(logging.Formatter):
    """key=value formatter that appends turn context after the base fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = dict(
            zip(
                _BASE_FIELDS,
                (
                    self.formatTime(record, self.datefmt),
                    record.levelname,
                    record.module,
                    record.funcName,
                    record.getMessage(),
                ),
            )
        )

        session_id = getattr(record, "session_id", None)
        if session_id:
            log_data["session_id"] = session_id

        context = getattr(record, "context", None)
        if isinstance(context, Mapping):
            for key in sorted(context):
                log_data.setdefault(key, context[key])

        line = " ".join(
            f"{key}={value if key in _BASE_FIELDS else _render(value)}"
            for key, value in log_data.items()
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(env: str | None = None, stream=None) -> logging.Logger:
    """
    Attach the structured handler to the package logger once.

    Args:
        env: Deployment environment; ``dev`` logs at DEBUG, anything else at INFO.
            Read from settings when omitted.
        stream: Output stream (stdout by default)

    Returns:
        The package root logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    if env is None:
        from tutor_stream.core.config import get_settings

        env = get_settings().TUTOR_ENV
    root.setLevel(logging.DEBUG if env == "dev" else logging.INFO)

    if not any(getattr(h, "_tutor_stream", False) for h in root.handlers):
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(StructuredFormatter())
        handler._tutor_stream = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the package handler on first use."""
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        setup_logging()
    return logging.getLogger(name)


class TurnLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with one turn's session id."""

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("session_id", self.extra["session_id"])
        return msg, kwargs


def turn_logger(logger: logging.Logger, session_id: str) -> TurnLogger:
    return TurnLogger(logger, {"session_id": session_id})


def log_with_context(logger: logging.Logger | TurnLogger, level: int, msg: str, **context: Any) -> None:
    """
    Log ``msg`` with extra key=value fields.

    Args:
        logger: Logger or TurnLogger
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **context: Fields to append; ``session_id`` is promoted to its own slot
    """
    extra: dict[str, Any] = {"context": context}
    if "session_id" in context:
        extra["session_id"] = context.pop("session_id")
    logger.log(level, msg, extra=extra)
