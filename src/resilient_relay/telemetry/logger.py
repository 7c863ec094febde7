"""
Structured logging for resilient-relay.

Every record can carry keyword fields (provider, mirror, strategy, attempt,
error kind) plus the request-scoped context of the operation it belongs to.
Credentials that leak into messages or fields are masked before output.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

_log_context: ContextVar[LogContext | None] = ContextVar("relay_log_context", default=None)

REDACTED = "***REDACTED***"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to standard logging level."""
        return getattr(logging, self.value)


_LEVEL_ALIASES = {"WARN": LogLevel.WARNING, "FATAL": LogLevel.CRITICAL}


def parse_level(value: str | LogLevel | None, default: LogLevel = LogLevel.INFO) -> LogLevel:
    """Read a level name leniently.

    Case is ignored, ``warn`` and ``fatal`` are accepted, and anything
    unrecognised yields ``default`` instead of raising.
    """
    if isinstance(value, LogLevel):
        return value
    name = (value or "").strip().upper()
    if name in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[name]
    try:
        return LogLevel(name)
    except ValueError:
        return default


@dataclass(frozen=True)
class LogContext:
    """Fields attached to every record logged inside one operation.

    Attributes:
        request_id: Caller-supplied request identifier
        operation: Operation name (e.g., 'transcription', 'audio extraction')
        provider: Provider, mirror or strategy currently being attempted
        attempt: Attempt number against that provider
        extra: Anything else worth repeating on each record
    """

    request_id: str | None = None
    operation: str | None = None
    provider: str | None = None
    attempt: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, extras last."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result

    def with_extra(self, **kwargs: Any) -> LogContext:
        """Copy with more extra fields."""
        return LogContext(
            request_id=self.request_id,
            operation=self.operation,
            provider=self.provider,
            attempt=self.attempt,
            extra={**self.extra, **kwargs},
        )


def get_log_context() -> LogContext:
    """Context of the current task, empty when none is set."""
    return _log_context.get() or LogContext()


def set_log_context(context: LogContext) -> None:
    """Replace the context of the current task."""
    _log_context.set(context)


def clear_log_context() -> None:
    """Drop the context of the current task."""
    _log_context.set(None)


@contextlib.contextmanager
def log_context(**values: Any) -> Iterator[LogContext]:
    """Scope a context to a block, layered over the enclosing one.

    Example:
        >>> with log_context(request_id="r1", operation="transcription"):
        ...     logger.info("Starting")  # carries request_id and operation
    """
    current = get_log_context().to_dict()
    current.update({k: v for k, v in values.items() if v is not None})
    known = {f.name for f in fields(LogContext)} - {"extra"}
    context = LogContext(
        **{k: v for k, v in current.items() if k in known},
        extra={k: v for k, v in current.items() if k not in known},
    )
    token = _log_context.set(context)
    try:
        yield context
    finally:
        _log_context.reset(token)


class SensitiveDataMasker:
    """Redacts provider credentials from text and field dictionaries."""

    DEFAULT_PATTERNS: ClassVar[list[tuple[str, str]]] = [
        # OpenAI and Google key shapes
        (r"sk-[a-zA-Z0-9_-]{20,}", "sk-" + REDACTED),
        (r"AIza[0-9A-Za-z_-]{20,}", "AIza" + REDACTED),
        # Header and query-string carriers
        (r"(Bearer\s+)\S+", r"\1" + REDACTED),
        (
            r"((?:Authorization|Ocp-Apim-Subscription-Key|x-goog-api-key)[\"']?\s*[:=]\s*[\"']?)[^\"'\s]+",
            r"\1" + REDACTED,
        ),
        (r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s&]+", r"\1" + REDACTED),
        (r"([?&]key=)[^&\s]+", r"\1" + REDACTED),
        # Credential environment variables
        (r"((?:OPENAI|GOOGLE|GEMINI)_API_KEY=|AZURE_SPEECH_KEY=)\S+", r"\1" + REDACTED),
    ]

    SENSITIVE_KEYS: ClassVar[tuple[str, ...]] = ("api_key", "token", "secret", "password", "auth")

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        self._patterns = [
            (re.compile(p, re.IGNORECASE), r)
            for p, r in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        """Mask credentials in ``text``."""
        for pattern, replacement in self._patterns:
            text = pattern.sub(replacement, text)
        return text

    def mask_dict(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Mask a field dictionary.

        Values under credential-like keys are replaced outright; strings
        elsewhere are pattern-masked, recursing into dicts and lists.
        """
        return {
            key: REDACTED
            if any(s in key.lower() for s in self.SENSITIVE_KEYS)
            else self._mask_value(value)
            for key, value in data.items()
        }

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_value(v) for v in value]
        return value


class _RelayFormatter(logging.Formatter):
    """Shared field handling for the text and JSON formatters."""

    def __init__(self, masker: SensitiveDataMasker | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._masker = masker or SensitiveDataMasker()

    def message(self, record: logging.LogRecord) -> str:
        return self._masker.mask(record.getMessage())

    def record_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        return self._masker.mask_dict(getattr(record, "extra_fields", None) or {})

    def context_fields(self) -> dict[str, Any]:
        return self._masker.mask_dict(get_log_context().to_dict())


class JsonFormatter(_RelayFormatter):
    """One JSON object per record.

    Record fields sit at the top level next to ``level``/``message``; the
    request context is nested under ``context``.
    """

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": self.message(record),
        }
        entry.update(self.record_fields(record))
        if context := self.context_fields():
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(_RelayFormatter):
    """``time | LEVEL | logger | [request op] message | key=value ...``"""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__(masker, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        context = self.context_fields()
        tag = " ".join(
            str(context.pop(key)) for key in ("request_id", "operation") if key in context
        )
        message = f"[{tag}] {self.message(record)}" if tag else self.message(record)
        line = f"{self.formatTime(record, self.datefmt)} | {record.levelname:<8} | {record.name} | {message}"

        pairs = {**context, **self.record_fields(record)}
        if pairs:
            line += " | " + " ".join(f"{k}={v}" for k, v in pairs.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class RelayLogger:
    """Logger taking structured keyword fields.

    Example:
        >>> logger = get_logger("resilient_relay.resilience.orchestrator")
        >>> logger.warning("Provider failed", provider="google", kind="rate_limited")
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel | None] = None
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def level(cls) -> LogLevel:
        """Configured level, or RELAY_LOG_LEVEL until configure() is called."""
        return cls._level or parse_level(os.getenv("RELAY_LOG_LEVEL"))

    @classmethod
    def configure(
        cls,
        level: LogLevel | str = LogLevel.INFO,
        format: str = "text",
        stream: Any = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Install one handler on every relay logger.

        Args:
            level: Log level (names such as ``warn`` are accepted)
            format: ``json`` or ``text``
            stream: Output stream (default: stderr)
            masker: Credential masker for messages and fields
        """
        cls._level = parse_level(level)
        formatter: logging.Formatter = (
            JsonFormatter(masker) if format.strip().lower() == "json" else TextFormatter(masker)
        )
        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(formatter)
        cls._handler.setLevel(cls._level.to_logging_level())

        for logger in cls._loggers.values():
            cls._attach(logger)

    @classmethod
    def configure_from_env(cls, environ: Mapping[str, str] | None = None) -> None:
        """Configure from RELAY_LOG_LEVEL and RELAY_LOG_FORMAT."""
        env = os.environ if environ is None else environ
        cls.configure(
            level=parse_level(env.get("RELAY_LOG_LEVEL")),
            format=env.get("RELAY_LOG_FORMAT", "text"),
        )

    @classmethod
    def _attach(cls, logger: logging.Logger) -> None:
        logger.setLevel(cls.level().to_logging_level())
        if cls._handler is not None:
            logger.handlers.clear()
            logger.addHandler(cls._handler)
            logger.propagate = False

    @classmethod
    def get_logger(cls, name: str) -> RelayLogger:
        """Get or create the logger called ``name``."""
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            cls._attach(logger)
            cls._loggers[name] = logger
        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _log(self, level: int, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        extra = {"extra_fields": kwargs} if kwargs else None
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **kwargs)


def get_logger(name: str) -> RelayLogger:
    """Get a logger instance."""
    return RelayLogger.get_logger(name)
