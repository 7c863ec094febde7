"""
Telemetry module for resilient-relay.

Provides structured, context-aware logging with sensitive data masking.
"""

from resilient_relay.telemetry.logger import (
    JsonFormatter,
    LogContext,
    LogLevel,
    RelayLogger,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    log_context,
    parse_level,
    set_log_context,
)

__all__ = [
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "RelayLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
    "parse_level",
    "set_log_context",
]
