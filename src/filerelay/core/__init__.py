"""Core primitives: error taxonomy, settings, structured logging."""

from filerelay.core.errors import (
    AuthenticationError,
    BusinessRuleError,
    CircuitOpenError,
    ErrorContext,
    ErrorKind,
    RelayError,
    TransientError,
    ValidationError,
    classify_error,
)
from filerelay.core.logging import LogContext, configure_logging, get_logger
from filerelay.core.settings import PipelineProfile, RelaySettings

__all__ = [
    "AuthenticationError",
    "BusinessRuleError",
    "CircuitOpenError",
    "ErrorContext",
    "ErrorKind",
    "RelayError",
    "TransientError",
    "ValidationError",
    "classify_error",
    "LogContext",
    "configure_logging",
    "get_logger",
    "PipelineProfile",
    "RelaySettings",
]
