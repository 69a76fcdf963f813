"""Callspan error hierarchy and exceptions."""

from __future__ import annotations

from typing import Optional


class CallspanError(Exception):
    """Base exception for all callspan errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(CallspanError):
    """Raised when configuration is invalid or conflicting."""
    pass


class TransportError(CallspanError):
    """
    Raised when the outbound network operation fails.

    Covers non-2xx responses, timeouts and connection failures. The error is
    recorded on the call's span before it reaches the caller.
    """

    def __init__(
        self,
        message: str,
        details: dict = None,
        status_code: Optional[int] = None,
    ):
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details)
        self.status_code = status_code


class CallCancelledError(TransportError):
    """Raised when an in-flight call is cancelled or aborted before completion."""
    pass


class MalformedContextError(CallspanError):
    """Raised when an inbound traceparent/tracestate value fails to parse."""
    pass


class CallStateError(CallspanError):
    """Raised when an instrumented call is driven out of order (e.g. run twice)."""
    pass


class PostLifecycleMutationWarning(UserWarning):
    """
    Category for mutations attempted on an ended span.

    Only ever logged, never raised.
    """
    pass
