"""Span processors."""

from callspan.processors.logging_processor import LoggingSpanProcessor

__all__ = [
    "LoggingSpanProcessor",
]
