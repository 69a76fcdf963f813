"""Tracer components: span lifecycle and the provider that owns it."""

from callspan.tracer.provider import SpanProcessor, TracerProvider
from callspan.tracer.span import Span, SpanEvent, SpanException, SpanStatus
from callspan.tracer.span_context import SpanContext
from callspan.tracer.tracer import Tracer

__all__ = [
    "Span",
    "SpanEvent",
    "SpanException",
    "SpanStatus",
    "SpanContext",
    "Tracer",
    "TracerProvider",
    "SpanProcessor",
]
