"""HTTP server helpers for extracting context and creating server spans."""

from __future__ import annotations

from typing import Dict, Optional

from callspan.context import extract
from callspan.tracer.span import Span
from callspan.tracer.span_context import SpanContext
from callspan.tracer.tracer import Tracer


def extract_parent_context(headers: Dict[str, str]) -> Optional[SpanContext]:
    """Parse traceparent/tracestate from headers and return SpanContext if valid."""
    return extract(headers)


def start_server_span(tracer: Tracer, name: str, headers: Dict[str, str], attributes=None) -> Span:
    """
    Convenience helper to start a server span with extracted parent context.

    A missing or malformed parent starts a new trace. Returns the span
    context manager (caller should use 'with' or 'async with').
    """
    parent_ctx = extract_parent_context(headers)
    return tracer.start_as_current_span(name, attributes=attributes, parent_context=parent_ctx)
