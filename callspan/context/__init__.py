"""Context utilities: active span binding and W3C propagation."""

from callspan.context.context import get_current_span, pop_span, push_span
from callspan.context.propagators import (
    BAGGAGE_HEADER,
    TRACEPARENT_HEADER,
    TRACESTATE_HEADER,
    extract,
    format_traceparent,
    format_tracestate,
    inject,
    parse_traceparent,
    parse_tracestate,
    to_otel_span_context,
)
from callspan.utils.helpers import is_valid_tracestate_key, is_valid_tracestate_value

__all__ = [
    "get_current_span",
    "push_span",
    "pop_span",
    "TRACEPARENT_HEADER",
    "TRACESTATE_HEADER",
    "BAGGAGE_HEADER",
    "format_traceparent",
    "parse_traceparent",
    "format_tracestate",
    "parse_tracestate",
    "is_valid_tracestate_key",
    "is_valid_tracestate_value",
    "to_otel_span_context",
    "inject",
    "extract",
]
