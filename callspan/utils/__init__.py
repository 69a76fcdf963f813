"""Utility functions for callspan."""

from callspan.utils.helpers import (
    format_trace_id,
    format_span_id,
    is_valid_tracestate_key,
    is_valid_tracestate_value,
    parse_trace_id,
    parse_span_id,
    truncate_attribute,
)

__all__ = [
    "format_trace_id",
    "format_span_id",
    "is_valid_tracestate_key",
    "is_valid_tracestate_value",
    "parse_trace_id",
    "parse_span_id",
    "truncate_attribute",
]
