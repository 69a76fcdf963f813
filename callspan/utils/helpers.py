"""Helper functions for converting between OpenTelemetry ids and hex strings."""

from __future__ import annotations

import re
from typing import Any

_TRACE_ID_HEX = re.compile(r"[0-9a-f]{32}")
_SPAN_ID_HEX = re.compile(r"[0-9a-f]{16}")


def format_trace_id(trace_id: int) -> str:
    """
    Format OTel trace_id (128-bit int) to hex string.

    Args:
        trace_id: OTel trace_id as int

    Returns:
        32-character lowercase hex string
    """
    return format(trace_id, '032x')


def format_span_id(span_id: int) -> str:
    """
    Format OTel span_id (64-bit int) to hex string.

    Args:
        span_id: OTel span_id as int

    Returns:
        16-character lowercase hex string
    """
    return format(span_id, '016x')


def parse_trace_id(hex_string: str) -> int:
    """
    Parse hex string trace_id to OTel int.

    Raises:
        ValueError: if the value is not 32 lowercase hex characters
    """
    if not hex_string or not _TRACE_ID_HEX.fullmatch(hex_string):
        raise ValueError(f"invalid trace id: {hex_string!r}")
    return int(hex_string, 16)


def parse_span_id(hex_string: str) -> int:
    """
    Parse hex string span_id to OTel int.

    Raises:
        ValueError: if the value is not 16 lowercase hex characters
    """
    if not hex_string or not _SPAN_ID_HEX.fullmatch(hex_string):
        raise ValueError(f"invalid span id: {hex_string!r}")
    return int(hex_string, 16)


def truncate_attribute(value: Any, limit: int) -> Any:
    """Truncate string attribute values to ``limit`` characters; other types pass through."""
    if isinstance(value, str) and len(value) > limit:
        return value[:limit]
    if isinstance(value, (list, tuple)):
        return [item[:limit] if isinstance(item, str) else item for item in value]
    return value


# W3C Trace Context tracestate member grammar.
_TRACESTATE_KEY = re.compile(
    r"(?:[a-z][_0-9a-z\-\*\/]{0,255}"
    r"|[a-z0-9][_0-9a-z\-\*\/]{0,240}@[a-z][_0-9a-z\-\*\/]{0,13})"
)
_TRACESTATE_VALUE = re.compile(r"[\x20-\x2b\x2d-\x3c\x3e-\x7e]{0,255}[\x21-\x2b\x2d-\x3c\x3e-\x7e]")


def is_valid_tracestate_key(key: str) -> bool:
    """Lowercase alphanumeric plus ``_-*/``, optionally ``tenant@system``."""
    return isinstance(key, str) and bool(_TRACESTATE_KEY.fullmatch(key))


def is_valid_tracestate_value(value: str) -> bool:
    """Printable ASCII except ``,`` and ``=``, no trailing space, at most 256 chars."""
    return isinstance(value, str) and bool(_TRACESTATE_VALUE.fullmatch(value))
