"""W3C trace context propagation using OpenTelemetry's standard propagators."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, Iterable, List, Mapping, MutableMapping, Optional, Tuple, Union

from opentelemetry import baggage as baggage_api
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.trace import NonRecordingSpan, TraceFlags, TraceState
from opentelemetry.trace import SpanContext as OTelSpanContext
from opentelemetry.trace import get_current_span as otel_get_current_span
from opentelemetry.trace import set_span_in_context
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from callspan import runtime_config
from callspan.errors import MalformedContextError
from callspan.tracer.span_context import SpanContext
from callspan.utils.helpers import (
    format_span_id,
    format_trace_id,
    is_valid_tracestate_key,
    is_valid_tracestate_value,
    parse_span_id,
    parse_trace_id,
)

logger = logging.getLogger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"
BAGGAGE_HEADER = "baggage"

_MAX_TRACESTATE_MEMBERS = 32

# Only spaces and tabs may pad a traceparent.
_TRACEPARENT_CHARS = re.compile(r"[ \t]*[0-9A-Za-z-]+[ \t]*")

_trace_context_propagator = TraceContextTextMapPropagator()
_baggage_propagator = W3CBaggagePropagator()
_propagator = CompositePropagator([_trace_context_propagator, _baggage_propagator])


def format_traceparent(context: SpanContext) -> str:
    """
    Format traceparent header value (W3C Trace Context standard).

    Returns an empty string for an invalid context.
    """
    try:
        otel_context = to_otel_span_context(context, include_trace_state=False)
    except ValueError:
        return ""

    carrier: Dict[str, str] = {}
    _trace_context_propagator.inject(carrier, context=set_span_in_context(NonRecordingSpan(otel_context)))
    return carrier.get(TRACEPARENT_HEADER, "")


def parse_traceparent(header_value: str) -> SpanContext:
    """
    Parse a traceparent header into a SpanContext.

    Raises:
        MalformedContextError: wrong segment count, non-hex or uppercase
            characters, all-zero ids or a forbidden version.
    """
    if not header_value:
        raise MalformedContextError("missing traceparent")
    if not _TRACEPARENT_CHARS.fullmatch(header_value):
        raise MalformedContextError("malformed traceparent", {"value": header_value})

    ctx = _trace_context_propagator.extract({TRACEPARENT_HEADER: header_value})
    otel_context = otel_get_current_span(ctx).get_span_context()
    if not otel_context.is_valid:
        raise MalformedContextError("malformed traceparent", {"value": header_value})
    return SpanContext(
        trace_id=format_trace_id(otel_context.trace_id),
        span_id=format_span_id(otel_context.span_id),
        trace_flags=int(otel_context.trace_flags),
        is_remote=True,
    )


def _cap_tracestate(
    items: Iterable[Tuple[str, str]], max_length: int
) -> List[Tuple[str, str]]:
    kept: List[Tuple[str, str]] = []
    total = 0
    dropped = 0
    for key, value in items:
        if not is_valid_tracestate_key(key) or not is_valid_tracestate_value(value):
            logger.warning("Dropping invalid tracestate entry %r=%r", key, value)
            continue
        if dropped or len(kept) >= _MAX_TRACESTATE_MEMBERS:
            dropped += 1
            continue
        added = len(key) + 1 + len(value) + (1 if kept else 0)
        if total + added > max_length:
            dropped += 1
            continue
        kept.append((key, value))
        total += added
    if dropped:
        logger.debug("tracestate over %d chars, dropped %d lowest priority entries", max_length, dropped)
    return kept


def _serialize(items: Iterable[Tuple[str, str]]) -> str:
    return ",".join(f"{key}={value}" for key, value in items)


def format_tracestate(
    state: Union[Mapping[str, str], TraceState],
    max_length: Optional[int] = None,
) -> str:
    """
    Format tracestate header value from an ordered mapping.

    Entries are written in priority order (first = highest). Once the next
    entry would push the value past ``max_length`` characters it and every
    lower priority entry are dropped; entries are never cut in half.
    """
    if not state:
        return ""
    if max_length is None:
        max_length = runtime_config.get_tracestate_max_length()
    return _serialize(_cap_tracestate(state.items(), max_length))


def parse_tracestate(header_value: str) -> Dict[str, str]:
    """
    Parse a tracestate header into an ordered dict.

    Empty list members are skipped, as W3C allows.

    Raises:
        MalformedContextError: on an invalid member, a duplicate key or more
            than 32 members.
    """
    result: Dict[str, str] = {}
    if not header_value:
        return result

    for member in header_value.split(","):
        member = member.strip(" \t")
        if not member:
            continue
        key, sep, value = member.partition("=")
        if not sep or not is_valid_tracestate_key(key) or not is_valid_tracestate_value(value):
            raise MalformedContextError("malformed tracestate member", {"member": member})
        if key in result:
            raise MalformedContextError("duplicate tracestate key", {"key": key})
        result[key] = value

    if len(result) > _MAX_TRACESTATE_MEMBERS:
        raise MalformedContextError("too many tracestate members", {"count": len(result)})
    return result


def to_otel_span_context(
    context: SpanContext,
    is_remote: Optional[bool] = None,
    include_trace_state: bool = True,
) -> OTelSpanContext:
    """
    Convert a callspan SpanContext to an OTel SpanContext.

    The trace state is capped to the configured maximum length.

    Raises:
        ValueError: if the trace or span id is not valid hex.
    """
    trace_state = TraceState()
    if include_trace_state and context.trace_state:
        try:
            items = parse_tracestate(context.trace_state).items()
        except MalformedContextError as exc:
            logger.warning("Ignoring malformed trace state on %r: %s", context.span_id, exc)
        else:
            trace_state = TraceState(
                _cap_tracestate(items, runtime_config.get_tracestate_max_length())
            )

    return OTelSpanContext(
        trace_id=parse_trace_id(context.trace_id),
        span_id=parse_span_id(context.span_id),
        is_remote=context.is_remote if is_remote is None else is_remote,
        trace_flags=TraceFlags(context.trace_flags & 0xFF),
        trace_state=trace_state,
    )


def inject(
    span=None,
    carrier: Optional[MutableMapping[str, str]] = None,
    baggage: Optional[Mapping[str, str]] = None,
) -> MutableMapping[str, str]:
    """
    Write the span's context into ``carrier``.

    Sets ``traceparent``, ``tracestate`` (when the span has trace state) and
    ``baggage`` (when any is given or carried on the context). Injecting the
    same span twice leaves the carrier unchanged.

    Args:
        span: callspan Span or SpanContext; defaults to the current span
        carrier: Mapping to write into (e.g. outbound request headers)
        baggage: Extra baggage entries, merged over the context's own

    Returns:
        The carrier, for convenience.
    """
    if carrier is None:
        carrier = {}
    if span is None:
        from callspan.context.context import get_current_span

        span = get_current_span()
        if span is None:
            return carrier

    span_context = span if isinstance(span, SpanContext) else span.context
    try:
        otel_context = to_otel_span_context(span_context)
    except ValueError:
        logger.warning("Not injecting invalid span context %r", span_context)
        return carrier

    ctx = set_span_in_context(NonRecordingSpan(otel_context))
    entries = dict(span_context.baggage or {})
    entries.update(baggage or {})
    for key, value in entries.items():
        ctx = baggage_api.set_baggage(key, value, context=ctx)

    # Stale values from an earlier inject would otherwise survive an empty state.
    carrier.pop(TRACESTATE_HEADER, None)
    carrier.pop(BAGGAGE_HEADER, None)
    _propagator.inject(carrier, context=ctx)
    return carrier


def extract(carrier: Mapping[str, str]) -> Optional[SpanContext]:
    """
    Read a remote SpanContext from ``carrier``.

    Header names are matched case-insensitively. A malformed traceparent
    yields None so the receiver starts a new trace; a malformed tracestate
    only drops the trace state.
    """
    if not carrier:
        return None
    headers = {str(key).lower(): value for key, value in carrier.items()}

    try:
        parent = parse_traceparent(headers.get(TRACEPARENT_HEADER, ""))
    except MalformedContextError as exc:
        logger.debug("Discarding inbound trace context: %s", exc)
        return None

    trace_state = None
    raw_state = headers.get(TRACESTATE_HEADER)
    if raw_state:
        try:
            trace_state = _serialize(parse_tracestate(raw_state).items()) or None
        except MalformedContextError as exc:
            logger.debug("Discarding inbound tracestate: %s", exc)

    baggage = None
    if headers.get(BAGGAGE_HEADER):
        entries = baggage_api.get_all(_baggage_propagator.extract(headers))
        baggage = {key: str(value) for key, value in entries.items()} or None

    return dataclasses.replace(parent, trace_state=trace_state, baggage=baggage)
