"""Span implementation - wrapper around an OpenTelemetry span with local lifecycle state."""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from opentelemetry.trace import Span as OTelSpan, Status, StatusCode, TraceState

from callspan import runtime_config
from callspan.errors import CallspanError, PostLifecycleMutationWarning
from callspan.tracer.span_context import SpanContext
from callspan.utils.helpers import (
    format_span_id,
    format_trace_id,
    is_valid_tracestate_key,
    is_valid_tracestate_value,
    truncate_attribute,
)

if TYPE_CHECKING:
    from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)

# W3C caps tracestate at 32 list members.
MAX_TRACESTATE_MEMBERS = 32


class SpanStatus(Enum):
    UNSET = 0
    OK = 1
    ERROR = 2


@dataclass(frozen=True)
class SpanEvent:
    name: str
    attributes: Dict[str, Any]
    timestamp_ns: int


@dataclass(frozen=True)
class SpanException:
    type: str
    message: str
    stacktrace: str
    error: BaseException = field(repr=False, compare=False)


class Span:
    """
    Wrapper around an OpenTelemetry span.

    The OTel span carries identity and is what the export pipeline sees. The
    wrapper keeps the mutable state callers inspect (trace state, events,
    recorded exception, status) and refuses every mutation once ``end()`` ran.
    """

    def __init__(
        self,
        otel_span: OTelSpan,
        tracer: "Tracer",
        parent_span_id: Optional[str] = None,
        name: Optional[str] = None,
        trace_state: Optional[TraceState] = None,
    ) -> None:
        """
        Initialize span wrapper.

        Args:
            otel_span: OpenTelemetry Span instance
            tracer: callspan Tracer instance
            parent_span_id: Parent span ID (hex string), None for a root span
            name: Span name (falls back to the OTel span's name)
            trace_state: Trace state to start from instead of the OTel span's
        """
        self._otel_span = otel_span
        self.tracer = tracer
        self.parent_span_id = parent_span_id
        self.name = name or getattr(otel_span, "name", "unknown")
        self._ended = False
        self._activation_token = None

        otel_context = otel_span.get_span_context()
        self._trace_id = format_trace_id(otel_context.trace_id)
        self._span_id = format_span_id(otel_context.span_id)
        self._trace_flags = int(otel_context.trace_flags)
        if trace_state is None:
            trace_state = otel_context.trace_state or TraceState()
        self._trace_state: TraceState = trace_state

        self.start_time_ns: int = getattr(otel_span, "start_time", None) or time.time_ns()
        self.end_time_ns: Optional[int] = None

        self.status = SpanStatus.UNSET
        self.status_description: Optional[str] = None
        self.exception: Optional[SpanException] = None
        self.dropped_mutations = 0

        self._events: List[SpanEvent] = []
        self._attributes: Dict[str, Any] = {}

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def span_id(self) -> str:
        return self._span_id

    @property
    def trace_flags(self) -> int:
        return self._trace_flags

    @property
    def trace_state(self) -> TraceState:
        """Current trace state, highest priority first (immutable snapshot)."""
        return self._trace_state

    @property
    def context(self) -> SpanContext:
        """Snapshot of the propagatable identity of this span."""
        return SpanContext(
            trace_id=self._trace_id,
            span_id=self._span_id,
            trace_flags=self._trace_flags,
            trace_state=self._trace_state.to_header() or None,
        )

    @property
    def attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    @property
    def events(self) -> List[SpanEvent]:
        return list(self._events)

    @property
    def is_ended(self) -> bool:
        return self._ended

    @property
    def is_recording(self) -> bool:
        return not self._ended and self._otel_span.is_recording()

    @property
    def duration_ns(self) -> Optional[int]:
        if self.end_time_ns is None:
            return None
        return self.end_time_ns - self.start_time_ns

    def _reject_if_ended(self, operation: str) -> bool:
        if not self._ended:
            return False
        self.dropped_mutations += 1
        logger.warning(
            "%s: %s() ignored on ended span %r (span_id=%s)",
            PostLifecycleMutationWarning.__name__,
            operation,
            self.name,
            self._span_id,
        )
        return True

    def set_trace_state(self, vendor: str, value: str) -> None:
        """
        Insert or overwrite one tracestate entry.

        The entry moves to the front (highest priority); all other entries keep
        their relative order. When the member cap is reached the lowest
        priority entry is evicted.
        """
        if self._reject_if_ended("set_trace_state"):
            return
        if not is_valid_tracestate_key(vendor) or not is_valid_tracestate_value(value):
            logger.warning(
                "Ignoring invalid tracestate entry %r=%r on span %r", vendor, value, self.name
            )
            return

        state = self._trace_state
        if vendor in state:
            state = state.update(vendor, value)
        else:
            if len(state) >= MAX_TRACESTATE_MEMBERS:
                evicted = list(state.keys())[-1]
                logger.debug("tracestate full, evicting %r from span %r", evicted, self.name)
                state = state.delete(evicted)
            state = state.add(vendor, value)
        self._trace_state = state

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on the span."""
        if self._reject_if_ended("set_attribute"):
            return

        value = truncate_attribute(value, runtime_config.get_attr_truncation_limit())
        self._attributes[key] = value
        try:
            self._otel_span.set_attribute(key, value)
        except Exception:
            logger.debug("Failed to set attribute %r on OTel span", key, exc_info=True)

    def add_event(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        timestamp_ns: Optional[int] = None,
    ) -> None:
        """Add an event to the span."""
        if self._reject_if_ended("add_event"):
            return

        timestamp_ns = timestamp_ns if timestamp_ns is not None else time.time_ns()
        attributes = dict(attributes or {})
        self._events.append(SpanEvent(name, attributes, timestamp_ns))
        try:
            self._otel_span.add_event(
                name=name,
                attributes=attributes or None,
                timestamp=timestamp_ns,
            )
        except Exception:
            logger.debug("Failed to add event %r to OTel span", name, exc_info=True)

    def record_exception(self, error: BaseException) -> None:
        """
        Record an exception on the span.

        Status is left alone; callers set it separately with ``set_status``.
        """
        if self._reject_if_ended("record_exception"):
            return

        message = error.message if isinstance(error, CallspanError) else str(error)
        stacktrace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.exception = SpanException(
            type=type(error).__name__,
            message=message,
            stacktrace=stacktrace,
            error=error,
        )
        timestamp_ns = time.time_ns()
        self._events.append(
            SpanEvent(
                "exception",
                {
                    "exception.type": type(error).__name__,
                    "exception.message": message,
                    "exception.stacktrace": stacktrace,
                },
                timestamp_ns,
            )
        )
        try:
            self._otel_span.record_exception(error, timestamp=timestamp_ns)
        except Exception:
            logger.debug("Failed to record exception on OTel span", exc_info=True)

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        """
        Set the span status.

        ``OK`` carries no description; a previously recorded exception is kept.
        """
        if self._reject_if_ended("set_status"):
            return

        if status == SpanStatus.OK:
            description = None
        self.status = status
        self.status_description = description

        if status == SpanStatus.OK:
            otel_status = Status(status_code=StatusCode.OK)
        elif status == SpanStatus.ERROR:
            otel_status = Status(status_code=StatusCode.ERROR, description=description)
        else:
            otel_status = Status(status_code=StatusCode.UNSET)

        try:
            self._otel_span.set_status(otel_status)
        except Exception:
            logger.debug("Failed to set status on OTel span", exc_info=True)

    def end(self) -> None:
        """
        End the span.

        Enrichment processors run BEFORE the OTel span ends (span is still mutable).
        Export processors run AFTER (OTel handles this automatically).
        """
        if self._reject_if_ended("end"):
            return

        self.end_time_ns = time.time_ns()

        # 1. Run enrichment processors (span is still mutable)
        self.tracer._run_enrichment_processors(self)

        # 2. End the OTel span (makes it immutable)
        try:
            self._otel_span.end(end_time=self.end_time_ns)
        except Exception:
            logger.debug("Failed to end OTel span", exc_info=True)

        self._ended = True

    def _exit(self, exc: Optional[BaseException]) -> None:
        from callspan.context.context import pop_span

        try:
            if exc is not None and not self._ended:
                self.record_exception(exc)
                self.set_status(SpanStatus.ERROR, self.exception.message)
            if not self._ended:
                self.end()
        finally:
            if self._activation_token is not None:
                pop_span(self._activation_token)
                self._activation_token = None

    # Context manager support
    def __enter__(self) -> "Span":
        from callspan.context.context import push_span

        self._activation_token = push_span(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._exit(exc)
        return False

    async def __aenter__(self) -> "Span":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._exit(exc)
        return False

    def __repr__(self) -> str:
        return (
            f"Span(name={self.name!r}, trace_id={self._trace_id}, span_id={self._span_id}, "
            f"status={self.status.name}, ended={self._ended})"
        )
