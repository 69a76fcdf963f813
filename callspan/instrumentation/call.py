"""
Instrumented outbound calls.

An ``InstrumentedCall`` owns one span, one carrier and one context binding
for exactly one dispatch of an outbound operation:

    CREATED -> IN_FLIGHT -> SUCCEEDED | FAILED -> CLOSED

The span is ended on every path out of IN_FLIGHT, cancellation included.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from callspan import runtime_config
from callspan.context import inject, parse_tracestate, pop_span, push_span
from callspan.errors import (
    CallCancelledError,
    CallStateError,
    MalformedContextError,
    TransportError,
)
from callspan.tracer.span import Span, SpanStatus
from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)

Carrier = Dict[str, str]
Operation = Callable[[Carrier], Any]
AsyncOperation = Callable[[Carrier], Awaitable[Any]]


class CallState(Enum):
    CREATED = "created"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class CallResult:
    """Outcome of one instrumented call as seen by its caller."""

    ok: bool
    payload: Any = None
    error: Optional[TransportError] = None
    span: Optional[Span] = field(default=None, repr=False)

    def unwrap(self) -> Any:
        """Return the payload, or raise the recorded transport error."""
        if self.ok:
            return self.payload
        raise self.error


class InstrumentedCall:
    """
    Traces a single outbound operation.

    Args:
        name: Span name, e.g. ``"fetchBooks"``
        tracer: Tracer to start the span with (defaults to the global one)
        attributes: Initial span attributes
        trace_state: Vendor entries to add, as a mapping or a W3C header
            string; the first entry ends up with the highest priority
        baggage: W3C baggage entries to send along
        parent: Explicit parent span (defaults to the active span)
        carrier: Headers to start from; the call works on its own copy
    """

    def __init__(
        self,
        name: str,
        *,
        tracer: Optional[Tracer] = None,
        attributes: Optional[Dict[str, Any]] = None,
        trace_state: Optional[Union[Mapping[str, str], str]] = None,
        baggage: Optional[Mapping[str, str]] = None,
        parent: Optional[Span] = None,
        carrier: Optional[Mapping[str, str]] = None,
    ) -> None:
        if tracer is None:
            from callspan import get_tracer

            tracer = get_tracer("callspan.client")

        self.name = name
        self.carrier: Carrier = dict(carrier or {})
        self.baggage: Dict[str, str] = dict(baggage or {})
        self.span = tracer.start_span(name, attributes=attributes, parent=parent)
        self._apply_trace_state(trace_state)

        self.state = CallState.CREATED
        self.outcome: Optional[CallState] = None
        self.error: Optional[TransportError] = None
        self._token = None

    def _apply_trace_state(self, trace_state) -> None:
        if not trace_state:
            return
        if isinstance(trace_state, str):
            try:
                entries = list(parse_tracestate(trace_state).items())
            except MalformedContextError as exc:
                logger.warning("Ignoring malformed trace state %r: %s", trace_state, exc)
                return
        else:
            entries = list(trace_state.items())
        # Each insert lands at the front, so go lowest priority first.
        for vendor, value in reversed(entries):
            self.span.set_trace_state(vendor, value)

    def _dispatch(self) -> None:
        if self.state is not CallState.CREATED:
            raise CallStateError(
                "an instrumented call dispatches exactly once; use a new InstrumentedCall to retry",
                {"name": self.name, "state": self.state.value},
            )
        inject(self.span, self.carrier, baggage=self.baggage or None)
        self._token = push_span(self.span)
        self.state = CallState.IN_FLIGHT

    def _succeed(self) -> None:
        self.span.add_event(runtime_config.get_success_event_template().format(name=self.name))
        self.span.set_status(SpanStatus.OK)
        self.state = self.outcome = CallState.SUCCEEDED

    def _fail(self, exc: BaseException) -> TransportError:
        if isinstance(exc, TransportError):
            error = recorded = exc
        elif isinstance(exc, Exception):
            error = TransportError(str(exc) or type(exc).__name__, {"error_type": type(exc).__name__})
            error.__cause__ = exc
            recorded = exc
        else:
            if isinstance(exc, asyncio.CancelledError):
                message = "call cancelled"
            else:
                message = f"call aborted by {type(exc).__name__}"
            error = recorded = CallCancelledError(message)
            error.__cause__ = exc

        self.span.record_exception(recorded)
        self.span.set_status(SpanStatus.ERROR, error.message)
        self.error = error
        self.state = self.outcome = CallState.FAILED
        return error

    def _close(self) -> None:
        try:
            self.span.end()
        finally:
            if self._token is not None:
                pop_span(self._token)
                self._token = None
            self.state = CallState.CLOSED

    def cancel(self, reason: str = "call cancelled") -> None:
        """Abandon a call that was never dispatched, ending its span as failed."""
        if self.state is not CallState.CREATED:
            raise CallStateError(
                "only a call that has not been dispatched can be cancelled",
                {"name": self.name, "state": self.state.value},
            )
        self._fail(CallCancelledError(reason))
        self._close()

    def run(self, operation: Operation) -> Any:
        """
        Dispatch ``operation(carrier)`` once and return its payload.

        Raises:
            TransportError: the operation failed (after being recorded on the span)
            CallStateError: the call was already dispatched
        """
        self._dispatch()
        try:
            payload = operation(self.carrier)
        except TransportError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            raise self._fail(exc) from exc
        except BaseException as exc:
            self._fail(exc)
            raise
        else:
            if isinstance(payload, BaseException):
                raise self._fail(payload)
            self._succeed()
            return payload
        finally:
            self._close()

    async def run_async(self, operation: AsyncOperation) -> Any:
        """Async variant of ``run``; cancellation still closes the span."""
        self._dispatch()
        try:
            payload = await operation(self.carrier)
        except TransportError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            raise self._fail(exc) from exc
        except BaseException as exc:
            self._fail(exc)
            raise
        else:
            if isinstance(payload, BaseException):
                raise self._fail(payload)
            self._succeed()
            return payload
        finally:
            self._close()


def traced_call(name: str, operation: Operation, **kwargs) -> CallResult:
    """
    Run ``operation`` inside a fresh InstrumentedCall.

    Transport failures are reported in the result instead of raised.
    Keyword arguments are passed to ``InstrumentedCall``.
    """
    call = InstrumentedCall(name, **kwargs)
    try:
        payload = call.run(operation)
    except TransportError as exc:
        return CallResult(ok=False, error=exc, span=call.span)
    return CallResult(ok=True, payload=payload, span=call.span)


async def traced_call_async(name: str, operation: AsyncOperation, **kwargs) -> CallResult:
    """Async variant of ``traced_call``."""
    call = InstrumentedCall(name, **kwargs)
    try:
        payload = await call.run_async(operation)
    except TransportError as exc:
        return CallResult(ok=False, error=exc, span=call.span)
    return CallResult(ok=True, payload=payload, span=call.span)
