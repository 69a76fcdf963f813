"""Tests for the instrumented call wrapper state machine."""

import asyncio

import pytest
from opentelemetry.trace import StatusCode

from callspan.context import extract, get_current_span
from callspan.errors import CallCancelledError, CallStateError, TransportError
from callspan.instrumentation import (
    CallState,
    InstrumentedCall,
    traced_call,
    traced_call_async,
)
from callspan.tracer import SpanStatus

BOOKS = [{"id": 1, "title": "Designing Data-Intensive Applications"}]


def network_down(headers):
    raise TransportError("network down")


class TestSuccess:

    def test_status_ok_with_success_event(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        payload = call.run(lambda headers: BOOKS)

        assert payload == BOOKS
        assert call.outcome is CallState.SUCCEEDED
        assert call.state is CallState.CLOSED
        assert call.span.status is SpanStatus.OK
        assert "fetchBooks success" in [event.name for event in call.span.events]
        assert call.span.exception is None
        assert call.span.end_time_ns is not None

    def test_operation_receives_injected_carrier(self, tracer):
        seen = {}

        def operation(headers):
            seen.update(headers)
            return BOOKS

        call = InstrumentedCall(
            "fetchBooks",
            tracer=tracer,
            trace_state="rojo=00f067aa0ba902b7,congo=t61rcWkgMzE",
            carrier={"accept": "application/json"},
        )
        call.run(operation)

        assert seen["accept"] == "application/json"
        assert seen["tracestate"] == "rojo=00f067aa0ba902b7,congo=t61rcWkgMzE"
        remote = extract(seen)
        assert remote.trace_id == call.span.trace_id
        assert remote.span_id == call.span.span_id

    def test_trace_state_mapping_keeps_listed_priority(self, tracer):
        call = InstrumentedCall(
            "fetchBooks",
            tracer=tracer,
            trace_state={"rojo": "00f067aa0ba902b7", "congo": "t61rcWkgMzE"},
        )
        assert list(call.span.trace_state.keys()) == ["rojo", "congo"]

    def test_span_is_current_only_while_in_flight(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        assert get_current_span() is None

        call.run(lambda headers: get_current_span())

        assert get_current_span() is None

    def test_active_span_seen_by_operation(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        current = call.run(lambda headers: get_current_span())
        assert current is call.span

    def test_exported_span(self, tracer, exporter):
        InstrumentedCall("fetchBooks", tracer=tracer).run(lambda headers: BOOKS)

        (exported,) = exporter.get_finished_spans()
        assert exported.status.status_code is StatusCode.OK
        assert [event.name for event in exported.events] == ["fetchBooks success"]

    def test_success_event_template_is_configurable(self, tracer):
        from callspan import runtime_config

        runtime_config.set_success_event_template("{name}.ok")
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        call.run(lambda headers: None)

        assert call.span.events[-1].name == "fetchBooks.ok"


class TestFailure:

    def test_transport_error_recorded_and_raised(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)

        with pytest.raises(TransportError, match="network down"):
            call.run(network_down)

        assert call.outcome is CallState.FAILED
        assert call.state is CallState.CLOSED
        assert call.span.status is SpanStatus.ERROR
        assert call.span.status_description == "network down"
        assert call.span.exception.message == "network down"
        assert call.span.end_time_ns is not None

    def test_other_exceptions_wrapped_in_transport_error(self, tracer):
        def refused(headers):
            raise ConnectionRefusedError("network down")

        call = InstrumentedCall("fetchBooks", tracer=tracer)
        with pytest.raises(TransportError) as excinfo:
            call.run(refused)

        assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)
        assert excinfo.value.message == "network down"
        assert call.span.exception.type == "ConnectionRefusedError"
        assert call.span.exception.message == "network down"
        assert call.span.status is SpanStatus.ERROR

    def test_traced_call_reports_failure(self, tracer):
        result = traced_call("fetchBooks", network_down, tracer=tracer)

        assert not result.ok
        assert result.payload is None
        assert result.error.message == "network down"
        assert result.span.status is SpanStatus.ERROR
        with pytest.raises(TransportError):
            result.unwrap()

    def test_returned_transport_error_fails_the_call(self, tracer):
        result = traced_call(
            "fetchBooks", lambda headers: TransportError("network down"), tracer=tracer
        )

        assert not result.ok
        assert result.payload is None
        assert result.error.message == "network down"
        assert result.span.status is SpanStatus.ERROR
        assert result.span.status_description == "network down"
        assert result.span.exception.message == "network down"
        assert not any(event.name == "fetchBooks success" for event in result.span.events)

    def test_returned_exception_is_wrapped(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)

        with pytest.raises(TransportError) as excinfo:
            call.run(lambda headers: ConnectionResetError("network down"))

        assert isinstance(excinfo.value.__cause__, ConnectionResetError)
        assert call.outcome is CallState.FAILED
        assert call.state is CallState.CLOSED
        assert call.span.exception.type == "ConnectionResetError"
        assert get_current_span() is None

    def test_traced_call_reports_success(self, tracer):
        result = traced_call("fetchBooks", lambda headers: BOOKS, tracer=tracer)

        assert result.ok
        assert result.unwrap() == BOOKS
        assert result.error is None

    def test_exported_failed_span(self, tracer, exporter):
        traced_call("fetchBooks", network_down, tracer=tracer)

        (exported,) = exporter.get_finished_spans()
        assert exported.status.status_code is StatusCode.ERROR
        assert exported.status.description == "network down"
        assert exported.events[0].name == "exception"
        assert exported.events[0].attributes["exception.message"] == "network down"

    def test_context_restored_after_failure(self, tracer):
        traced_call("fetchBooks", network_down, tracer=tracer)
        assert get_current_span() is None


class TestCancellation:

    def test_async_cancel_closes_span(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        started = []

        async def hang(headers):
            started.append(True)
            await asyncio.sleep(60)

        async def main():
            task = asyncio.ensure_future(call.run_async(hang))
            while not started:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(main())

        assert call.state is CallState.CLOSED
        assert call.outcome is CallState.FAILED
        assert call.span.end_time_ns is not None
        assert call.span.status is SpanStatus.ERROR
        assert call.span.exception.type == "CallCancelledError"
        assert isinstance(call.error, CallCancelledError)

    def test_keyboard_interrupt_closes_span(self, tracer):
        def interrupted(headers):
            raise KeyboardInterrupt

        call = InstrumentedCall("fetchBooks", tracer=tracer)
        with pytest.raises(KeyboardInterrupt):
            call.run(interrupted)

        assert call.span.is_ended
        assert call.span.status_description == "call aborted by KeyboardInterrupt"

    def test_cancel_before_dispatch(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        call.cancel()

        assert call.state is CallState.CLOSED
        assert call.span.is_ended
        assert call.span.status is SpanStatus.ERROR
        with pytest.raises(CallStateError):
            call.cancel()


class TestSingleDispatch:

    def test_second_run_rejected(self, tracer):
        call = InstrumentedCall("fetchBooks", tracer=tracer)
        call.run(lambda headers: BOOKS)

        with pytest.raises(CallStateError):
            call.run(lambda headers: BOOKS)

    def test_operation_called_once(self, tracer):
        calls = []

        def flaky(headers):
            calls.append(headers)
            raise TransportError("network down")

        traced_call("fetchBooks", flaky, tracer=tracer)
        assert len(calls) == 1


class TestAsync:

    def test_async_success(self, tracer):
        async def fetch_books(headers):
            await asyncio.sleep(0)
            return BOOKS

        result = asyncio.run(traced_call_async("fetchBooks", fetch_books, tracer=tracer))

        assert result.ok
        assert result.payload == BOOKS
        assert result.span.status is SpanStatus.OK

    def test_async_failure(self, tracer):
        async def fetch_books(headers):
            await asyncio.sleep(0)
            raise TransportError("network down", status_code=503)

        result = asyncio.run(traced_call_async("fetchBooks", fetch_books, tracer=tracer))

        assert not result.ok
        assert result.error.status_code == 503
        assert result.span.exception.message == "network down"
        assert result.span.is_ended

    def test_async_returned_error_fails_the_call(self, tracer):
        async def fetch_books(headers):
            await asyncio.sleep(0)
            return TransportError("network down", status_code=502)

        result = asyncio.run(traced_call_async("fetchBooks", fetch_books, tracer=tracer))

        assert not result.ok
        assert result.error.status_code == 502
        assert result.span.status is SpanStatus.ERROR
        assert result.span.is_ended

    def test_nested_call_is_child_of_outer(self, tracer):
        outer = InstrumentedCall("checkout", tracer=tracer)

        def operation(headers):
            inner = traced_call("fetchCart", lambda h: h, tracer=tracer)
            return inner

        inner = outer.run(operation)

        assert inner.span.trace_id == outer.span.trace_id
        assert inner.span.parent_span_id == outer.span.span_id
        assert inner.payload["traceparent"].split("-")[1] == outer.span.trace_id
