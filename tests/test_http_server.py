"""Tests for the receiving side: extracting a parent and starting a server span."""

from callspan.instrumentation import InstrumentedCall, extract_parent_context, start_server_span
from callspan.tracer import SpanStatus


def test_server_span_continues_client_trace(tracer):
    client = InstrumentedCall(
        "fetchBooks", tracer=tracer, trace_state="rojo=00f067aa0ba902b7,congo=t61rcWkgMzE"
    )
    inbound = client.run(lambda headers: dict(headers))

    with start_server_span(tracer, "GET /api/catalog/books", inbound) as server:
        server.set_attribute("http.status_code", 200)

    assert server.trace_id == client.span.trace_id
    assert server.parent_span_id == client.span.span_id
    assert list(server.trace_state.keys()) == ["rojo", "congo"]
    assert server.is_ended


def test_malformed_parent_starts_new_trace(tracer):
    headers = {"traceparent": "00-not-a-trace-01"}
    assert extract_parent_context(headers) is None

    with start_server_span(tracer, "GET /api/orders", headers) as server:
        pass

    assert server.parent_span_id is None
    assert server.status is SpanStatus.UNSET
