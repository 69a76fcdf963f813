"""Instrumentation for outbound calls and inbound requests."""

from callspan.instrumentation.call import (
    CallResult,
    CallState,
    InstrumentedCall,
    traced_call,
    traced_call_async,
)
from callspan.instrumentation.http_client import RequestsTransport, fetch
from callspan.instrumentation.http_client import inject_headers as inject_http_headers
from callspan.instrumentation.http_server import extract_parent_context, start_server_span

__all__ = [
    "CallResult",
    "CallState",
    "InstrumentedCall",
    "traced_call",
    "traced_call_async",
    "RequestsTransport",
    "fetch",
    "inject_http_headers",
    "extract_parent_context",
    "start_server_span",
]
