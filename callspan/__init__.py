"""
callspan - distributed tracing for outbound calls.

Starts a span per outbound call, injects its W3C trace context into the
request headers and finalizes the span from the call's outcome.

    from callspan import traced_call

    result = traced_call("fetchBooks", lambda headers: session.get(url, headers=headers))
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from callspan import runtime_config
from callspan.context import extract, get_current_span, inject
from callspan.errors import (
    CallCancelledError,
    CallspanError,
    CallStateError,
    ConfigError,
    MalformedContextError,
    PostLifecycleMutationWarning,
    TransportError,
)
from callspan.instrumentation import (
    CallResult,
    CallState,
    InstrumentedCall,
    RequestsTransport,
    fetch,
    traced_call,
    traced_call_async,
)
from callspan.processors import LoggingSpanProcessor
from callspan.tracer import Span, SpanContext, SpanStatus, Tracer, TracerProvider

__version__ = "0.1.0"

logger = logging.getLogger("callspan.tracing")

_provider: Optional[TracerProvider] = None
_lock = threading.Lock()


def start_tracing(
    *,
    service_name: Optional[str] = None,
    sample_rate: Optional[float] = None,
    debug: Optional[bool] = None,
    span_processors: Optional[Iterable] = None,
    load_env: bool = True,
) -> TracerProvider:
    """
    Create the global TracerProvider.

    Environment variables (CALLSPAN_*) are applied first, explicit arguments
    override them. Calling this again while tracing is active returns the
    existing provider and logs a warning.

    Raises:
        ConfigError: if a setting is invalid.
    """
    global _provider
    with _lock:
        if _provider is not None:
            logger.warning(
                "start_tracing() called while tracing is already active; "
                "returning the existing provider. Call stop_tracing() first to reconfigure."
            )
            return _provider

        if load_env:
            runtime_config.load_from_env()
        if service_name is not None:
            runtime_config.set_service_name(service_name)
        if sample_rate is not None:
            runtime_config.set_sample_rate(sample_rate)
        if debug is not None:
            runtime_config.set_debug(debug)

        _provider = _build_provider(span_processors)
        return _provider


def _build_provider(span_processors: Optional[Iterable] = None) -> TracerProvider:
    provider = TracerProvider(resource={"service.name": runtime_config.get_service_name()})
    for processor in span_processors or []:
        provider.add_span_processor(processor)
    if runtime_config.get_debug():
        provider.add_span_processor(LoggingSpanProcessor())
    logger.debug(
        "Tracing started (service=%s, sample_rate=%s)",
        runtime_config.get_service_name(),
        provider.sample_rate,
    )
    return provider


def stop_tracing() -> None:
    """Shut down the global provider; a later start_tracing() starts afresh."""
    global _provider
    with _lock:
        provider, _provider = _provider, None
    if provider is not None:
        provider.shutdown()


def get_tracer_provider() -> TracerProvider:
    """Return the global provider, starting tracing with defaults if needed."""
    global _provider
    with _lock:
        if _provider is None:
            runtime_config.load_from_env()
            _provider = _build_provider()
        return _provider


def get_tracer(name: str = "callspan") -> Tracer:
    return get_tracer_provider().get_tracer(name)


__all__ = [
    "__version__",
    "start_tracing",
    "stop_tracing",
    "get_tracer",
    "get_tracer_provider",
    "runtime_config",
    "Span",
    "SpanContext",
    "SpanStatus",
    "Tracer",
    "TracerProvider",
    "InstrumentedCall",
    "CallResult",
    "CallState",
    "traced_call",
    "traced_call_async",
    "fetch",
    "RequestsTransport",
    "inject",
    "extract",
    "get_current_span",
    "CallspanError",
    "ConfigError",
    "TransportError",
    "CallCancelledError",
    "MalformedContextError",
    "CallStateError",
    "PostLifecycleMutationWarning",
]
