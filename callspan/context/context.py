"""Context helpers for binding the active span - using OpenTelemetry's context API."""

from contextvars import Token
from typing import Optional, TYPE_CHECKING

from opentelemetry import context as context_api
from opentelemetry.trace import get_current_span as otel_get_current_span
from opentelemetry.trace import set_span_in_context

if TYPE_CHECKING:
    from callspan.tracer.span import Span

# The wrapper rides next to the OTel span in the same context so that
# callers get back the object that holds the local span state.
_SPAN_KEY = context_api.create_key("callspan-span")


def get_current_span(context: Optional[context_api.Context] = None) -> Optional["Span"]:
    """
    Return the currently active callspan span, if any.

    Spans made current by other OpenTelemetry instrumentation are not
    returned; they are still honoured as parents by ``Tracer.start_span``.
    """
    otel_span = otel_get_current_span(context)
    if not otel_span.get_span_context().is_valid:
        return None
    span = context_api.get_value(_SPAN_KEY, context)
    if span is not None and span._otel_span is otel_span:
        return span
    return None


def push_span(span: "Span") -> Token:
    """
    Make ``span`` the current span for this thread / asyncio task.

    Returns:
        Token needed to restore the previous state
    """
    ctx = set_span_in_context(span._otel_span)
    ctx = context_api.set_value(_SPAN_KEY, span, ctx)
    return context_api.attach(ctx)


def pop_span(token: Token) -> None:
    """
    Restore the previous span context using the provided token.

    Args:
        token: Token returned by push_span()
    """
    context_api.detach(token)
