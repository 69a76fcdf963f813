"""Tracer using the OpenTelemetry SDK for identity, sampling and export."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from opentelemetry.context import Context
from opentelemetry.trace import NonRecordingSpan, TraceState
from opentelemetry.trace import Tracer as OTelTracer
from opentelemetry.trace import get_current_span as otel_get_current_span
from opentelemetry.trace import set_span_in_context

from callspan.tracer.span import Span
from callspan.tracer.span_context import SpanContext
from callspan.utils.helpers import format_span_id

if TYPE_CHECKING:
    from callspan.tracer.provider import TracerProvider

logger = logging.getLogger(__name__)


class Tracer:
    """
    Tracer wrapper that uses an OpenTelemetry Tracer internally.

    Spans get their ids and sampling decision from the OTel SDK and are
    returned wrapped in a callspan ``Span``.
    """

    def __init__(self, provider: "TracerProvider", instrumentation_scope: str):
        """
        Initialize tracer with OpenTelemetry Tracer.

        Args:
            provider: callspan TracerProvider instance
            instrumentation_scope: Instrumentation scope name
        """
        self._provider = provider
        self.instrumentation_scope = instrumentation_scope
        self._otel_tracer: OTelTracer = provider._otel_provider.get_tracer(instrumentation_scope)

    def start_span(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        parent: Optional[Span] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> Span:
        """
        Start a new span.

        Parent resolution order: ``parent``, then ``parent_context`` (e.g. one
        returned by ``extract``), then the currently active span. With none of
        them the span is a new trace root.

        Args:
            name: Span name
            attributes: Optional attributes dictionary
            parent: Optional parent span
            parent_context: Optional parent span context

        Returns:
            callspan Span instance (wraps OTel Span)
        """
        from callspan.context.context import get_current_span

        otel_parent_context = None
        parent_span_id = None
        inherited_state: Optional[TraceState] = None

        if parent is None and parent_context is None:
            parent = get_current_span()

        if parent is not None:
            otel_parent_context = set_span_in_context(parent._otel_span)
            parent_span_id = parent.span_id
            # The parent's trace state may have changed since it started.
            inherited_state = parent.trace_state

        elif parent_context is not None:
            otel_parent_context = self._context_from_span_context(parent_context)
            if otel_parent_context is None:
                # Empty context, so the SDK does not fall back to the active span.
                otel_parent_context = Context()
            else:
                parent_span_id = parent_context.span_id

        else:
            # Spans started by other OpenTelemetry instrumentation.
            current = otel_get_current_span()
            if current.get_span_context().is_valid:
                otel_parent_context = set_span_in_context(current)
                parent_span_id = format_span_id(current.get_span_context().span_id)

        otel_span = self._otel_tracer.start_span(name=name, context=otel_parent_context)
        span = Span(otel_span, self, parent_span_id, name=name, trace_state=inherited_state)
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        return span

    def start_as_current_span(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
        parent: Optional[Span] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> Span:
        """
        Start a span to be used as a context manager.

        The span becomes current on ``__enter__`` and is ended on ``__exit__``.
        """
        return self.start_span(
            name=name,
            attributes=attributes,
            parent=parent,
            parent_context=parent_context,
        )

    def get_current_span(self) -> Optional[Span]:
        """Get the current span."""
        from callspan.context.context import get_current_span

        return get_current_span()

    def _context_from_span_context(self, parent_context: SpanContext):
        from callspan.context.propagators import to_otel_span_context

        try:
            otel_span_context = to_otel_span_context(parent_context, is_remote=True)
        except ValueError:
            logger.warning(
                "Ignoring invalid parent context %r; starting a new trace", parent_context
            )
            return None
        return set_span_in_context(NonRecordingSpan(otel_span_context))

    def _run_enrichment_processors(self, span: Span) -> None:
        """
        Run enrichment processors before span ends.

        Called by Span.end() before the OTel span is ended.
        """
        for processor in self._provider._enrichment_processors:
            try:
                processor.on_end(span)
            except Exception:
                # Processors should not crash tracing
                logger.debug("Enrichment processor %r failed", processor, exc_info=True)
