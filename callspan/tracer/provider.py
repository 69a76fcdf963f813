"""TracerProvider using OpenTelemetry SDK."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from opentelemetry.sdk.resources import Resource as OTelResource
from opentelemetry.sdk.trace import SpanProcessor as OTelSpanProcessor
from opentelemetry.sdk.trace import TracerProvider as OTelTracerProvider
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from callspan import runtime_config
from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


class SpanProcessor:
    """
    Base span processor interface for callspan enrichment processors.

    Enrichment processors run BEFORE span.end() (span is mutable).
    Export processors use OTel's SpanProcessor interface (run AFTER span.end()).
    """

    def on_end(self, span) -> None:
        """
        Called when a span ends.

        Note: This is called BEFORE the OTel span ends, so the span is still mutable.

        Args:
            span: callspan Span instance (mutable)
        """
        pass

    def shutdown(self) -> None:
        """Shutdown the processor."""
        pass

    def force_flush(self, timeout: Optional[float] = None) -> None:
        """Force flush any pending spans."""
        pass


class TracerProvider:
    """
    TracerProvider using OpenTelemetry SDK.

    Separates enrichment processors (callspan) from export processors (OTel).
    """

    def __init__(
        self,
        resource: Optional[Dict[str, str]] = None,
        sample_rate: Optional[float] = None,
    ) -> None:
        """
        Initialize TracerProvider with OpenTelemetry.

        Args:
            resource: Resource attributes dictionary (converted to OTel Resource)
            sample_rate: Head sampling probability for new traces; child spans
                follow their parent's decision. Defaults to runtime config.
        """
        self.resource = dict(resource or {"service.name": runtime_config.get_service_name()})
        self.sample_rate = runtime_config.get_sample_rate() if sample_rate is None else sample_rate

        self._otel_provider = OTelTracerProvider(
            resource=OTelResource.create(self.resource),
            sampler=ParentBased(TraceIdRatioBased(self.sample_rate)),
        )

        # Enrichment processors; export processors live on the OTel provider
        self._enrichment_processors: List[SpanProcessor] = []

        self._tracers: Dict[str, Tracer] = {}
        self._lock = threading.Lock()

    def get_tracer(self, name: str) -> Tracer:
        """
        Get a tracer by name.

        Args:
            name: Instrumentation scope name
        """
        with self._lock:
            tracer = self._tracers.get(name)
            if tracer is None:
                tracer = Tracer(self, name)
                self._tracers[name] = tracer
            return tracer

    def add_span_processor(self, processor: Any) -> None:
        """
        Add a span processor.

        OTel ``SpanProcessor`` instances join the export pipeline; anything
        else is run as an enrichment processor before the span ends.
        """
        if isinstance(processor, OTelSpanProcessor):
            self._otel_provider.add_span_processor(processor)
        else:
            self._enrichment_processors.append(processor)

    def force_flush(self, timeout: Optional[float] = None) -> None:
        """Force flush all processors."""
        self._otel_provider.force_flush(timeout_millis=int(timeout * 1000) if timeout else 30000)

        for processor in self._enrichment_processors:
            try:
                processor.force_flush(timeout=timeout)
            except Exception:
                logger.debug("force_flush failed on %r", processor, exc_info=True)

    def shutdown(self) -> None:
        """Shutdown the provider and all processors."""
        self._otel_provider.shutdown()

        for processor in self._enrichment_processors:
            try:
                processor.shutdown()
            except Exception:
                logger.debug("shutdown failed on %r", processor, exc_info=True)
