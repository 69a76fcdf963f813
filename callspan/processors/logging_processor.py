"""Span processor that logs spans when they end."""

from __future__ import annotations

import logging
from typing import Optional

from callspan.tracer.provider import SpanProcessor


class LoggingSpanProcessor(SpanProcessor):
    """Logs span summary on end using the standard logging module."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("callspan.traces")

    def on_end(self, span) -> None:
        msg = (
            f"[trace] name={span.name} trace_id={span.trace_id} "
            f"span_id={span.span_id} parent_span_id={span.parent_span_id} "
            f"status={span.status.name} duration_ns={span.duration_ns} "
            f"events={len(span.events)}"
        )
        if span.status_description:
            msg += f" description={span.status_description!r}"
        if span.attributes:
            msg += f" attrs={span.attributes}"
        self.logger.info(msg)
