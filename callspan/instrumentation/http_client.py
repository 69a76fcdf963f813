"""HTTP client helpers: header injection and a traced ``requests`` transport."""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Mapping, Optional, Union

import requests

from callspan.context import get_current_span, inject
from callspan.errors import TransportError
from callspan.instrumentation.call import CallResult, Operation, traced_call
from callspan.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


def inject_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """
    Inject traceparent/tracestate into the provided headers dict if a current span exists.

    Returns the same headers mapping for convenience.
    """
    span = get_current_span()
    if span:
        inject(span, headers)
    return headers


class RequestsTransport:
    """
    Outbound transport on top of a ``requests`` session.

    Non-2xx responses, timeouts and connection failures are raised as
    ``TransportError``. When a span is active, ``http.method``, ``http.url``
    and ``http.status_code`` are recorded on it.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def request(self, method: str, url: str, headers: Mapping[str, str], **kwargs) -> Any:
        method = method.upper()
        span = get_current_span()
        if span is not None:
            span.set_attribute("http.method", method)
            span.set_attribute("http.url", url)

        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, headers=dict(headers), **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"{method} {url} timed out", {"url": url}) from exc
        except requests.RequestException as exc:
            raise TransportError(str(exc) or f"{method} {url} failed", {"url": url}) from exc

        if span is not None:
            span.set_attribute("http.status_code", response.status_code)
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{method} {url} failed with status {response.status_code}",
                {"url": url},
                status_code=response.status_code,
            )
        return self._decode(response, url)

    def get(self, url: str, **kwargs) -> Operation:
        """Build a carrier-taking operation that GETs ``url``."""
        return functools.partial(self.request, "GET", url, **kwargs)

    @staticmethod
    def _decode(response: requests.Response, url: str) -> Any:
        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type:
            return response.text
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError("response is not valid JSON", {"url": url}) from exc


def fetch(
    url: str,
    *,
    name: Optional[str] = None,
    tracer: Optional[Tracer] = None,
    transport: Optional[RequestsTransport] = None,
    trace_state: Optional[Union[Mapping[str, str], str]] = None,
    baggage: Optional[Mapping[str, str]] = None,
    **request_kwargs,
) -> CallResult:
    """
    GET ``url`` inside an instrumented call.

    Returns a CallResult: the decoded payload on success, the TransportError
    on failure.
    """
    if transport is None:
        transport = RequestsTransport()
    return traced_call(
        name or f"GET {url}",
        transport.get(url, **request_kwargs),
        tracer=tracer,
        trace_state=trace_state,
        baggage=baggage,
    )
