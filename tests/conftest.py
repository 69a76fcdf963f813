"""Shared fixtures: a provider whose finished spans land in memory."""

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import callspan
from callspan import runtime_config
from callspan.tracer import TracerProvider


@pytest.fixture(autouse=True)
def _clean_state():
    """Each test starts from default config and no global provider."""
    runtime_config.reset()
    yield
    callspan.stop_tracing()
    runtime_config.reset()


@pytest.fixture
def exporter():
    return InMemorySpanExporter()


@pytest.fixture
def provider(exporter):
    provider = TracerProvider(resource={"service.name": "callspan-tests"})
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(provider):
    return provider.get_tracer("tests")
