import io
import json
import os
import sys
import asyncio
import inspect

import pytest

# Ensure project root is on sys.path so `import taskapi` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from taskapi.config import Settings
from taskapi.obs.logger import JsonLogger
from taskapi.obs.metrics import MetricsRegistry
from taskapi.obs.tracing import build_tracer_provider
from taskapi.tasks.repository import InMemoryTaskRepository


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        # Filter only the parameters that the test function expects
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


class CapturingLogger(JsonLogger):
    """JsonLogger writing to an in-memory buffer, with parsed access to records."""

    def __init__(self, level: str = "DEBUG"):
        self.buffer = io.StringIO()
        super().__init__(level=level, stream=self.buffer)

    def records(self, event=None):
        out = [json.loads(line) for line in self.buffer.getvalue().splitlines() if line]
        if event is not None:
            out = [r for r in out if r["event"] == event]
        return out


def make_settings(**overrides) -> Settings:
    values = {
        "AUTH_MODE": "none",
        "RATE_LIMIT_RPS": 0,
        "STORAGE_BACKEND": "memory",
        "REQUEST_TIMEOUT_SECONDS": 5,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def logger() -> CapturingLogger:
    return CapturingLogger()


@pytest.fixture()
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture()
def tracer_provider(span_exporter):
    provider = build_tracer_provider(service_name="tasks-api-test", exporter=span_exporter)
    yield provider
    provider.shutdown()


@pytest.fixture()
def repo() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture()
def settings_factory():
    return make_settings


@pytest.fixture()
def build_client(logger, metrics, tracer_provider, settings_factory):
    """Build a TestClient over the full middleware chain; kwargs override settings."""
    from fastapi.testclient import TestClient
    from taskapi.server import create_app

    def _build(repository=None, limiter=None, **overrides):
        settings = settings_factory(**overrides)
        app = create_app(
            settings,
            logger,
            metrics,
            tracer_provider,
            repository=repository if repository is not None else InMemoryTaskRepository(),
            limiter=limiter,
        )
        return TestClient(app)

    return _build
