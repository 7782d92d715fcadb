"""ASGI middlewares for request ids, tracing, access logging and metrics."""

from typing import Callable, Any, Optional
import re
import time
import uuid

from opentelemetry.trace import SpanKind, TracerProvider, format_trace_id
from starlette.datastructures import Headers, MutableHeaders

from taskapi.obs.context import request_id_var
from taskapi.obs.logger import JsonLogger
from taskapi.obs.metrics import MetricsRegistry


REQUEST_ID_HEADER = "X-Request-ID"
TRACE_ID_HEADER = "Trace-Id"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


class ResponseRecorder:
    """Wraps `send` to capture the status code and body bytes written."""

    def __init__(self, send: Callable[[dict], Any]):
        self._send = send
        self.status: Optional[int] = None
        self.bytes_sent = 0
        self.started = False

    async def __call__(self, message: dict) -> None:
        if message.get("type") == "http.response.start":
            self.started = True
            self.status = int(message.get("status", 200))
        elif message.get("type") == "http.response.body":
            if self.status is None:
                self.status = 200
            self.bytes_sent += len(message.get("body", b""))
        await self._send(message)

    @property
    def status_code(self) -> int:
        # Nothing sent means the handler raised before responding
        return self.status if self.status is not None else 500


class RequestIdMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        incoming = Headers(scope=scope).get(REQUEST_ID_HEADER)
        req_id = incoming if incoming and _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
        scope.setdefault("state", {})["request_id"] = req_id
        token = request_id_var.set(req_id)

        async def send_wrapper(message: dict):
            if message.get("type") == "http.response.start":
                message.setdefault("headers", [])
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = req_id
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_id_var.reset(token)


class TracingMiddleware:
    def __init__(self, app, tracer_provider: TracerProvider):
        self.app = app
        self.tracer = tracer_provider.get_tracer("taskapi.http")

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        method = scope.get("method", "")
        path = scope.get("path", "")
        start = time.monotonic()

        with self.tracer.start_as_current_span(f"{method} {path}", kind=SpanKind.SERVER) as span:
            span_ctx = span.get_span_context()
            trace_id = format_trace_id(span_ctx.trace_id) if span_ctx.is_valid else None

            async def send_wrapper(message: dict):
                if trace_id and message.get("type") == "http.response.start":
                    message.setdefault("headers", [])
                    MutableHeaders(scope=message)[TRACE_ID_HEADER] = trace_id
                await send(message)

            recorder = ResponseRecorder(send_wrapper)
            try:
                await self.app(scope, receive, recorder)
            finally:
                span.set_attributes(
                    {
                        "http.method": method,
                        "http.target": path,
                        "http.status_code": recorder.status_code,
                        "request.id": request_id_var.get() or "",
                        "http.duration_ms": int((time.monotonic() - start) * 1000),
                    }
                )


class AccessLogMiddleware:
    def __init__(self, app, logger: JsonLogger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        start = time.monotonic()
        recorder = ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000.0
            client = scope.get("client")
            self.logger.info(
                "http_request",
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                status=recorder.status_code,
                duration_ms=round(elapsed_ms, 3),
                size=recorder.bytes_sent,
                ip=f"{client[0]}:{client[1]}" if client else "",
                ua=Headers(scope=scope).get("user-agent", ""),
            )


class MetricsMiddleware:
    def __init__(self, app, metrics: MetricsRegistry):
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Any]):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        start = time.monotonic()
        recorder = ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000.0
            labels = {
                "method": scope.get("method", ""),
                "path": scope.get("path", ""),
                "status": str(recorder.status_code),
            }
            self.metrics.inc_counter("http_requests_total", labels)
            self.metrics.record_timing("http_request_duration_ms", elapsed_ms, labels)
