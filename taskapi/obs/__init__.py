"""Observability package.

Request-id propagation, structured JSON logging, in-process metrics,
OpenTelemetry tracing, and the ASGI middlewares that tie them to requests.
"""

__all__ = [
    "context",
    "logger",
    "metrics",
    "middleware",
    "tracing",
]
