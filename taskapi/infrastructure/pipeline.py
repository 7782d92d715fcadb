"""Composition of the request middleware chain.

Stages are listed outermost first and applied in reverse, so the first entry
sees the request first and the response last:

    request id -> recovery -> timeout -> CORS -> auth -> rate limit
        -> tracing -> access log -> metrics -> application
"""

from typing import Callable, List, Tuple

from opentelemetry.sdk.trace import TracerProvider
from starlette.middleware.cors import CORSMiddleware

from taskapi.infrastructure.auth import AuthConfig, AuthMiddleware
from taskapi.infrastructure.resilience import (
    RateLimitMiddleware,
    RecoveryMiddleware,
    TimeoutMiddleware,
)
from taskapi.obs.logger import JsonLogger
from taskapi.obs.metrics import MetricsRegistry
from taskapi.obs.middleware import (
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    AccessLogMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
    TracingMiddleware,
)


Stage = Tuple[str, Callable]


def compose(app, stages: List[Stage]):
    """Wrap `app` so that stages[0] is the outermost middleware."""
    for _, wrap in reversed(stages):
        app = wrap(app)
    return app


def pipeline_stages(
    settings,
    logger: JsonLogger,
    metrics: MetricsRegistry,
    tracer_provider: TracerProvider,
    limiter=None,
) -> List[Stage]:
    auth_config = AuthConfig.from_settings(settings)
    return [
        ("request_id", RequestIdMiddleware),
        ("recovery", lambda app: RecoveryMiddleware(app, logger)),
        ("timeout", lambda app: TimeoutMiddleware(app, settings.REQUEST_TIMEOUT_SECONDS, logger)),
        (
            "cors",
            lambda app: CORSMiddleware(
                app,
                allow_origins=settings.cors_origins,
                allow_methods=settings.cors_methods,
                allow_headers=settings.cors_headers,
                expose_headers=["Link", REQUEST_ID_HEADER, TRACE_ID_HEADER],
                allow_credentials=False,
                max_age=300,
            ),
        ),
        ("auth", lambda app: AuthMiddleware(app, auth_config, logger)),
        ("rate_limit", lambda app: RateLimitMiddleware(app, limiter)),
        ("tracing", lambda app: TracingMiddleware(app, tracer_provider)),
        ("access_log", lambda app: AccessLogMiddleware(app, logger)),
        ("metrics", lambda app: MetricsMiddleware(app, metrics)),
    ]


def build_pipeline(app, settings, logger, metrics, tracer_provider, limiter=None):
    return compose(app, pipeline_stages(settings, logger, metrics, tracer_provider, limiter))
