import asyncio
import contextlib
import signal
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.sdk.trace import TracerProvider

from taskapi.config import Settings
from taskapi.infrastructure.health import HealthChecker
from taskapi.infrastructure.pipeline import build_pipeline
from taskapi.infrastructure.resilience import build_rate_limiter
from taskapi.obs.logger import JsonLogger, parse_level
from taskapi.obs.metrics import MetricsRegistry
from taskapi.obs.tracing import build_tracer_provider
from taskapi.tasks.repository import TaskRepository, build_repository
from taskapi.tasks.routes import router as tasks_router

VERSION = "1.0.0"

_UVICORN_LEVELS = {"DEBUG": "debug", "INFO": "info", "WARN": "warning", "ERROR": "error"}


def _build_fastapi(
    repository: TaskRepository,
    logger: JsonLogger,
    metrics: MetricsRegistry,
    tracer_provider: Optional[TracerProvider] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup", version=VERSION)
        yield
        if hasattr(repository, "close"):
            repository.close()
        if tracer_provider is not None:
            tracer_provider.shutdown()
        logger.info("app_shutdown")

    app = FastAPI(title="Tasks API", version=VERSION, lifespan=lifespan)
    app.state.repository = repository
    app.state.logger = logger
    app.state.metrics = metrics

    health_checker = HealthChecker()
    health_checker.register_check("storage", repository.ping)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        # Recovery middleware logs the traceback once the exception re-raises
        return JSONResponse({"error": "unexpected_error"}, status_code=500)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/health/detailed")
    async def detailed_health():
        results = await health_checker.run_checks()
        status_code = 200 if results["status"] == "ok" else 503
        return JSONResponse(results, status_code=status_code)

    @app.get("/metrics")
    async def metrics_snapshot():
        return metrics.snapshot()

    app.include_router(tasks_router)
    return app


def create_app(
    settings: Settings,
    logger: JsonLogger,
    metrics: MetricsRegistry,
    tracer_provider: TracerProvider,
    repository: Optional[TaskRepository] = None,
    limiter=None,
):
    """Build the routed application wrapped in the full middleware chain.

    Collaborators are passed in by the caller. When `repository` or `limiter`
    is omitted they are built from `settings`.
    """
    if repository is None:
        repository = build_repository(settings, logger=logger)
    if limiter is None:
        limiter = build_rate_limiter(settings, logger=logger)

    app = _build_fastapi(repository, logger, metrics, tracer_provider)
    return build_pipeline(app, settings, logger, metrics, tracer_provider, limiter)


def create_health_app() -> FastAPI:
    app = FastAPI(title="Tasks API health", version=VERSION)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


class _Server(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to `serve`."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def _uvicorn_server(app, host: str, port: int, settings: Settings) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=_UVICORN_LEVELS[parse_level(settings.LOG_LEVEL)],
        access_log=False,
        timeout_graceful_shutdown=int(settings.SHUTDOWN_TIMEOUT_SECONDS),
        lifespan="auto",
    )
    return _Server(config)


async def serve(settings: Settings, logger: JsonLogger, metrics: Optional[MetricsRegistry] = None) -> None:
    """Run the application listener and, if configured, the health listener.

    SIGINT/SIGTERM tell every server to stop accepting connections. Each then
    waits up to SHUTDOWN_TIMEOUT_SECONDS for in-flight requests. When one
    server exits the other is told to stop as well.
    """
    metrics = metrics or MetricsRegistry()
    tracer_provider = build_tracer_provider(
        service_name=settings.OTEL_SERVICE_NAME,
        console_export=settings.OTEL_CONSOLE_EXPORT,
    )
    app = create_app(settings, logger, metrics, tracer_provider)

    servers = [_uvicorn_server(app, settings.HOST, settings.PORT, settings)]
    if settings.HEALTH_PORT:
        servers.append(_uvicorn_server(create_health_app(), settings.HOST, settings.HEALTH_PORT, settings))

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info("signal_received", signal=sig.name)
        for server in servers:
            server.should_exit = True

    loop = asyncio.get_running_loop()
    handled = (signal.SIGINT, signal.SIGTERM)
    for sig in handled:
        loop.add_signal_handler(sig, request_shutdown, sig)

    try:
        logger.info("server_listen", addr=f"{settings.HOST}:{settings.PORT}")
        if settings.HEALTH_PORT:
            logger.info("health_listen", addr=f"{settings.HOST}:{settings.HEALTH_PORT}")

        tasks = [asyncio.create_task(server.serve()) for server in servers]
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        logger.info("shutdown_begin")
        for server in servers:
            server.should_exit = True
        if pending:
            await asyncio.wait(pending)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)

    for task in tasks:
        if task.exception() is not None:
            logger.exception("server_error", task.exception())
    logger.info("shutdown_complete")
