import asyncio

from dotenv import load_dotenv

from taskapi.config import get_settings
from taskapi.obs.logger import JsonLogger
from taskapi.obs.metrics import MetricsRegistry
from taskapi.obs.tracing import build_tracer_provider
from taskapi.server import create_app, serve

load_dotenv()


def build_app():
    """Factory for `uvicorn main:build_app --factory` (single listener, no health port)."""
    settings = get_settings()
    logger = JsonLogger(level=settings.LOG_LEVEL)
    tracer_provider = build_tracer_provider(
        service_name=settings.OTEL_SERVICE_NAME,
        console_export=settings.OTEL_CONSOLE_EXPORT,
    )
    return create_app(settings, logger, MetricsRegistry(), tracer_provider)


def main() -> None:
    settings = get_settings()
    logger = JsonLogger(level=settings.LOG_LEVEL)
    logger.info(
        "config_loaded",
        env=settings.APP_ENV,
        storage=settings.STORAGE_BACKEND,
        auth_mode=settings.AUTH_MODE,
        rate_limit_rps=settings.RATE_LIMIT_RPS,
    )
    asyncio.run(serve(settings, logger, MetricsRegistry()))


if __name__ == "__main__":
    main()
