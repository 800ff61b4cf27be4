import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockwatch.api import api_router
from stockwatch.config import settings
from stockwatch.core.exceptions import PersistenceError
from stockwatch.database import async_session_factory, dispose_engine
from stockwatch.logging_config import setup_logging
from stockwatch.services.monitor import build_monitor

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _init_sentry() -> None:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.celery import CeleryIntegration
        from sentry_sdk.integrations.fastapi import FastApiIntegration
    except ImportError:
        logger.warning("sentry-sdk not installed, skipping Sentry initialization")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        integrations=[FastApiIntegration(), CeleryIntegration()],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    monitor = build_monitor(settings, async_session_factory)
    app.state.monitor = monitor
    await monitor.start()
    try:
        yield
    finally:
        await monitor.stop()
        app.state.monitor = None
        await dispose_engine()


def create_app() -> FastAPI:
    setup_logging(app_env=settings.app_env, log_level=settings.log_level)
    if settings.sentry_dsn:
        _init_sentry()

    app = FastAPI(
        title=settings.app_name,
        version=VERSION,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health")
    async def health_check(request: Request):
        body = {"status": "healthy", "app": settings.app_name, "version": VERSION}
        monitor = getattr(request.app.state, "monitor", None)
        if monitor is None:
            return body

        pool = monitor.pool.stats()
        body["monitor"] = {
            "dispatching": monitor.dispatcher.running,
            "in_flight": monitor.dispatcher.in_flight,
            "sessions": {"size": pool.size, "idle": pool.idle, "leased": pool.leased},
        }
        return body

    logger.info(f"{settings.app_name} app created (env={settings.app_env})")
    return app


app = create_app()
