"""
Agent simulation API - FastAPI application.

Main entry point: the WebSocket session channel at /ws, read-only agent
routes, health, and Prometheus metrics.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.core import Settings, TextGenerator, create_llm, get_settings
from src.core.metrics import get_metrics
from src.storage import create_store

from .rate_limit import limiter
from .routes import agents, ws

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    *,
    store=None,
    llm: TextGenerator | None = None,
) -> FastAPI:
    """Build the application.

    ``store`` and ``llm`` override the configured backends (tests pass an
    in-process store and a fake generator). Overrides are not closed on
    shutdown; their owner is.
    """
    settings = settings or get_settings()

    # =============================================================
    # LIFESPAN
    # =============================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        logger.info(
            "starting_agentsim_api",
            env=settings.env,
            storage=settings.storage_backend if store is None else type(store).__name__,
            llm_provider=settings.llm_provider if llm is None else type(llm).__name__,
        )

        owned_store = None
        owned_llm = None
        try:
            if store is None:
                owned_store = await create_store(settings.storage_backend)
            if llm is None:
                owned_llm = create_llm(settings)

            app.state.store = store if store is not None else owned_store
            app.state.llm = llm if llm is not None else owned_llm
            logger.info("storage_connections_established")

            yield

        finally:
            logger.info("shutting_down_agentsim_api")
            if owned_llm:
                await owned_llm.close()
            if owned_store:
                await owned_store.close()

    # =============================================================
    # APP
    # =============================================================

    app = FastAPI(
        title="Agent Simulation",
        description="Live dashboard backend for simulated LLM agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS origins from AGENTSIM_ALLOWED_ORIGINS
    _origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =============================================================
    # ERROR SANITIZATION
    # =============================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unhandled exceptions and return a generic 500."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    app.include_router(ws.router, tags=["session"])
    app.include_router(agents.router, prefix="/agents", tags=["agents"])

    # =============================================================
    # PUBLIC ENDPOINTS
    # =============================================================

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint (always public for monitoring)."""
        checks = {
            "api": "ok",
            "store": "unknown",
            "llm": "unknown",
        }

        try:
            await request.app.state.store.ping()
            checks["store"] = "ok"
        except Exception as e:
            checks["store"] = f"error: {type(e).__name__}"

        generator = request.app.state.llm
        if settings.llm_provider == "anthropic" and llm is None and not settings.anthropic_api_key:
            checks["llm"] = "error: missing api key"
        else:
            checks["llm"] = f"ok ({generator.provider})"

        healthy = all(str(v).startswith("ok") for v in checks.values())

        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }

    @app.get("/metrics")
    async def prometheus_metrics():
        """Prometheus text exposition of process metrics."""
        if not settings.metrics_enabled:
            return PlainTextResponse(content="", status_code=404)
        return PlainTextResponse(
            content=get_metrics().prometheus_format(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app


def uvicorn_options(settings: Settings) -> dict:
    """Server options; liveness uses WebSocket protocol ping/pong."""
    return {
        "host": settings.api_host,
        "port": settings.api_port,
        "reload": settings.debug,
        "ws_ping_interval": settings.heartbeat_interval_seconds,
        "ws_ping_timeout": settings.heartbeat_timeout_seconds,
    }


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.api.main:app", **uvicorn_options(get_settings()))
