"""
FastAPI application entry point.

Run with:
    uvicorn relief.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn relief.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from relief.core.config import Settings, settings as default_settings
from relief.core.logging_config import setup_logging, get_logger
from relief.core.errors import register_error_handlers
from relief.core.middleware import RequestLoggingMiddleware
from relief.core.health import HealthStatus, run_health_check

# ── Admission control ──
from relief.admission import RateLimiter, RateLimitMiddleware

# ── API routers ──
from relief.api.repository import RecordRepository, create_repositories, seed_demo_data
from relief.api.v1.alerts import router as alert_router
from relief.api.v1.reports import router as report_router
from relief.api.v1.resources import router as resource_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    cfg: Settings = app.state.settings
    logger.info(
        "Starting %s v%s [%s]",
        cfg.APP_NAME, cfg.APP_VERSION, cfg.ENVIRONMENT,
    )
    await app.state.rate_limiter.start()
    yield
    await app.state.rate_limiter.shutdown()
    logger.info("Shutting down %s", cfg.APP_NAME)


# ── Create application ──

def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
    repositories: Optional[Dict[str, RecordRepository]] = None,
    seed: Optional[bool] = None,
) -> FastAPI:
    """
    Build the API app.

    The limiter and repositories are attached to ``app.state`` here, not in
    the lifespan, so transports that skip lifespan events still get them.
    Demo data is seeded in development unless ``seed`` says otherwise.
    """
    cfg = settings or default_settings

    app = FastAPI(
        title=cfg.APP_NAME,
        description=(
            "Offline-first disaster-response API. "
            "Serves emergency alerts, community incident reports and relief "
            "resources with incremental `since` pulls, idempotent report "
            "submission and per-route-class rate limiting."
        ),
        version=cfg.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.rate_limiter = rate_limiter or RateLimiter(
        window_ms=cfg.RATE_LIMIT_WINDOW_MS,
        limits=cfg.rate_limits,
        sweep_interval=cfg.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
    )
    app.state.repositories = repositories if repositories is not None else create_repositories()
    if seed is None:
        seed = repositories is None and cfg.is_development
    if seed:
        seed_demo_data(app.state.repositories)

    # ── Middleware stack (order matters — last added is outermost) ──
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS if not cfg.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(alert_router)
    app.include_router(report_router)
    app.include_router(resource_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": cfg.APP_NAME,
            "version": cfg.APP_VERSION,
            "environment": cfg.ENVIRONMENT,
            "collections": sorted(app.state.repositories),
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(app.state.rate_limiter, app.state.repositories)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Liveness probe — also the sync client's connectivity check."""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.rate_limiter, app.state.repositories)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("relief.main:app", host=default_settings.HOST, port=default_settings.PORT)
