import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from bzr_portal.app.api import referrals, storage
from bzr_portal.app.api.deps import get_session
from bzr_portal.app.core.logging import setup_logging, get_logger
from bzr_portal.app.core.settings import get_settings
from bzr_portal.app.core.metrics import PrometheusMiddleware, get_metrics_response

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    storage_backend=settings.STORAGE_BACKEND,
)


async def _daily_referral_sweep():
    """Background task: deactivate expired referral events once a day."""
    while True:
        try:
            now = datetime.now(timezone.utc)
            target = now.replace(hour=settings.REFERRAL_SWEEP_HOUR_UTC, minute=0, second=0, microsecond=0)
            if now >= target:
                target += timedelta(days=1)
            wait_secs = (target - now).total_seconds()
            logger.info("Referral sweep: sleeping", next_run=target.isoformat(), wait_seconds=int(wait_secs))
            await asyncio.sleep(wait_secs)

            from bzr_portal.app.core.database import async_session
            from bzr_portal.app.services.referrals import ReferralService

            async with async_session() as session:
                try:
                    n = await ReferralService(session).expire_stale_referrals()
                    if n > 0:
                        logger.info("Referral sweep: expired referrals", count=n)
                except Exception as e:
                    await session.rollback()
                    logger.error("Referral sweep: expire_stale_referrals failed", error=str(e))
        except Exception as e:
            logger.error("Referral sweep: unexpected error", error=str(e))
            await asyncio.sleep(60)  # Wait before retrying


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: start the referral expiry sweep
    - Shutdown: stop it and release the DB pool
    """
    logger.info("Application starting up", version="1.0.0")
    sweep_task = asyncio.create_task(_daily_referral_sweep())
    yield
    sweep_task.cancel()
    logger.info("Application shutting down")
    from bzr_portal.app.core.database import engine
    await engine.dispose()


app = FastAPI(title="BZR Portal Storage API", lifespan=lifespan)

ALLOWED_ORIGINS = settings.allowed_origins_list
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Added after CORS so it runs first on the way in
app.add_middleware(PrometheusMiddleware)

app.include_router(referrals.router, prefix="/referrals", tags=["referrals"])
app.include_router(storage.router, prefix="/storage", tags=["storage"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint for monitoring and orchestration.
    Checks database connectivity.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus metrics endpoint (OpenMetrics format with ?openmetrics=true)."""
    return get_metrics_response(openmetrics=openmetrics)
