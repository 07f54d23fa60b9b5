"""
FastAPI Application Entry Point

Restaurant POS for Nepal - multi-tenant dine-in, billing and IRD compliance.
Supports both Mock services (development) and Real APIs (production) for the
Khalti / eSewa gateways and the IRD CBMS.

Endpoints:
    - /api/restaurants, /api/menu-items, /api/tables: setup
    - /api/guest/{qr_code}/...: QR ordering for guests
    - /api/sessions, /api/alerts: table sessions
    - /api/orders, /api/kitchen/queue: orders and tickets
    - /api/bills, /api/payments: billing and wallet callbacks
    - /api/loyalty, /api/accounting, /api/stock, /api/purchases
    - /api/invoices, /api/reports/ird: IRD invoices and reports
    - GET /health: System health check
"""

import asyncio
import sys
import logging
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import get_settings, setup_logging
from app.core.errors import POSError
from app.database import get_db, init_db, engine
from app.routers import ROUTERS
from app.schemas import HealthResponse
from app.services.cbms import get_cbms_client
from app.services.payment import SUPPORTED_GATEWAYS, get_payment_gateway

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    # Log service configuration
    logger.info(f"✅ CBMS Client: {get_cbms_client().provider_name}")
    for method in SUPPORTED_GATEWAYS:
        try:
            logger.info(f"✅ {method.title()} Gateway: {get_payment_gateway(method).provider_name}")
        except ValueError as e:
            logger.warning(f"⚠️ {method.title()} Gateway unavailable: {e}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant restaurant POS: QR ordering, kitchen tickets, billing, "
        "loyalty, double-entry accounting, stock and IRD/CBMS compliant invoicing."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in ROUTERS:
    app.include_router(router)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    # Check CBMS client
    cbms_status = "healthy" if await get_cbms_client().health_check() else "unhealthy"

    # Check payment gateways
    gateway_status = {}
    for method in SUPPORTED_GATEWAYS:
        try:
            gateway = get_payment_gateway(method)
            gateway_status[method] = "healthy" if await gateway.health_check() else "unhealthy"
        except ValueError:
            gateway_status[method] = "not configured"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, cbms_status, *gateway_status.values()]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        cbms_client=cbms_status,
        payment_gateways=gateway_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(POSError)
async def pos_error_handler(request: Request, exc: POSError) -> JSONResponse:
    """Rejected business operations keep their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
