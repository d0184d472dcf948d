"""
FastAPI application main module.
Wallet sync service: cron trigger, registration ledger, PassKit web service and job inspection.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from sqlalchemy import text
from walletsync.api.v1 import api_router
from walletsync.utils import setup_logging, get_logger
from walletsync.utils.observability import REQUEST_ID_HEADER, ensure_request_id
from walletsync.config import WALLET_WORKER_ENABLED
from walletsync.database import engine, Base, SessionLocal
from walletsync.jobs.factory import WalletServices, create_wallet_services
from walletsync.jobs.worker import WalletSyncWorker
import walletsync.models.db  # noqa: F401  (registers tables on Base.metadata)

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/walletsync.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "walletsync"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the vendor clients once, optionally starts the in-process worker,
    and closes everything on shutdown.
    """
    logger.info("Application startup initiated")

    services: WalletServices | None = None
    worker: WalletSyncWorker | None = None
    owns_services = False
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        # Tests pre-populate app.state with fakes; keep them
        services = getattr(app.state, "wallet_services", None)
        owns_services = services is None
        if services is None:
            services = create_wallet_services()
            app.state.wallet_services = services  # type: ignore[attr-defined]

        if WALLET_WORKER_ENABLED:
            worker = WalletSyncWorker(services.scheduler)
            worker.start()
            app.state.wallet_worker = worker  # type: ignore[attr-defined]
        else:
            logger.info("In-process wallet worker disabled; relying on cron trigger")

        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if worker:
            worker.stop()
        if services is not None and owns_services:
            services.close()
            app.state.wallet_services = None  # type: ignore[attr-defined]
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Wallet Sync Service",
    description="""
    Keeps issued Apple Wallet and Google Wallet loyalty passes in sync with points changes.

    ## Features
    * **Durable job queue** - retryable, at-least-once wallet sync jobs with backoff
    * **Google Wallet** - in-place balance patch of loyalty objects
    * **Apple Wallet** - signed pass regeneration plus APNs update push
    * **PassKit web service** - device registration and pass download

    ## Authentication
    The cron trigger and job inspection routes expect:
    ```
    Authorization: Bearer <CRON_SECRET>
    ```
    PassKit routes use `Authorization: ApplePass <authenticationToken>`.
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

# CORS middleware - configure appropriately for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Compression middleware (pass bundles are already zipped, JSON responses are not)
app.add_middleware(GZipMiddleware, minimum_size=1000)

@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    # Query strings are left out: they may carry the cron secret on misconfigured callers
    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
def detailed_health_check(request: Request):
    """Detailed health check with database, queue and vendor breaker status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    # Database check
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    services = getattr(request.app.state, "wallet_services", None)
    if services is not None:
        try:
            health_status["checks"]["queue"] = services.queue.snapshot().model_dump(mode="json")
        except Exception as e:
            health_status["checks"]["queue"] = f"unavailable: {e}"
            health_status["status"] = "degraded"
        breakers = services.breaker.snapshot()
        health_status["checks"]["vendors"] = breakers
        if any(b["state"] != "CLOSED" for b in breakers.values()):
            health_status["status"] = "degraded"

    worker = getattr(request.app.state, "wallet_worker", None)
    health_status["checks"]["worker"] = "running" if worker is not None and worker.running else "disabled"

    return health_status

# API Documentation root
@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Wallet Sync Service API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

# Include API router with version prefix
app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "walletsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["walletsync"],
        log_level="info",
        access_log=True
    )
