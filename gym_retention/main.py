"""
Gym Retention API
Main FastAPI application entry point.
"""
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from http import HTTPStatus
import logging

from gym_retention.config import settings
from gym_retention.database import init_db, close_db
from gym_retention.exceptions import RetentionError
from gym_retention.middleware import RequestLoggingMiddleware
from gym_retention.api.responses import error_envelope

# Import routers
from gym_retention.api.retention import router as retention_router
from gym_retention.api.system import router as system_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting Gym Retention API...")
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down Gym Retention API...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title="Gym Retention API",
    description="""
    ## Member retention for gym and fitness-club staff

    ### Risk scoring
    - Rule-based point accumulation over check-in recency,
      subscription expiry and unpaid payments
    - LOW / MEDIUM / HIGH risk levels with reason codes
    - Nightly recomputation plus on-demand recalculation

    ### Follow-up tasks
    - Auto-created for members entering HIGH risk
    - Status workflow OPEN → IN_PROGRESS → DONE / DISMISSED
    - Single and bulk updates with change history
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging + timing middleware
app.add_middleware(RequestLoggingMiddleware)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(RetentionError)
async def retention_error_handler(request: Request, exc: RetentionError):
    """Handle domain errors raised by services."""
    if exc.status_code >= 500:
        logger.error(f"Retention error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(request, exc.status_code, exc.message, exc.error)
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Wrap framework HTTP errors (401, 404 route, 503 health...) in the error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(
            request,
            exc.status_code,
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            HTTPStatus(exc.status_code).phrase
        ),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed filters and DTO fields are 400s."""
    messages = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_envelope(request, 400, messages, "Bad Request")
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_envelope(
            request,
            500,
            str(exc) if settings.APP_DEBUG else "An unexpected error occurred",
            "Internal Server Error"
        )
    )


# Include routers
app.include_router(retention_router, prefix=settings.API_PREFIX)
app.include_router(system_router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Gym Retention API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


# Ready endpoint for k8s probes
@app.get("/ready", tags=["Health"])
async def ready():
    """Readiness probe endpoint."""
    return {"status": "ready"}


# Live endpoint for k8s probes
@app.get("/live", tags=["Health"])
async def live():
    """Liveness probe endpoint."""
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gym_retention.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
