"""
Main FastAPI application for the OmniVerse budget planning service.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog
import traceback
import time
from contextlib import asynccontextmanager

from omniverse.config.settings import settings
from omniverse.api.routes import budget, health
from omniverse.api.routes.health import VERSION
from omniverse.utils.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    setup_logging()
    logger.info("Starting OmniVerse budget planning API", environment=settings.env.value)

    yield

    logger.info("Shutting down OmniVerse budget planning API")


app = FastAPI(
    title="OmniVerse Budget Planning API",
    description="Promotional budget optimization across pharmaceutical commercial channels",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development() else None,
    redoc_url="/redoc" if settings.is_development() else None,
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=settings.api.cors_methods,
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time

    logger.info(
        "HTTP request processed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=process_time
    )

    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        method=request.method,
        url=str(request.url)
    )

    if settings.is_development():
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
                "traceback": traceback.format_exception(exc)
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


# Include routers
app.include_router(health.router, prefix="/api/health", tags=["health"])
app.include_router(budget.router, prefix="/api/budget", tags=["budget"])


@app.get("/api/info")
async def api_info():
    """API information endpoint."""
    return {
        "message": "OmniVerse Budget Planning API",
        "version": VERSION,
        "environment": settings.env.value
    }
