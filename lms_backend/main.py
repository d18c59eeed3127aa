"""
FastAPI Application Entry Point
Main application with all routes and middleware
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lms_backend.api.v1 import router as api_v1_router
from lms_backend.core.config import settings
from lms_backend.core.exceptions import AppException
from lms_backend.core.logging import get_logger, setup_logging
from lms_backend.db.session import check_database, close_db, init_db
from lms_backend.models.common import ErrorResponse, HealthResponse
from lms_backend.services.calendar_sync import close_sync_providers
from lms_backend.services.video import close_video_provider

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan management"""
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")
    logger.info(f"Video conferencing: {'zoom' if settings.zoom_enabled else 'disabled'}")

    await init_db()
    logger.info("All services initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down...")
    try:
        await close_video_provider()
        await close_sync_providers()
        await close_db()
        logger.info("Shutdown complete")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Access control and recurring calendar events for a learning platform",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)


# Exception Handlers
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.content(exc.code, exc.message, jsonable_encoder(exc.details), exc.timestamp),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.content(str(exc.detail).lower().replace(" ", "_"), str(exc.detail)),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors"""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse.content(
            "validation_error",
            "Invalid request parameters",
            {"errors": jsonable_encoder(exc.errors())},
        ),
    )


# Include routers
app.include_router(api_v1_router, prefix="/api/v1")


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs_url": "/docs" if settings.DEBUG else None,
    }


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    database = await check_database()
    return HealthResponse(
        status="healthy" if database else "degraded",
        version=settings.APP_VERSION,
        timestamp=datetime.utcnow().isoformat(),
        services={
            "database": "healthy" if database else "unhealthy",
            "zoom": "configured" if settings.zoom_enabled else "disabled",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lms_backend.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
