# services/share-service/fileshare/main.py
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .config import settings
from .database import init_redis, close_redis, create_tables, engine, get_redis
from .exceptions import ServiceError
from .monitoring.metrics import metrics_collector, errors_total
from .services.storage import StorageError, StorageGateway, create_s3_client

# Routers (these already have their own prefixes inside each module)
from .routers import auth, files, folders, onlyoffice, settings as settings_router, storage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    print("🚀 Starting FileMan Share Service...")

    # Initialize Redis
    try:
        await init_redis()
        print("✅ Redis connection established")
    except Exception as e:
        print(f"⚠️ Redis connection failed: {e}")

    # Create tables
    if settings.CREATE_TABLES:
        try:
            await create_tables()
            print("✅ Database tables ready")
        except Exception as e:
            print(f"⚠️ Failed to create tables: {e}")

    # Object store gateway (tests may have installed their own)
    if getattr(app.state, "storage", None) is None:
        app.state.storage = StorageGateway(create_s3_client(), settings.S3_BUCKET)
    try:
        await app.state.storage.ensure_bucket_exists()
        print(f"✅ Bucket '{settings.S3_BUCKET}' ready")
    except StorageError as e:
        print(f"⚠️ Object store unavailable: {e}")

    print("✅ Application startup complete")
    yield

    # Shutdown
    print("👋 Shutting down FileMan Share Service...")
    app.state.storage.close()
    await close_redis()
    await engine.dispose()
    print("✅ Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="File sharing service: folders, shares, public links and document editing",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Instrument Prometheus metrics (also exposes /metrics)
metrics_collector.instrument_app(app, settings.VERSION)

# Add middleware
if settings.ENABLE_HTTPS:
    app.add_middleware(HTTPSRedirectMiddleware)

# Configure CORS
default_origins = ["http://localhost:3000", "http://localhost:5173"]
cors_env = os.getenv("CORS_ORIGINS")
allow_origins = [o.strip() for o in cors_env.split(",") if o.strip()] if cors_env else default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(auth.router)
app.include_router(files.router)
app.include_router(folders.router)
app.include_router(storage.router)
app.include_router(settings_router.router)
app.include_router(onlyoffice.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with service information"""
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "status": "running",
        "documentation": "/docs",
        "health": "/api/v1/health",
    }


# Health check endpoint
@app.get("/api/v1/health", tags=["Health"])
async def health_check(request: Request):
    """Comprehensive health check endpoint"""
    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "checks": {},
    }

    # DB
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    # Redis
    redis = await get_redis()
    if redis is None:
        health_status["checks"]["redis"] = "unavailable"
    else:
        try:
            await redis.ping()
            health_status["checks"]["redis"] = "healthy"
        except Exception as e:
            health_status["checks"]["redis"] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

    # Object store
    gateway = getattr(request.app.state, "storage", None)
    try:
        if gateway is None:
            raise StorageError("ping")
        await gateway.ping()
        health_status["checks"]["object_store"] = "healthy"
    except StorageError:
        health_status["checks"]["object_store"] = "unhealthy"
        health_status["status"] = "degraded"

    health_status["features"] = {
        "https_enabled": settings.ENABLE_HTTPS,
        "public_sharing_default": settings.ALLOW_PUBLIC_SHARING,
        "onlyoffice_default": settings.ONLYOFFICE_ENABLED,
    }

    return health_status

# Ready check endpoint (for Kubernetes readiness probe)
@app.get("/api/v1/ready", tags=["Health"])
async def ready_check():
    """Readiness probe endpoint"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"ready": True}
    except Exception as e:
        return JSONResponse(status_code=503, content={"ready": False, "error": str(e)})


# Live check endpoint (for Kubernetes liveness probe)
@app.get("/api/v1/live", tags=["Health"])
async def live_check():
    """Liveness probe endpoint"""
    return {"live": True}


# Version endpoint
@app.get("/api/v1/version", tags=["Info"])
async def version_info():
    """Get service version and build information"""
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "api_version": "v1",
        "build_date": os.getenv("BUILD_DATE", "unknown"),
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }


# Error handlers
@app.exception_handler(ServiceError)
async def service_error(request: Request, exc: ServiceError):
    """Render domain errors as {error, message, status}"""
    if exc.status_code >= 500:
        errors_total.labels(error_type=exc.kind, endpoint=request.url.path).inc()
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.kind,
            "message": exc.message,
            "status": exc.status_code,
        },
        headers=exc.headers,
    )


@app.exception_handler(404)
async def not_found(request: Request, exc):
    """Custom 404 handler"""
    if isinstance(exc, ServiceError):
        return await service_error(request, exc)
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": f"The path {request.url.path} was not found",
            "status": 404,
        },
    )


@app.exception_handler(500)
async def internal_error(request: Request, exc):
    """Custom 500 handler"""
    if isinstance(exc, ServiceError):
        return await service_error(request, exc)
    logger.exception("Unhandled error on %s", request.url.path)
    errors_total.labels(error_type="unhandled", endpoint=request.url.path).inc()
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "status": 500,
        },
    )


# Run for local development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fileshare.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True,   # Enable auto-reload for development
        log_level="info",
        access_log=True,
    )
