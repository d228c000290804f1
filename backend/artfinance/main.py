"""
FastAPI application entry point for the Art Finance Hub auth service.

This is the main app that:
- Initializes FastAPI with CORS
- Renders auth flow errors as stable {success, error, message} bodies
- Registers the auth router
- Runs the expiry reaper on a fixed schedule
- Disposes the database engine on shutdown
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from artfinance.config import settings
from artfinance import database
from artfinance.errors import AuthFlowError, StorageError
from artfinance.api import auth
from artfinance.services.reaper import run_cleanup_loop

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    On startup: Start the periodic expiry reaper (unless disabled)
    On shutdown: Stop the reaper, close database connections gracefully
    """
    logger.info("🚀 Starting Art Finance Hub auth API...")
    logger.info(f"📊 Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'configured'}")
    logger.info(f"📧 Email mode: {settings.email_mode}")

    reaper_task = None
    if settings.cleanup_interval_hours > 0:
        reaper_task = asyncio.create_task(
            run_cleanup_loop(database.AsyncSessionLocal, settings.cleanup_interval_hours * 3600)
        )

    yield

    logger.info("👋 Shutting down Art Finance Hub auth API...")
    if reaper_task:
        reaper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper_task
    await database.engine.dispose()


# Initialize FastAPI app
app = FastAPI(
    title="Art Finance Hub Auth API",
    description="Cross-device passwordless registration and sign-in",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure CORS
# Set ALLOWED_ORIGINS environment variable with comma-separated domains
allowed_origins = [
    "http://localhost:3000",  # Local development
]
if settings.allowed_origins:
    allowed_origins.extend(o.strip() for o in settings.allowed_origins.split(',') if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthFlowError)
async def auth_flow_error_handler(request: Request, exc: AuthFlowError):
    """Map auth flow errors to their stable codes. Storage detail is never exposed."""
    if isinstance(exc, StorageError):
        logger.error(f"Storage error on {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Simple health check endpoint."""
    return {
        "status": "healthy",
        "service": "Art Finance Hub Auth API",
        "version": "1.0.0",
    }


# Root endpoint
@app.get("/")
async def root():
    """API root with basic info."""
    return {
        "message": "Art Finance Hub Auth API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


# Register API routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
