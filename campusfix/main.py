"""
CampusFix API - Main Application

Maintenance ticket lifecycle, worker assignment and daily cleaning
distribution for campus facilities.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from campusfix import __version__
from campusfix.api.v1.router import api_router
from campusfix.config import settings
from campusfix.database import init_db
from campusfix.exceptions import CampusFixException, create_exception_handlers
from campusfix.middleware.correlation import CorrelationIdMiddleware
from campusfix.tasks.daily_distribution import start_scheduler, stop_scheduler
# Import all models to register them with SQLAlchemy metadata before init_db()
from campusfix.models import Worker, Location, Ticket, TicketStatusHistory, RecurringTask, Notification  # noqa: F401

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting CampusFix API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    # Don't log full database URL, just prefix
    if settings.DATABASE_URL:
        logger.info(f"Database URL prefix: {settings.DATABASE_URL[:30]}...")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - some features may not work")

    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()
    logger.info("Shutting down CampusFix API...")


docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="CampusFix API",
    description="Campus maintenance request lifecycle and assignment engine",
    version=__version__,
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",  # Alternative dev port
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

handlers = create_exception_handlers(settings.DEBUG)
app.add_exception_handler(CampusFixException, handlers["campusfix"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(Exception, handlers["generic"])

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "CampusFix API",
        "version": __version__,
        "health": "/health",
    }
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "campusfix.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
