from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crewslot.api.routes import get_escalations, router as api_router
from crewslot.config.settings import get_settings
from crewslot.storage.cache import EscalationCache
from crewslot.storage.database import init_db
from crewslot.utils.logging_config import setup_logging


# Setup logging
logger = setup_logging()
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    description="Availability checking and cascading crew assignment for field-service bookings",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize database on startup
@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.app_name}...")
    init_db()
    logger.info("Database initialized")
    logger.info(f"Default timezone: {settings.default_timezone}")
    logger.info(
        f"Slot search: step={settings.slot_step_minutes}m, horizon={settings.search_horizon_days}d, "
        f"buffer={settings.buffer_minutes}m, lead time={settings.min_lead_time_minutes}m"
    )

@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.app_name}...")

app.include_router(api_router, prefix="/api/v1", tags=["scheduling"])


@app.get("/health", tags=["health"])
def health_check(escalations: EscalationCache = Depends(get_escalations)):
    """Health check endpoint for monitoring and load balancers."""
    return {
        "status": "ok",
        "app": settings.app_name,
        "version": "1.0.0",
        "redis": escalations.health_check(),
    }
