"""
MindScan API - Main Application

MRI-based dementia screening records: clinicians manage patients, upload
MRI images for classification by an external service, and review trends
and reports.

ROUTERS:
- auth_router.py - Registration, login, profile
- patients_router.py - Patient records
- visits_router.py - MRI upload/classification and stored visits
- analytics_router.py - Patient insights, stage guidance, dashboard
- report_router.py - CSV, JSON and PDF exports
"""

import time
from datetime import datetime

import psutil
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import UPLOAD_DIR, CORS_ORIGINS, CORS_ALLOW_CREDENTIALS, LOG_LEVEL, LOG_FILE, get_config_summary
from database import create_tables, SessionLocal
from middleware import RequestLoggingMiddleware
from structured_logging import configure_logging, get_logger

configure_logging(level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)
logger.info("Configuration loaded", extra=get_config_summary())

# =============================================================================
# IMPORT ROUTERS
# =============================================================================

# Authentication & Profiles
from routers.auth_router import router as auth_router

# Patients
from routers.patients_router import router as patients_router

# Report exports (registered before visits so /visits/export.csv is not read as a visit id)
from routers.report_router import router as report_router

# MRI upload & visits
from routers.visits_router import router as visits_router

# Dashboard analytics & guidance
from routers.analytics_router import router as analytics_router

# =============================================================================
# APPLICATION SETUP
# =============================================================================

app = FastAPI(
    title="MindScan API",
    description="Clinical records for MRI-based dementia screening: patients, visits, AI classification, trends and reports.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Mount static files for serving uploaded images
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")

# Create database tables on startup
create_tables()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (logs all API calls)
app.add_middleware(RequestLoggingMiddleware, log_headers=False)

# =============================================================================
# REGISTER ROUTERS
# =============================================================================

app.include_router(auth_router)
app.include_router(patients_router)
app.include_router(report_router)
app.include_router(visits_router)
app.include_router(analytics_router)

_started_at = time.time()


# =============================================================================
# HEALTH CHECK ENDPOINTS
# =============================================================================

@app.get("/")
def read_root():
    return {
        "message": "MindScan API v1.0",
        "status": "healthy",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """
    Basic health check endpoint.
    Returns database connectivity, process memory and uptime.
    """
    db_status = "healthy"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check database ping failed", extra={"error": str(e)})
        db_status = f"unhealthy: {type(e).__name__}"
    finally:
        db.close()

    memory = psutil.virtual_memory()
    process = psutil.Process()
    uptime_seconds = time.time() - _started_at

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "database": db_status,
        "memory": {
            "total_gb": round(memory.total / (1024**3), 2),
            "available_gb": round(memory.available / (1024**3), 2),
            "used_percent": memory.percent,
        },
        "process_memory_mb": round(process.memory_info().rss / (1024**2), 1),
        "uptime": _format_uptime(uptime_seconds),
        "uptime_seconds": round(uptime_seconds),
    }


def _format_uptime(seconds: float) -> str:
    """Format uptime seconds to human readable string."""
    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")

    return " ".join(parts)


if __name__ == "__main__":
    import uvicorn
    from config import HOST, PORT
    uvicorn.run("main:app", host=HOST, port=PORT)
