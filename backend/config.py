"""
Application Configuration

Loads configuration from environment variables with sensible defaults.
All hardcoded paths and settings should be defined here.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists (override=True means .env takes precedence over system env vars)
load_dotenv(override=True)

# =============================================================================
# BASE PATHS
# =============================================================================

# Base directory (where this config file is located)
BASE_DIR = Path(__file__).resolve().parent

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mindscan.db")

# Hosted Postgres providers hand out postgres:// URLs, which SQLAlchemy no longer accepts
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# =============================================================================
# AUTHENTICATION
# =============================================================================

SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# =============================================================================
# APPLICATION SETTINGS
# =============================================================================

DEBUG = os.getenv("DEBUG", "True").lower() in ("true", "1", "yes")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# =============================================================================
# FILE STORAGE
# =============================================================================

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# Maximum file upload size (in bytes) - default 10MB
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(10 * 1024 * 1024)))

# =============================================================================
# EXTERNAL MRI CLASSIFIER
# =============================================================================

CLASSIFIER_URL = os.getenv("CLASSIFIER_URL", "https://arittrabag-mri-h4b.hf.space/detect")

# Empty means no timeout: a slow upstream stalls only the request that called it
_classifier_timeout = os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "").strip()
CLASSIFIER_TIMEOUT_SECONDS = float(_classifier_timeout) if _classifier_timeout else None

# Prefix the upstream insight text with the patient's name
PERSONALIZE_INSIGHTS = os.getenv("PERSONALIZE_INSIGHTS", "True").lower() in ("true", "1", "yes")

# =============================================================================
# DASHBOARD ANALYTICS
# =============================================================================

# Confidence drop between the two latest visits that raises an alert (0.15 = 15 points)
CONFIDENCE_ALERT_THRESHOLD = float(os.getenv("CONFIDENCE_ALERT_THRESHOLD", "0.15"))

# Number of rows in "recent patients" / "recent visits" lists
RECENT_WINDOW = int(os.getenv("RECENT_WINDOW", "5"))

# =============================================================================
# CORS SETTINGS
# =============================================================================

# Comma-separated list of allowed origins, or "*" for all
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
CORS_ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "True").lower() in ("true", "1", "yes")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR / "logs" / "app.json.log"))


# =============================================================================
# HELPER FUNCTION
# =============================================================================

def get_config_summary():
    """Non-secret settings, logged once at startup."""
    return {
        "database_url": DATABASE_URL[:20] + "..." if len(DATABASE_URL) > 20 else DATABASE_URL,
        "debug": DEBUG,
        "host": HOST,
        "port": PORT,
        "upload_dir": str(UPLOAD_DIR),
        "max_upload_size": MAX_UPLOAD_SIZE,
        "classifier_url": CLASSIFIER_URL,
        "classifier_timeout_seconds": CLASSIFIER_TIMEOUT_SECONDS,
        "personalize_insights": PERSONALIZE_INSIGHTS,
        "confidence_alert_threshold": CONFIDENCE_ALERT_THRESHOLD,
    }
