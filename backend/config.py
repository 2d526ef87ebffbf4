"""
Application Configuration

Loads configuration from environment variables with sensible defaults.
All tunables for the medication safety and registry sync workers are defined here.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists (override=True means .env takes precedence over system env vars)
load_dotenv(override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


# =============================================================================
# BASE PATHS
# =============================================================================

# Base directory (where this config file is located)
BASE_DIR = Path(__file__).resolve().parent

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medication_registry.db")

# =============================================================================
# APPLICATION SETTINGS
# =============================================================================

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = _env_bool("DEBUG", "False")
SERVICE_NAME = os.getenv("SERVICE_NAME", "medication-safety")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
LOG_OUTPUT = os.getenv("LOG_OUTPUT", "stdout")
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR / "logs" / "medication_safety.json.log"))

# =============================================================================
# CELERY / REDIS CONFIGURATION
# =============================================================================

# Redis connection URL
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Celery broker and result backend
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)

# Task settings
CELERY_TASK_SOFT_TIME_LIMIT = int(os.getenv("CELERY_TASK_SOFT_TIME_LIMIT", "120"))  # 2 minutes
CELERY_TASK_TIME_LIMIT = int(os.getenv("CELERY_TASK_TIME_LIMIT", "180"))  # 3 minutes hard limit
CELERY_TASK_RESULT_EXPIRES = int(os.getenv("CELERY_TASK_RESULT_EXPIRES", "3600"))  # 1 hour

# Worker settings
CELERY_WORKER_CONCURRENCY = int(os.getenv("CELERY_WORKER_CONCURRENCY", "4"))
CELERY_WORKER_PREFETCH_MULTIPLIER = int(os.getenv("CELERY_WORKER_PREFETCH_MULTIPLIER", "1"))

# Retries for visit sync tasks (primary write failures)
SYNC_TASK_MAX_RETRIES = int(os.getenv("SYNC_TASK_MAX_RETRIES", "3"))
SYNC_TASK_RETRY_DELAY_SECONDS = int(os.getenv("SYNC_TASK_RETRY_DELAY_SECONDS", "30"))

# =============================================================================
# MEDICATION SAFETY - GENERATIVE LAYER
# =============================================================================

# Off by default; the deterministic rule layer always runs
ENABLE_AI_SAFETY_CHECKS = _env_bool("ENABLE_AI_SAFETY_CHECKS", "False")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_SAFETY_MODEL = os.getenv("OPENAI_SAFETY_MODEL", "gpt-4.1-mini")
AI_SAFETY_TEMPERATURE = float(os.getenv("AI_SAFETY_TEMPERATURE", "0.1"))
AI_SAFETY_MAX_TOKENS = int(os.getenv("AI_SAFETY_MAX_TOKENS", "2000"))
AI_SAFETY_TIMEOUT_SECONDS = float(os.getenv("AI_SAFETY_TIMEOUT_SECONDS", "20"))

# =============================================================================
# MEDICATION SAFETY - EXTERNAL INTERACTION DATA (RxNav)
# =============================================================================

EXTERNAL_DRUG_DATA_ENABLED = _env_bool("EXTERNAL_DRUG_DATA_ENABLED", "True")
EXTERNAL_DRUG_DATA_BASE_URL = os.getenv("EXTERNAL_DRUG_DATA_BASE_URL", "https://rxnav.nlm.nih.gov/REST")
EXTERNAL_DRUG_DATA_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_DRUG_DATA_TIMEOUT_SECONDS", "5"))

# Persisted safety results (external + generative) expire after this many days
SAFETY_CACHE_TTL_DAYS = int(os.getenv("SAFETY_CACHE_TTL_DAYS", "30"))

# =============================================================================
# MEDICATION REGISTRY SYNC
# =============================================================================

# In-process lookup cache, scoped to one sync call
MEDICATION_LOOKUP_CACHE_SIZE = int(os.getenv("MEDICATION_LOOKUP_CACHE_SIZE", "1000"))
MEDICATION_LOOKUP_CACHE_TTL_SECONDS = int(os.getenv("MEDICATION_LOOKUP_CACHE_TTL_SECONDS", "300"))

# Thread pool used to run per-entry upserts concurrently
SYNC_MAX_WORKERS = int(os.getenv("SYNC_MAX_WORKERS", "8"))

# Storage transactional-batch limit
MAX_BATCH_SIZE = 400
BACKFILL_BATCH_SIZE = min(int(os.getenv("BACKFILL_BATCH_SIZE", str(MAX_BATCH_SIZE))), MAX_BATCH_SIZE)

SAFETY_RECHECK_ENABLED = _env_bool("SAFETY_RECHECK_ENABLED", "True")


# =============================================================================
# HELPER FUNCTION
# =============================================================================

def get_config_summary():
    """Returns a summary of current configuration (for debugging)."""
    return {
        "database_url": DATABASE_URL[:20] + "..." if len(DATABASE_URL) > 20 else DATABASE_URL,
        "environment": ENVIRONMENT,
        "debug": DEBUG,
        "log_level": LOG_LEVEL,
        "ai_safety_checks_enabled": ENABLE_AI_SAFETY_CHECKS,
        "openai_api_key_configured": bool(OPENAI_API_KEY.strip()),
        "openai_safety_model": OPENAI_SAFETY_MODEL,
        "external_drug_data_enabled": EXTERNAL_DRUG_DATA_ENABLED,
        "external_drug_data_base_url": EXTERNAL_DRUG_DATA_BASE_URL,
        "safety_cache_ttl_days": SAFETY_CACHE_TTL_DAYS,
        "lookup_cache_size": MEDICATION_LOOKUP_CACHE_SIZE,
        "backfill_batch_size": BACKFILL_BATCH_SIZE,
        "safety_recheck_enabled": SAFETY_RECHECK_ENABLED,
    }
