"""
Service Configuration
=====================

Environment-driven settings for the triage service.
Values are read once at import time.
"""

import os
from pathlib import Path


def _clean(value: str) -> str:
    """Strip whitespace and surrounding quotes from an env value."""
    return value.strip().strip("'\"")


# === REMOTE LANGUAGE MODEL ===
OPENAI_API_KEY = _clean(os.getenv("OPENAI_API_KEY", ""))
OPENAI_MODEL = _clean(os.getenv("OPENAI_MODEL", ""))
OPENAI_BASE_URL = _clean(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")).rstrip("/")
OPENAI_TIMEOUT_SECONDS = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))

# Tried in order after the configured model
FALLBACK_MODELS = ["gpt-4o-mini", "gpt-4.1-mini", "gpt-4o"]

# === DATASET ===
PACKAGE_DIR = Path(__file__).resolve().parent
BUNDLED_KNOWLEDGE_DIR = PACKAGE_DIR / "knowledge"
TRIAGE_DATA_DIR = _clean(os.getenv("TRIAGE_DATA_DIR", ""))

DATASET_FILE = "dataset_cleaned.csv"
DESCRIPTION_FILE = "symptom_description_cleaned.csv"
PRECAUTION_FILE = "symptom_precaution_cleaned.csv"


def dataset_dir_candidates():
    """Directories searched for the dataset, first existing one wins."""
    candidates = []
    if TRIAGE_DATA_DIR:
        candidates.append(Path(TRIAGE_DATA_DIR))
    cwd = Path.cwd()
    candidates.extend([
        cwd / "backend" / "medical_ML" / "data",
        cwd.parent / "backend" / "medical_ML" / "data",
        cwd / "medical_ML" / "data",
        BUNDLED_KNOWLEDGE_DIR,
    ])
    return candidates


# === DIALOGUE ===
MAX_TURNS = int(os.getenv("TRIAGE_MAX_TURNS", "10"))
QUESTION_REGENERATION_ATTEMPTS = 3
HISTORY_LIMIT = 200

# === SESSION STORAGE ===
USE_REDIS = os.getenv("USE_REDIS", "true").lower() == "true"
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 7 * 24 * 3600))
SESSION_KEY_PREFIX = "triage:session:"
