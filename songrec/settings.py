"""
Runtime settings

Values come from the environment (a local ``.env`` file is loaded first),
falling back to the defaults below.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"

DB_PATH = os.getenv("SONGREC_DB_PATH", str(DATA_DIR / "songrec.db"))

LOG_LEVEL = os.getenv("SONGREC_LOG_LEVEL", "INFO")

# FeatureModel staleness window
MODEL_REFRESH_SECONDS = int(os.getenv("SONGREC_MODEL_REFRESH_SECONDS", 300))

# Recommendation result cache
CACHE_TTL_SECONDS = int(os.getenv("SONGREC_CACHE_TTL_SECONDS", 300))
HOT_CACHE_SIZE = int(os.getenv("SONGREC_HOT_CACHE_SIZE", 1000))
WARM_CACHE_SIZE = int(os.getenv("SONGREC_WARM_CACHE_SIZE", 10000))

# Data-completion batch job
COMPLETION_BATCH_SIZE = int(os.getenv("SONGREC_COMPLETION_BATCH_SIZE", 50))

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 8000))
