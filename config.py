"""Run-time settings, read from the environment.

Modules read ``config.<NAME>`` at call time, so ``run_all.py`` can override
values with ``setattr`` and tests can ``patch.object`` them.
"""

import os
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()


def _float_range(name: str, default: str) -> Tuple[float, float]:
    low, _, high = os.getenv(name, default).partition(",")
    return float(low), float(high or low)


def _csv(name: str, default: str) -> List[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/market.db")
RAW_HTML_DIR = os.getenv("RAW_HTML_DIR", "data/raw_html")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "./data/out")
CACHE_TTL_DAYS = int(os.getenv("CACHE_TTL_DAYS", "90"))

# Fetching
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "45"))
FETCH_MODE = os.getenv("FETCH_MODE", "auto").lower()  # auto | requests | selenium
FETCH_PROXY_URL = os.getenv("FETCH_PROXY_URL", "")
FETCH_REQUIRE_PROXY = os.getenv("FETCH_REQUIRE_PROXY", "0") in ("1", "true", "True")
USE_HTTP_CACHE = os.getenv("USE_HTTP_CACHE", "0") in ("1", "true", "True")
HTTP_RETRIES = int(os.getenv("HTTP_RETRIES", "1"))
HEADLESS = os.getenv("HEADLESS", "1") not in ("0", "false", "False")
SELENIUM_WAIT = int(os.getenv("SELENIUM_WAIT", "12"))

# Index phase
MAX_INDEX_PAGES = int(os.getenv("MAX_INDEX_PAGES", "10"))
INDEX_DELAY_RANGE: Tuple[float, float] = _float_range("INDEX_DELAY_RANGE", "2.0,5.0")
DUPLICATE_STOP_THRESHOLD = float(os.getenv("DUPLICATE_STOP_THRESHOLD", "80"))
DUPLICATE_WINDOW = int(os.getenv("DUPLICATE_WINDOW", "1"))
EXISTENCE_BATCH_SIZE = int(os.getenv("EXISTENCE_BATCH_SIZE", "100"))
AVG_PAGE_MB = float(os.getenv("AVG_PAGE_MB", "1.0"))
COST_PER_GB = float(os.getenv("COST_PER_GB", "8.0"))

# Detail phase
DETAIL_BATCH_SIZE = int(os.getenv("DETAIL_BATCH_SIZE", "25"))
DETAIL_WORKERS = int(os.getenv("DETAIL_WORKERS", "2"))
DETAIL_DELAY_RANGE: Tuple[float, float] = _float_range("DETAIL_DELAY_RANGE", "1.5,3.0")
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "2.0"))
BLOCKED_BACKOFF = float(os.getenv("BLOCKED_BACKOFF", "60"))
MAX_CONSECUTIVE_FAILURES = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "5"))

# Normalization
TRACKED_MODELS = _csv("TRACKED_MODELS", "911,718 Cayman,718 Boxster,718 Spyder")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
