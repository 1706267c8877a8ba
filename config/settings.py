"""
Centralized Configuration Settings for the Resell Queue service

All configuration values are consolidated here for easy management.
Values can be overridden through environment variables or a .env file.
"""

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Dict

# ============================================================
# ENVIRONMENT LOADING
# ============================================================
from dotenv import load_dotenv

# Try .env in package dir first, then project root
env_path = Path(__file__).parent.parent / ".env"
if not env_path.exists():
    env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent
DB_PATH = Path(os.getenv("RESELL_DB_PATH", str(BASE_DIR / "resell_queue.db")))

# ============================================================
# SERVER SETTINGS
# ============================================================
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================
# API KEYS & CREDENTIALS
# ============================================================
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
if ANTHROPIC_API_KEY == "YOUR_API_KEY_HERE":
    ANTHROPIC_API_KEY = None

# eBay application keyset (client credentials flow)
EBAY_APP_ID = os.getenv("EBAY_APP_ID")    # Also called Client ID
EBAY_CERT_ID = os.getenv("EBAY_CERT_ID")  # Also called Client Secret
if EBAY_APP_ID == "YOUR_EBAY_APP_ID_HERE":
    EBAY_APP_ID = None
if EBAY_CERT_ID == "YOUR_EBAY_CERT_ID_HERE":
    EBAY_CERT_ID = None

# ============================================================
# AI MODEL SETTINGS
# ============================================================
MODEL_IDENTIFY = os.getenv("MODEL_IDENTIFY", "claude-sonnet-4-20250514")
IDENTIFY_MAX_TOKENS = int(os.getenv("IDENTIFY_MAX_TOKENS", "1500"))
IDENTIFY_TIMEOUT = float(os.getenv("IDENTIFY_TIMEOUT", "60"))  # seconds

# ============================================================
# EBAY MARKET DATA
# ============================================================
EBAY_OAUTH_URL = "https://api.ebay.com/identity/v1/oauth2/token"
EBAY_INSIGHTS_URL = "https://api.ebay.com/buy/marketplace_insights/v1_beta/item_sales/search"
EBAY_BROWSE_URL = "https://api.ebay.com/buy/browse/v1/item_summary/search"
EBAY_OAUTH_SCOPES = (
    "https://api.ebay.com/oauth/api_scope",
    "https://api.ebay.com/oauth/api_scope/buy.marketplace.insights",
)
EBAY_MARKETPLACE_ID = os.getenv("EBAY_MARKETPLACE_ID", "EBAY_US")
EBAY_TOKEN_EXPIRY_BUFFER = 300  # refresh 5 minutes before eBay says it expires

MARKET_SEARCH_LIMIT = int(os.getenv("MARKET_SEARCH_LIMIT", "50"))
MARKET_TIMEOUT = float(os.getenv("MARKET_TIMEOUT", "20"))  # seconds

# Active asking prices are discounted to approximate what the item actually sells for
ACTIVE_LISTING_DISCOUNT = float(os.getenv("ACTIVE_LISTING_DISCOUNT", "0.85"))

EBAY_CATEGORY_IDS: Dict[str, str] = {
    "Sneakers": "15709",
    "Shoes": "15709",
    "Athletic Shoes": "15709",
    "Clothing": "11450",
    "Electronics": "58058",
    "Smartphones": "9355",
    "Cell Phones": "9355",
    "Accessories": "169291",
    "Home": "11700",
    "Collectibles": "1",
    "Books": "267",
    "Toys": "220",
    "Sports": "888",
    "Other": "99",
}


def get_category_id(category: str) -> str:
    """Map an identified category name to an eBay category id ('' if unmapped)"""
    if not category:
        return ""
    if category in EBAY_CATEGORY_IDS:
        return EBAY_CATEGORY_IDS[category]
    cat_lower = category.lower()
    for name, category_id in EBAY_CATEGORY_IDS.items():
        if name.lower() == cat_lower:
            return category_id
    return ""

# ============================================================
# QUEUE SETTINGS
# ============================================================
MAX_PHOTOS_PER_JOB = 8
MONTHLY_ANALYSIS_LIMIT = int(os.getenv("MONTHLY_ANALYSIS_LIMIT", "10"))
QUEUE_ADVANCE_DELAY = float(os.getenv("QUEUE_ADVANCE_DELAY", "1.0"))          # pause between jobs
QUEUE_PROGRESS_INTERVAL = float(os.getenv("QUEUE_PROGRESS_INTERVAL", "2.0"))  # status ticker


@dataclass
class QueueConfig:
    """Timings for the queue driver"""
    advance_delay: float = QUEUE_ADVANCE_DELAY
    progress_interval: float = QUEUE_PROGRESS_INTERVAL
    identify_timeout: float = IDENTIFY_TIMEOUT
    market_timeout: float = MARKET_TIMEOUT

QUEUE = QueueConfig()

# ============================================================
# DATABASE SETTINGS
# ============================================================
@dataclass
class DatabaseConfig:
    """SQLite optimization settings"""
    wal_mode: bool = True
    busy_timeout: int = 5000     # 5 second timeout
    synchronous: str = "NORMAL"

DATABASE = DatabaseConfig()
