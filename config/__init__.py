"""
Configuration package.

Import settings from here: `from config import EBAY_APP_ID, QUEUE`
"""

from .settings import (
    # Paths
    BASE_DIR,
    DB_PATH,

    # Server
    HOST,
    PORT,
    LOG_LEVEL,

    # API keys
    ANTHROPIC_API_KEY,
    EBAY_APP_ID,
    EBAY_CERT_ID,

    # AI model
    MODEL_IDENTIFY,
    IDENTIFY_MAX_TOKENS,
    IDENTIFY_TIMEOUT,

    # eBay market data
    EBAY_OAUTH_URL,
    EBAY_INSIGHTS_URL,
    EBAY_BROWSE_URL,
    EBAY_OAUTH_SCOPES,
    EBAY_MARKETPLACE_ID,
    EBAY_TOKEN_EXPIRY_BUFFER,
    MARKET_SEARCH_LIMIT,
    MARKET_TIMEOUT,
    ACTIVE_LISTING_DISCOUNT,
    EBAY_CATEGORY_IDS,
    get_category_id,

    # Queue
    MAX_PHOTOS_PER_JOB,
    MONTHLY_ANALYSIS_LIMIT,
    QUEUE_ADVANCE_DELAY,
    QUEUE_PROGRESS_INTERVAL,
    QueueConfig,
    QUEUE,

    # Database
    DatabaseConfig,
    DATABASE,
)
