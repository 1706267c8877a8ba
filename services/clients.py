"""
API client initialization for external services.

Creates the Anthropic (Claude) client used for identification and the
shared httpx client used for eBay market data.
"""

import logging
from typing import Optional

import anthropic
import httpx

from config import MARKET_TIMEOUT
from services.exceptions import MissingAPIKeyError

logger = logging.getLogger(__name__)


def create_anthropic_client(api_key: Optional[str]) -> anthropic.AsyncAnthropic:
    """Create an async Anthropic client for Claude API calls."""
    if not api_key:
        raise MissingAPIKeyError("anthropic", "ANTHROPIC_API_KEY")
    client = anthropic.AsyncAnthropic(api_key=api_key)
    logger.info("[CLIENTS] Anthropic client initialized")
    return client


def create_http_client(timeout: float = MARKET_TIMEOUT) -> httpx.AsyncClient:
    """Shared async HTTP client with connection pooling for eBay calls."""
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
    )
    logger.info(f"[CLIENTS] HTTP client initialized (timeout {timeout:.0f}s)")
    return client
