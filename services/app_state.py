"""
Application State Management for the Resell Queue service

Bundles the long-lived components (store, quota, market data, queue driver)
into one dataclass that is handed to the FastAPI app and reached from routes
through the request.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import logging

import httpx

from config import (
    ANTHROPIC_API_KEY,
    DB_PATH,
    MONTHLY_ANALYSIS_LIMIT,
    QUEUE,
    QueueConfig,
)
from pipeline.orchestrator import AnalysisPipeline
from services.clients import create_anthropic_client, create_http_client
from services.ebay_auth import EbayAppToken
from services.identification import ClaudeIdentifier
from services.market_data import MarketDataAggregator
from services.queue_driver import QueueDriver
from services.queue_store import QueueStore
from utils.quota import MonthlyQuota

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """
    Centralized application state.

    Tests build one from fakes; `from_settings()` builds the real thing.
    """

    store: QueueStore
    driver: QueueDriver
    quota: MonthlyQuota
    aggregator: Optional[MarketDataAggregator] = None
    http_client: Optional[httpx.AsyncClient] = None
    session_start: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_settings(
        cls,
        db_path: Optional[str] = None,
        api_key: Optional[str] = ANTHROPIC_API_KEY,
        monthly_limit: int = MONTHLY_ANALYSIS_LIMIT,
        config: QueueConfig = QUEUE,
    ) -> "AppState":
        """Wire up the production components from config/settings.py"""
        store = QueueStore(db_path or DB_PATH)
        quota = MonthlyQuota(store, monthly_limit=monthly_limit)

        http_client = create_http_client(timeout=config.market_timeout)
        token = EbayAppToken(http_client)
        aggregator = MarketDataAggregator(http_client, token, timeout=config.market_timeout)
        if not token.configured:
            logger.warning("[STARTUP] No eBay keyset - pricing will use AI estimates only")

        identifier = ClaudeIdentifier(create_anthropic_client(api_key), timeout=config.identify_timeout)
        pipeline = AnalysisPipeline(
            identifier,
            aggregator,
            identify_timeout=config.identify_timeout,
            market_timeout=config.market_timeout,
        )

        driver = QueueDriver(store.load_queue(), store, pipeline, quota, config=config)
        return cls(
            store=store,
            driver=driver,
            quota=quota,
            aggregator=aggregator,
            http_client=http_client,
        )

    def get_session_duration(self) -> float:
        """Get session duration in seconds."""
        start = datetime.fromisoformat(self.session_start)
        return (datetime.now() - start).total_seconds()

    def get_status(self) -> Dict[str, Any]:
        """Summary for the health endpoint."""
        counts = self.driver.queue.counts()
        status = {
            "is_running": self.driver.is_running,
            "rate_limit_hit": self.driver.queue.rate_limit_hit,
            "status_message": self.driver.status_message,
            "jobs": counts,
            "quota": self.quota.get_status(),
            "session_duration_seconds": round(self.get_session_duration(), 1),
        }
        if self.aggregator is not None:
            status["market_data"] = dict(self.aggregator.stats)
        return status

    async def close(self) -> None:
        """Stop the driver, then release network and database handles."""
        await self.driver.shutdown()
        if self.http_client is not None:
            await self.http_client.aclose()
        self.store.close()
        logger.info("[SHUTDOWN] Application state closed")


# ============================================================
# FastAPI Dependency Injection Helpers
# ============================================================

def get_app_state_from_request(request) -> "AppState":
    """
    Get AppState from request.

    Usage in routes:
        @router.get("/endpoint")
        async def endpoint(request: Request):
            app_state = get_app_state_from_request(request)
    """
    return request.app.state.app_state
