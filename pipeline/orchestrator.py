"""
Analysis Pipeline Orchestrator

Single entry point for analyzing one queued job.

Flow:
1. Identification: vision model names the item and estimates three prices
2. Market data: eBay comparables for the identified item (optional)
3. Pricing: blend the AI estimate with the comparables

Identification failures fail the job. Missing market data never does; the
result simply keeps the AI pricing.
"""

import asyncio
import logging
import time
from typing import Optional, Protocol, Sequence

from config import IDENTIFY_TIMEOUT, MARKET_TIMEOUT
from services.exceptions import (
    PricingError,
    TransientNetworkError,
)
from services.identification import Identifier, IdentificationResult
from services.market_data import MarketDataResult

from .pricing_engine import (
    AnalysisResult,
    build_search_query,
    combine,
    condition_filter_for,
)

logger = logging.getLogger(__name__)


class ComparablesSource(Protocol):
    async def fetch_comparables(
        self,
        query: str,
        category: Optional[str] = None,
        condition: Optional[str] = None,
    ) -> Optional[MarketDataResult]:
        ...


class AnalysisPipeline:
    """
    identify → fetch comparables → price

    Usage:
        pipeline = AnalysisPipeline(identifier, aggregator)
        result = await pipeline.analyze(photos)
    """

    def __init__(
        self,
        identifier: Identifier,
        comparables: Optional[ComparablesSource] = None,
        identify_timeout: float = IDENTIFY_TIMEOUT,
        market_timeout: float = MARKET_TIMEOUT,
    ):
        self.identifier = identifier
        self.comparables = comparables
        self.identify_timeout = identify_timeout
        self.market_timeout = market_timeout

        self.stats = {
            "analyzed": 0,
            "with_market_data": 0,
            "ai_only": 0,
        }

    async def identify(self, photos: Sequence[bytes]) -> IdentificationResult:
        try:
            return await asyncio.wait_for(self.identifier.identify(photos), timeout=self.identify_timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(
                "identification",
                f"Identification timed out after {self.identify_timeout:.0f}s",
                cause=e,
            )

    async def fetch_market_data(self, estimate: IdentificationResult) -> Optional[MarketDataResult]:
        """Comparables for the estimate, or None. Never raises."""
        if self.comparables is None:
            return None

        query = build_search_query(estimate)
        try:
            return await asyncio.wait_for(
                self.comparables.fetch_comparables(
                    query,
                    category=estimate.category,
                    condition=condition_filter_for(estimate.condition),
                ),
                timeout=self.market_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[PIPELINE] Market data timed out after {self.market_timeout:.0f}s for '{query[:40]}'")
        except Exception as e:
            logger.warning(f"[PIPELINE] Market data error for '{query[:40]}': {e}")
        return None

    async def analyze(self, photos: Sequence[bytes]) -> AnalysisResult:
        start = time.time()

        estimate = await self.identify(photos)
        market_data = await self.fetch_market_data(estimate)

        try:
            result = combine(estimate, market_data)
        except Exception as e:
            logger.error(f"[PIPELINE] Pricing error for {estimate.name[:40]}: {e}", exc_info=True)
            raise PricingError(str(e), cause=e)

        self.stats["analyzed"] += 1
        if market_data is not None and market_data.sold_listings:
            self.stats["with_market_data"] += 1
        else:
            self.stats["ai_only"] += 1

        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(f"[PIPELINE] Analyzed '{result.name[:40]}' in {elapsed_ms}ms (price source: {result.price_source})")
        return result
