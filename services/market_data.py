"""
eBay Market Data Service

Fetches comparable sales for an identified item.

Sources, in order:
1. Marketplace Insights API - real sold listings
2. Browse API - active listings, discounted to an estimated sold price

If both come back empty or fail, the item has no market data and pricing
falls back to the AI estimate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from config import (
    ACTIVE_LISTING_DISCOUNT,
    EBAY_BROWSE_URL,
    EBAY_INSIGHTS_URL,
    EBAY_MARKETPLACE_ID,
    MARKET_SEARCH_LIMIT,
    MARKET_TIMEOUT,
    get_category_id,
)
from services.ebay_auth import EbayAppToken
from services.exceptions import ResellException, MarketDataUnavailable
from utils import market_stats

logger = logging.getLogger(__name__)


@dataclass
class SoldListing:
    """One comparable sale (or an active listing converted to an estimated sale)"""
    title: str
    price: float
    sold_date: Optional[datetime]
    condition: str = "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "price": round(self.price, 2),
            "sold_date": self.sold_date.isoformat() if self.sold_date else None,
            "condition": self.condition,
        }


@dataclass
class MarketDataResult:
    """Comparables for one query. is_estimate=True means asking prices, not sales."""
    sold_listings: List[SoldListing] = field(default_factory=list)
    is_estimate: bool = False

    @property
    def prices(self) -> List[float]:
        return [listing.price for listing in self.sold_listings]

    @property
    def median_price(self) -> Optional[float]:
        return market_stats.median(self.prices) if self.prices else None

    @property
    def average_price(self) -> Optional[float]:
        return market_stats.average(self.prices) if self.prices else None

    @property
    def price_range(self) -> Optional[Tuple[float, float]]:
        return market_stats.price_range(self.prices) if self.prices else None

    def price_tiers(self) -> market_stats.PriceTiers:
        return market_stats.price_tiers(self.prices, is_estimate=self.is_estimate)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sold_listings": [listing.to_dict() for listing in self.sold_listings],
            "is_estimate": self.is_estimate,
            "count": len(self.sold_listings),
            "median": round(self.median_price, 2) if self.prices else None,
        }


def _parse_price(item: Dict[str, Any]) -> Optional[float]:
    price_info = item.get("price") or item.get("lastSoldPrice") or {}
    if not isinstance(price_info, dict):
        return None
    try:
        return float(price_info.get("value"))
    except (TypeError, ValueError):
        return None


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _condition_matches(item_condition: str, condition: Optional[str]) -> bool:
    if condition is None:
        return True
    return condition.lower() in item_condition.lower()


class MarketDataAggregator:
    """
    Comparable sales lookup with the sold → active fallback.

    Usage:
        aggregator = MarketDataAggregator(http_client, EbayAppToken(http_client))
        market = await aggregator.fetch_comparables("Nike Air Max 90", "Sneakers")
        if market is None:
            ...  # no market data, AI pricing only
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_cache: EbayAppToken,
        active_discount: float = ACTIVE_LISTING_DISCOUNT,
        limit: int = MARKET_SEARCH_LIMIT,
        timeout: float = MARKET_TIMEOUT,
        marketplace_id: str = EBAY_MARKETPLACE_ID,
        insights_url: str = EBAY_INSIGHTS_URL,
        browse_url: str = EBAY_BROWSE_URL,
    ):
        self.http_client = http_client
        self.token_cache = token_cache
        self.active_discount = active_discount
        self.limit = limit
        self.timeout = timeout
        self.marketplace_id = marketplace_id
        self.insights_url = insights_url
        self.browse_url = browse_url

        self.stats = {
            "requests": 0,
            "sold_hits": 0,
            "estimate_hits": 0,
            "unavailable": 0,
        }

    async def fetch_comparables(
        self,
        query: str,
        category: Optional[str] = None,
        condition: Optional[str] = None,
    ) -> Optional[MarketDataResult]:
        """
        Returns sold comparables, estimated comparables, or None when no
        source produced any data. Never raises for network or auth problems.
        """
        self.stats["requests"] += 1
        logger.info(f"[MARKET] Fetching comparables for: {query[:60]}")

        try:
            token = await self.token_cache.get_token()
        except ResellException as e:
            logger.warning(f"[MARKET] No eBay app token: {e}")
            self.stats["unavailable"] += 1
            return None

        try:
            sold = await self._fetch_sold(token, query, category, condition)
            self.stats["sold_hits"] += 1
            logger.info(f"[MARKET] Found {len(sold)} sold items from Insights API")
            return MarketDataResult(sold_listings=sold, is_estimate=False)
        except MarketDataUnavailable as e:
            logger.info(f"[MARKET] {e.message} - falling back to active listings")

        try:
            estimated = await self._fetch_active(token, query, category, condition)
            self.stats["estimate_hits"] += 1
            logger.info(f"[MARKET] Using {len(estimated)} active listings as estimated sales")
            return MarketDataResult(sold_listings=estimated, is_estimate=True)
        except MarketDataUnavailable as e:
            logger.warning(f"[MARKET] {e.message} - no market data for '{query[:40]}'")

        self.stats["unavailable"] += 1
        return None

    # ============================================================
    # Sources
    # ============================================================

    def _build_params(self, query: str, category: Optional[str]) -> Dict[str, str]:
        params = {
            "q": query,
            "limit": str(self.limit),
        }
        category_id = get_category_id(category) if category else ""
        if category_id:
            params["category_ids"] = category_id
        return params

    async def _get(self, source: str, url: str, token: str, params: Dict[str, str]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {token}",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }
        try:
            response = await self.http_client.get(url, headers=headers, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise MarketDataUnavailable(source, f"timed out after {self.timeout:.0f}s", cause=e)
        except httpx.HTTPError as e:
            raise MarketDataUnavailable(source, "request error", cause=e)

        if response.status_code == 401:
            self.token_cache.invalidate()
            raise MarketDataUnavailable(source, "token rejected", status_code=401)
        if response.status_code == 403:
            raise MarketDataUnavailable(source, "access denied", status_code=403)
        if response.status_code != 200:
            logger.warning(f"[MARKET] {source} returned {response.status_code}: {response.text[:200]}")
            raise MarketDataUnavailable(source, "bad response", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise MarketDataUnavailable(source, "invalid JSON", cause=e)
        if not isinstance(data, dict):
            raise MarketDataUnavailable(source, "unexpected payload")
        return data

    async def _fetch_sold(
        self,
        token: str,
        query: str,
        category: Optional[str],
        condition: Optional[str],
    ) -> List[SoldListing]:
        params = self._build_params(query, category)
        params["filter"] = f"marketplaceIds:{{{self.marketplace_id}}}"

        data = await self._get("insights", self.insights_url, token, params)

        listings = []
        for item in data.get("itemSales", []) or []:
            if not isinstance(item, dict):
                continue
            title = item.get("title")
            price = _parse_price(item)
            if not title or price is None:
                continue
            item_condition = item.get("condition") or "Unknown"
            if not _condition_matches(item_condition, condition):
                continue
            listings.append(SoldListing(
                title=title,
                price=price,
                sold_date=_parse_date(item.get("lastSoldDate") or item.get("transactionDate")),
                condition=item_condition,
            ))

        if not listings:
            raise MarketDataUnavailable("insights", "no sold listings")
        return listings

    async def _fetch_active(
        self,
        token: str,
        query: str,
        category: Optional[str],
        condition: Optional[str],
    ) -> List[SoldListing]:
        params = self._build_params(query, category)

        data = await self._get("browse", self.browse_url, token, params)

        listings = []
        for item in data.get("itemSummaries", []) or []:
            if not isinstance(item, dict):
                continue
            title = item.get("title")
            price = _parse_price(item)
            if not title or price is None:
                continue
            item_condition = item.get("condition") or "Unknown"
            if not _condition_matches(item_condition, condition):
                continue
            listings.append(SoldListing(
                title=title,
                price=price * self.active_discount,
                sold_date=None,
                condition=item_condition,
            ))

        if not listings:
            raise MarketDataUnavailable("browse", "no active listings")
        return listings
