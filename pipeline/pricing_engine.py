"""
Pricing Engine

Merges the AI's identification and price estimate with market comparables
into the final analysis.

Blending rules when comparables exist:
- quick   = min(market p25, AI quick)    market may only lower it
- market  = market median                real comps win at the center
- premium = max(market p75, AI premium)  market may only raise it

Everything else (confidence, demand, sourcing tips, keywords) comes from the AI.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.identification import IdentificationResult
from services.market_data import MarketDataResult
from utils import market_stats

logger = logging.getLogger(__name__)

PRICE_SOURCE_AI = "ai"
PRICE_SOURCE_MARKET = "market"

RECENT_SALES_LIMIT = 5


@dataclass
class AnalysisResult:
    """Final priced analysis stored on a completed job"""
    name: str
    brand: str
    category: str
    condition: str
    title: str
    description: str
    quick_price: float
    market_price: float
    premium_price: float
    confidence: float
    price_source: str = PRICE_SOURCE_AI
    sold_listings_count: Optional[int] = None
    is_estimate: bool = False
    average_price: Optional[float] = None
    demand_level: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    sourcing_tips: List[str] = field(default_factory=list)
    recent_sales: List[Dict[str, Any]] = field(default_factory=list)
    size: Optional[str] = None
    colorway: Optional[str] = None
    model: Optional[str] = None
    style_code: Optional[str] = None
    release_year: Optional[str] = None

    def to_dict(self, rounded: bool = True) -> Dict[str, Any]:
        """Prices are rounded to cents for display; pass rounded=False to store them exactly"""
        def price(value: Optional[float]) -> Optional[float]:
            if value is None or not rounded:
                return value
            return round(value, 2)

        return {
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "condition": self.condition,
            "title": self.title,
            "description": self.description,
            "quick_price": price(self.quick_price),
            "market_price": price(self.market_price),
            "premium_price": price(self.premium_price),
            "confidence": self.confidence,
            "price_source": self.price_source,
            "sold_listings_count": self.sold_listings_count,
            "is_estimate": self.is_estimate,
            "average_price": price(self.average_price),
            "demand_level": self.demand_level,
            "keywords": list(self.keywords),
            "sourcing_tips": list(self.sourcing_tips),
            "recent_sales": list(self.recent_sales),
            "size": self.size,
            "colorway": self.colorway,
            "model": self.model,
            "style_code": self.style_code,
            "release_year": self.release_year,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


def market_note(market_data: MarketDataResult) -> str:
    """
    The market-analysis line appended to the AI description.

    Sold data says "recent sales"; estimated data never does.
    """
    count = len(market_data.sold_listings)
    low, high = market_stats.price_range(market_data.prices)
    med = market_stats.median(market_data.prices)

    if market_data.is_estimate:
        basis = f"estimated from {count} active listings"
    else:
        basis = f"based on {count} recent sales"

    return f"Market analysis: {basis} | range ${low:.2f}-${high:.2f} | median ${med:.2f}"


def _ai_only(estimate: IdentificationResult) -> AnalysisResult:
    return AnalysisResult(
        name=estimate.name,
        brand=estimate.brand,
        category=estimate.category,
        condition=estimate.condition,
        title=estimate.title,
        description=estimate.description,
        quick_price=estimate.quick_price,
        market_price=estimate.market_price,
        premium_price=estimate.premium_price,
        confidence=estimate.confidence,
        price_source=PRICE_SOURCE_AI,
        demand_level=estimate.demand_level,
        keywords=list(estimate.keywords),
        sourcing_tips=list(estimate.sourcing_tips),
        size=estimate.size,
        colorway=estimate.colorway,
        model=estimate.model,
        style_code=estimate.style_code,
        release_year=estimate.release_year,
    )


def combine(
    estimate: IdentificationResult,
    market_data: Optional[MarketDataResult] = None,
) -> AnalysisResult:
    """Blend the AI estimate with comparables (see module docstring)"""
    result = _ai_only(estimate)

    if market_data is None or not market_data.sold_listings:
        logger.info(f"[PRICING] No comparables - using AI pricing for {estimate.name[:40]}")
        return result

    tiers = market_stats.price_tiers(market_data.prices, is_estimate=market_data.is_estimate)

    result.quick_price = min(tiers.quick_sell, estimate.quick_price)
    result.market_price = tiers.market
    result.premium_price = max(tiers.premium, estimate.premium_price)

    note = market_note(market_data)
    result.description = f"{estimate.description}\n\n{note}" if estimate.description else note

    result.price_source = PRICE_SOURCE_MARKET
    result.sold_listings_count = tiers.sample_size
    result.is_estimate = market_data.is_estimate
    result.average_price = market_data.average_price
    result.recent_sales = [listing.to_dict() for listing in market_data.sold_listings[:RECENT_SALES_LIMIT]]

    logger.info(
        f"[PRICING] {estimate.name[:40]}: ${result.quick_price:.2f} / ${result.market_price:.2f} / "
        f"${result.premium_price:.2f} from {tiers.sample_size} comps"
        f"{' (estimated)' if market_data.is_estimate else ''}"
    )
    return result


# ============================================================
# Search helpers
# ============================================================

def build_search_query(estimate: IdentificationResult) -> str:
    """Brand + product name + colorway, without repeating the brand"""
    parts = []
    name = estimate.name.strip()
    brand = (estimate.brand or "").strip()
    if brand and not name.lower().startswith(brand.lower()):
        parts.append(brand)
    parts.append(name)

    colorway = (estimate.colorway or "").strip()
    if colorway and "not visible" not in colorway.lower() and colorway.lower() not in name.lower():
        parts.append(colorway)

    return re.sub(r"\s+", " ", " ".join(parts)).strip()


def condition_filter_for(condition: Optional[str]) -> Optional[str]:
    """
    Marketplace condition filter for an AI condition assessment.

    Only new items are filtered; used-item wording varies too much between
    sellers, so None (no filter) is returned for everything else.
    """
    if condition and condition.strip().lower().startswith("new"):
        return "New"
    return None
