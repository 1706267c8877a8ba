"""
Market data endpoints.

- GET /market/comparables?q=...&category=...&condition=...
  Looks up eBay comparables for a free-text query and returns them with
  the derived price tiers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request

from services.app_state import get_app_state_from_request
from services.exceptions import ConfigurationError, MarketDataUnavailable, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["market"])


@router.get("/market/comparables")
async def market_comparables(
    request: Request,
    q: str = "",
    category: Optional[str] = None,
    condition: Optional[str] = None,
):
    """Comparable sales (or discounted active listings) for a query"""
    app_state = get_app_state_from_request(request)
    if app_state.aggregator is None:
        raise ConfigurationError("Market data is not configured")

    query = q.strip()
    if not query:
        raise ValidationError("Query 'q' is required", field="q")

    result = await app_state.aggregator.fetch_comparables(query, category=category, condition=condition)
    if result is None:
        raise MarketDataUnavailable("ebay", f"no comparables for '{query[:60]}'")

    data = result.to_dict()
    data["query"] = query
    data["tiers"] = result.price_tiers().to_dict()
    return data
