"""
Market Statistics

Pure helpers that turn a set of observed sale prices into decision-ready
numbers: median, interpolated percentiles and the quick/market/premium tiers.

All functions expect a non-empty price list. Callers that may have no
comparables must check first and skip the call.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

import numpy as np

# Percentiles used for the outer price tiers
QUICK_SELL_PERCENTILE = 0.25
PREMIUM_PERCENTILE = 0.75


@dataclass(frozen=True)
class PriceTiers:
    """Three-point price recommendation derived from comparables"""
    quick_sell: float
    market: float
    premium: float
    sample_size: int
    is_estimate: bool = False

    def to_dict(self) -> Dict:
        return {
            "quick_sell": round(self.quick_sell, 2),
            "market": round(self.market, 2),
            "premium": round(self.premium, 2),
            "sample_size": self.sample_size,
            "is_estimate": self.is_estimate,
        }


def _price_array(prices: Iterable[float]) -> np.ndarray:
    values = np.asarray([float(p) for p in prices], dtype=float)
    if values.size == 0:
        raise ValueError("price statistics need at least one price")
    return values


def median(prices: Iterable[float]) -> float:
    """Middle value, or the mean of the two middle values for an even count"""
    return float(np.median(_price_array(prices)))


def percentile(prices: Iterable[float], p: float) -> float:
    """
    Linear-interpolation percentile, p in [0, 1].

    The rank (n - 1) * p falls between two sorted order statistics; the result
    is the weighted blend of those two. p=0 gives the minimum, p=1 the maximum.
    """
    if p < 0 or p > 1:
        raise ValueError(f"percentile must be between 0 and 1, got {p}")
    return float(np.percentile(_price_array(prices), p * 100))


def average(prices: Iterable[float]) -> float:
    return float(np.mean(_price_array(prices)))


def price_range(prices: Iterable[float]) -> Tuple[float, float]:
    """(lowest, highest) observed price"""
    values = _price_array(prices)
    return float(values.min()), float(values.max())


def price_tiers(prices: Iterable[float], is_estimate: bool = False) -> PriceTiers:
    """
    Quick sell = 25th percentile, market = median, premium = 75th percentile.

    With a single price all three tiers collapse onto it. The pricing engine's
    min/max blending keeps the AI's own tails in that case.
    """
    values = _price_array(prices)
    return PriceTiers(
        quick_sell=percentile(values, QUICK_SELL_PERCENTILE),
        market=median(values),
        premium=percentile(values, PREMIUM_PERCENTILE),
        sample_size=int(values.size),
        is_estimate=is_estimate,
    )
