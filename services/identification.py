"""
Product Identification Service

Sends item photos to a vision model and returns a structured identification
with the model's own three-tier price estimate.

The queue only depends on the `Identifier` protocol; `ClaudeIdentifier` is the
production implementation backed by the Anthropic async client.
"""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Protocol, Sequence

import anthropic

from config import MODEL_IDENTIFY, IDENTIFY_MAX_TOKENS, IDENTIFY_TIMEOUT
from services.exceptions import IdentificationFailedError, QuotaExhaustedError, TransientNetworkError
from services.response_wrapper import (
    sanitize_json_response,
    parse_price,
    optional_text,
    text_list,
)

logger = logging.getLogger(__name__)


@dataclass
class IdentificationResult:
    """What the vision model says the item is and what it is worth"""
    name: str
    brand: str
    category: str
    condition: str
    quick_price: float
    market_price: float
    premium_price: float
    title: str
    description: str
    confidence: float = 0.6
    size: Optional[str] = None
    colorway: Optional[str] = None
    model: Optional[str] = None
    style_code: Optional[str] = None
    release_year: Optional[str] = None
    demand_level: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    sourcing_tips: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Identifier(Protocol):
    async def identify(self, photos: Sequence[bytes]) -> IdentificationResult:
        ...


IDENTIFY_PROMPT = """You are an expert product analyst and reseller. Analyze these photos like a
professional reseller evaluating an item to flip.

IDENTIFICATION:
1. Look at every detail - tags, labels, serial numbers, colorways
2. Identify the EXACT model, not just the brand
3. Assess condition with reseller precision
4. Note size, style code and release year if visible

PRICING - three price points in USD:
- quick_sale_price: sells within 3-7 days
- market_price: fair value for a normal 2-4 week sale
- patient_sale_price: wait for the right buyer (2-3+ months)

RESPOND IN VALID JSON ONLY:
{
    "exact_product_name": "Full specific name",
    "brand": "Brand name",
    "category": "Sneakers|Shoes|Clothing|Electronics|Smartphones|Accessories|Home|Collectibles|Books|Toys|Sports|Other",
    "condition_assessment": "New with tags|New without tags|Used - Excellent|Used - Good|Used - Fair",
    "size": "Size if visible, else null",
    "colorway": "Colorway if relevant, else null",
    "model_number": "Model number if visible, else null",
    "style_code": "Style/SKU code if visible, else null",
    "year_released": "Release year if known, else null",
    "hype_status": "Dead|Low|Medium|High|Extreme",
    "quick_sale_price": 45.00,
    "market_price": 65.00,
    "patient_sale_price": 95.00,
    "authenticity_confidence": "High|Medium|Low",
    "listing_title": "SEO-optimized eBay title, max 80 chars",
    "listing_description": "Professional description highlighting key value drivers",
    "keywords": ["keyword1", "keyword2"],
    "sourcing_advice": "Maximum buy price and where to find similar items"
}"""

CONFIDENCE_SCORES = {
    "high": 0.9,
    "medium": 0.7,
    "low": 0.4,
}


def _confidence_score(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        score = float(value)
        return score / 100 if score > 1 else score
    text = str(value or "").strip().lower()
    for label, score in CONFIDENCE_SCORES.items():
        if text.startswith(label):
            return score
    return 0.6


# Provider wording for an account that has run out of prepaid credit
BILLING_EXHAUSTED_MARKERS = ("credit balance is too low", "billing")


def _is_billing_exhausted(error: anthropic.APIStatusError) -> bool:
    if error.status_code not in (400, 402, 403):
        return False
    message = str(error.message or "").lower()
    return any(marker in message for marker in BILLING_EXHAUSTED_MARKERS)


def _media_type(photo: bytes) -> str:
    if photo.startswith(b"\x89PNG"):
        return "image/png"
    if photo[:4] == b"RIFF" and photo[8:12] == b"WEBP":
        return "image/webp"
    if photo[:3] == b"GIF":
        return "image/gif"
    return "image/jpeg"


def build_image_blocks(photos: Sequence[bytes]) -> List[Dict[str, Any]]:
    """Claude base64 image content blocks, one per photo"""
    return [
        {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": _media_type(photo),
                "data": base64.b64encode(photo).decode("ascii"),
            },
        }
        for photo in photos
    ]


def parse_identification(data: Dict[str, Any]) -> IdentificationResult:
    """
    Convert the model's JSON into an IdentificationResult.

    Raises IdentificationFailedError (billable - the model did answer) when
    the answer has no product name or no usable prices.
    """
    name = optional_text(data.get("exact_product_name"))
    if not name:
        raise IdentificationFailedError("AI response did not identify a product", billable=True)

    quick = parse_price(data.get("quick_sale_price"))
    market = parse_price(data.get("market_price"))
    premium = parse_price(data.get("patient_sale_price"))
    if market is None or market <= 0:
        raise IdentificationFailedError("AI response had no market price", billable=True)
    if quick is None or quick <= 0:
        quick = market
    if premium is None or premium <= 0:
        premium = market

    sourcing = text_list(data.get("sourcing_advice"))

    return IdentificationResult(
        name=name,
        brand=optional_text(data.get("brand")) or "",
        category=optional_text(data.get("category")) or "Other",
        condition=optional_text(data.get("condition_assessment")) or "Used",
        quick_price=quick,
        market_price=market,
        premium_price=premium,
        title=(optional_text(data.get("listing_title")) or name)[:80],
        description=optional_text(data.get("listing_description")) or "",
        confidence=_confidence_score(data.get("authenticity_confidence")),
        size=optional_text(data.get("size")),
        colorway=optional_text(data.get("colorway")),
        model=optional_text(data.get("model_number")),
        style_code=optional_text(data.get("style_code")),
        release_year=optional_text(data.get("year_released")),
        demand_level=optional_text(data.get("hype_status")),
        keywords=text_list(data.get("keywords"))[:8],
        sourcing_tips=sourcing,
    )


class ClaudeIdentifier:
    """
    Identification backed by Claude vision.

    Usage:
        identifier = ClaudeIdentifier(create_anthropic_client(api_key))
        estimate = await identifier.identify([jpeg_bytes])
    """

    def __init__(
        self,
        client: Any,
        model: str = MODEL_IDENTIFY,
        max_tokens: int = IDENTIFY_MAX_TOKENS,
        timeout: float = IDENTIFY_TIMEOUT,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def identify(self, photos: Sequence[bytes]) -> IdentificationResult:
        if not photos:
            raise IdentificationFailedError("No photos provided")

        content: List[Dict[str, Any]] = [{"type": "text", "text": IDENTIFY_PROMPT}]
        content.extend(build_image_blocks(photos))

        logger.info(f"[IDENTIFY] Sending {len(photos)} photos to {self.model}")

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[{"role": "user", "content": content}],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(
                "anthropic", f"Identification timed out after {self.timeout:.0f}s", cause=e
            )
        except (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
            raise TransientNetworkError("anthropic", f"Identification request failed: {e}", cause=e)
        except anthropic.APIStatusError as e:
            if _is_billing_exhausted(e):
                logger.error(f"[IDENTIFY] Provider credit exhausted: {e.message}")
                raise QuotaExhaustedError()
            raise IdentificationFailedError(
                f"Identification rejected by provider ({e.status_code})", cause=e
            )

        if not response.content:
            raise IdentificationFailedError("AI returned an empty response", billable=True)

        raw_response = response.content[0].text.strip()
        try:
            data = json.loads(sanitize_json_response(raw_response))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"[IDENTIFY] Could not parse AI response: {raw_response[:200]}")
            raise IdentificationFailedError("Could not parse AI response", billable=True, cause=e)

        if not isinstance(data, dict):
            raise IdentificationFailedError("AI response was not a JSON object", billable=True)

        result = parse_identification(data)
        logger.info(
            f"[IDENTIFY] {result.name[:50]} | ${result.quick_price:.2f} / "
            f"${result.market_price:.2f} / ${result.premium_price:.2f}"
        )
        return result
