"""
Tests for eBay market data (services/market_data.py, services/ebay_auth.py).

All HTTP traffic goes through httpx.MockTransport.
"""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest

from config import EBAY_BROWSE_URL, EBAY_INSIGHTS_URL, EBAY_OAUTH_URL
from services.ebay_auth import EbayAppToken
from services.exceptions import EbayAPIError, MissingAPIKeyError
from services.market_data import MarketDataAggregator

INSIGHTS_PATH = httpx.URL(EBAY_INSIGHTS_URL).path
BROWSE_PATH = httpx.URL(EBAY_BROWSE_URL).path
OAUTH_PATH = httpx.URL(EBAY_OAUTH_URL).path


def sold_item(title, price, condition="Used", date="2024-05-01T12:00:00.000Z"):
    return {
        "title": title,
        "lastSoldPrice": {"value": str(price), "currency": "USD"},
        "lastSoldDate": date,
        "condition": condition,
    }


def active_item(title, price, condition="Used"):
    return {"title": title, "price": {"value": str(price), "currency": "USD"}, "condition": condition}


class EbayStub:
    """Routes requests to canned responses and records what was asked."""

    def __init__(self, insights=None, browse=None, token_status=200, token_response=None):
        self.insights = insights if insights is not None else httpx.Response(200, json={"itemSales": []})
        self.browse = browse if browse is not None else httpx.Response(200, json={"itemSummaries": []})
        self.token_status = token_status
        self.token_response = token_response
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == OAUTH_PATH:
            if self.token_response is not None:
                return self.token_response
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="denied")
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": 7200})
        if request.url.path == INSIGHTS_PATH:
            return self.insights(request) if callable(self.insights) else self.insights
        if request.url.path == BROWSE_PATH:
            return self.browse(request) if callable(self.browse) else self.browse
        return httpx.Response(404)

    @property
    def token_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path == OAUTH_PATH)

    def calls_to(self, path: str):
        return [r for r in self.requests if r.url.path == path]


def make_aggregator(stub: EbayStub, app_id="app", cert_id="cert"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    token = EbayAppToken(client, app_id=app_id, cert_id=cert_id)
    return MarketDataAggregator(client, token, active_discount=0.85, limit=50), token


@pytest.mark.unit
class TestSoldComparables:
    async def test_returns_sold_listings(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [
            sold_item("Air Max 90 A", 80),
            sold_item("Air Max 90 B", 100),
        ]}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("Nike Air Max 90", category="Sneakers")

        assert result is not None
        assert result.is_estimate is False
        assert result.prices == [80.0, 100.0]
        assert result.sold_listings[0].sold_date == datetime.fromisoformat("2024-05-01T12:00:00+00:00")
        assert stub.calls_to(BROWSE_PATH) == []

    async def test_request_parameters(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [sold_item("x", 10)]}))
        aggregator, _ = make_aggregator(stub)

        await aggregator.fetch_comparables("Nike Air Max 90", category="Sneakers")

        request = stub.calls_to(INSIGHTS_PATH)[0]
        assert request.url.params["q"] == "Nike Air Max 90"
        assert request.url.params["limit"] == "50"
        assert request.url.params["category_ids"] == "15709"
        assert request.url.params["filter"] == "marketplaceIds:{EBAY_US}"
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.headers["X-EBAY-C-MARKETPLACE-ID"] == "EBAY_US"

    async def test_unmapped_category_sends_no_category(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [sold_item("x", 10)]}))
        aggregator, _ = make_aggregator(stub)

        await aggregator.fetch_comparables("thing", category="Spaceships")

        assert "category_ids" not in stub.calls_to(INSIGHTS_PATH)[0].url.params

    async def test_condition_filter_is_case_insensitive(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [
            sold_item("new pair", 120, condition="NEW with box"),
            sold_item("used pair", 60, condition="Pre-owned"),
        ]}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("Air Max", condition="New")

        assert [l.title for l in result.sold_listings] == ["new pair"]

    async def test_skips_items_without_price(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [
            {"title": "no price"},
            sold_item("priced", 42),
        ]}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing")

        assert result.prices == [42.0]


@pytest.mark.unit
class TestActiveFallback:
    async def test_forbidden_insights_falls_back_with_discount(self):
        stub = EbayStub(
            insights=httpx.Response(403, json={"errors": []}),
            browse=httpx.Response(200, json={"itemSummaries": [active_item("a", 100), active_item("b", 200)]}),
        )
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing")

        assert result.is_estimate is True
        assert result.prices == [pytest.approx(85.0), pytest.approx(170.0)]
        assert all(l.sold_date is None for l in result.sold_listings)
        assert aggregator.stats["estimate_hits"] == 1

    async def test_empty_sold_results_fall_back(self):
        stub = EbayStub(browse=httpx.Response(200, json={"itemSummaries": [active_item("a", 100)]}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing")

        assert result.is_estimate is True
        assert len(stub.calls_to(BROWSE_PATH)) == 1

    async def test_condition_filter_applies_to_active(self):
        stub = EbayStub(browse=httpx.Response(200, json={"itemSummaries": [
            active_item("a", 100, condition="New"),
            active_item("b", 50, condition="Used"),
        ]}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing", condition="new")

        assert [l.title for l in result.sold_listings] == ["a"]

    async def test_network_error_falls_back(self):
        def broken(request):
            raise httpx.ConnectError("boom", request=request)

        stub = EbayStub(
            insights=broken,
            browse=httpx.Response(200, json={"itemSummaries": [active_item("a", 100)]}),
        )
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing")

        assert result is not None and result.is_estimate is True


@pytest.mark.unit
class TestUnavailable:
    async def test_both_sources_empty_returns_none(self):
        aggregator, _ = make_aggregator(EbayStub())
        assert await aggregator.fetch_comparables("thing") is None
        assert aggregator.stats["unavailable"] == 1

    async def test_both_sources_failing_returns_none(self):
        stub = EbayStub(insights=httpx.Response(500), browse=httpx.Response(503))
        aggregator, _ = make_aggregator(stub)
        assert await aggregator.fetch_comparables("thing") is None

    async def test_invalid_json_returns_none(self):
        stub = EbayStub(insights=httpx.Response(200, text="not json"), browse=httpx.Response(200, text="<html>"))
        aggregator, _ = make_aggregator(stub)
        assert await aggregator.fetch_comparables("thing") is None

    async def test_missing_keyset_returns_none_without_requests(self):
        stub = EbayStub()
        aggregator, _ = make_aggregator(stub, app_id=None, cert_id=None)

        assert await aggregator.fetch_comparables("thing") is None
        assert stub.requests == []

    async def test_token_failure_returns_none(self):
        stub = EbayStub(token_status=401)
        aggregator, _ = make_aggregator(stub)

        assert await aggregator.fetch_comparables("thing") is None
        assert stub.calls_to(INSIGHTS_PATH) == []

    async def test_non_json_token_response_returns_none(self):
        stub = EbayStub(token_response=httpx.Response(200, text="<html>maintenance</html>"))
        aggregator, _ = make_aggregator(stub)

        assert await aggregator.fetch_comparables("thing") is None
        assert stub.calls_to(INSIGHTS_PATH) == []

    async def test_non_object_payloads_return_none(self):
        stub = EbayStub(insights=httpx.Response(200, json=[]), browse=httpx.Response(200, json="nope"))
        aggregator, _ = make_aggregator(stub)

        assert await aggregator.fetch_comparables("thing") is None
        assert aggregator.stats["unavailable"] == 1

    async def test_malformed_items_are_skipped(self):
        items = ["junk", {"title": "Odd price", "lastSoldPrice": "12.00"}, sold_item("Good", 40)]
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": items}))
        aggregator, _ = make_aggregator(stub)

        result = await aggregator.fetch_comparables("thing")

        assert result is not None
        assert result.prices == [40.0]


@pytest.mark.unit
class TestAppToken:
    async def test_token_is_cached(self):
        stub = EbayStub(insights=httpx.Response(200, json={"itemSales": [sold_item("x", 10)]}))
        aggregator, token = make_aggregator(stub)

        await aggregator.fetch_comparables("one")
        await aggregator.fetch_comparables("two")

        assert stub.token_calls == 1
        assert token.refresh_count == 1

    async def test_token_request_uses_basic_auth(self):
        stub = EbayStub()
        client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
        token = EbayAppToken(client, app_id="app", cert_id="cert")

        assert await token.get_token() == "token-1"

        request = stub.calls_to(OAUTH_PATH)[0]
        assert request.headers["Authorization"] == "Basic YXBwOmNlcnQ="
        assert b"grant_type=client_credentials" in request.content

    async def test_concurrent_callers_share_one_refresh(self):
        stub = EbayStub()
        client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
        token = EbayAppToken(client, app_id="app", cert_id="cert")

        tokens = await asyncio.gather(*(token.get_token() for _ in range(5)))

        assert set(tokens) == {"token-1"}
        assert stub.token_calls == 1

    async def test_expired_token_is_refreshed(self):
        now = [datetime(2024, 1, 1, 12, 0, 0)]
        stub = EbayStub()
        client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
        token = EbayAppToken(client, app_id="app", cert_id="cert", clock=lambda: now[0])

        assert await token.get_token() == "token-1"
        # 7200s lifetime minus the 300s safety buffer
        now[0] += timedelta(seconds=6899)
        assert await token.get_token() == "token-1"
        now[0] += timedelta(seconds=2)
        assert await token.get_token() == "token-2"

    async def test_unauthorized_data_call_invalidates_token(self):
        stub = EbayStub(insights=httpx.Response(401), browse=httpx.Response(401))
        aggregator, token = make_aggregator(stub)

        assert await aggregator.fetch_comparables("thing") is None
        assert token._cached() is None

        await aggregator.fetch_comparables("again")
        assert stub.token_calls == 2

    async def test_missing_keyset_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(EbayStub()))
        with pytest.raises(MissingAPIKeyError):
            await EbayAppToken(client, app_id=None, cert_id=None).get_token()

    async def test_rejected_token_request_raises(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(EbayStub(token_status=500)))
        with pytest.raises(EbayAPIError):
            await EbayAppToken(client, app_id="app", cert_id="cert").get_token()

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json=["token"]),
            httpx.Response(200, json={"access_token": "t", "expires_in": "soon"}),
        ],
    )
    async def test_malformed_token_response_raises(self, response):
        client = httpx.AsyncClient(transport=httpx.MockTransport(EbayStub(token_response=response)))
        with pytest.raises(EbayAPIError):
            await EbayAppToken(client, app_id="app", cert_id="cert").get_token()
