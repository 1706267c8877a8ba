"""
API tests using FastAPI's TestClient (routes/queue.py, routes/market.py).
"""

import base64
import time

import pytest
from fastapi.testclient import TestClient

from services.app_factory import create_app
from services.app_state import AppState
from services.queue_driver import STATUS_RATE_LIMITED, QueueDriver
from tests.conftest import FAST_CONFIG, PHOTO, FakeComparables, FakeQuota, make_market

PHOTO_B64 = base64.b64encode(PHOTO).decode("ascii")


@pytest.fixture
def build_client(store, pipeline):
    """Factory returning a TestClient over an app made of fakes."""
    clients = []

    def _build(quota=None, aggregator="default"):
        if aggregator == "default":
            aggregator = FakeComparables(make_market([10, 20, 30, 40]))
        quota = quota or FakeQuota()
        driver = QueueDriver(store.load_queue(), store, pipeline, quota, config=FAST_CONFIG)
        state = AppState(store=store, driver=driver, quota=quota, aggregator=aggregator)
        client = TestClient(create_app(state))
        client.__enter__()
        clients.append(client)
        return client

    yield _build
    for client in clients:
        client.__exit__(None, None, None)


def wait_for_queue(client, predicate, timeout: float = 5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        snapshot = client.get("/queue").json()
        if predicate(snapshot):
            return snapshot
        time.sleep(0.02)
    raise AssertionError(f"queue never reached expected state: {snapshot}")


@pytest.mark.integration
class TestQueueEndpoints:
    def test_add_and_process(self, build_client):
        client = build_client()

        response = client.post("/queue", json={"photos": [PHOTO_B64]})

        assert response.status_code == 201
        job_id = response.json()["job"]["id"]
        snapshot = wait_for_queue(client, lambda s: s["counts"]["completed"] == 1 and not s["is_running"])
        assert snapshot["status_message"] == "Queue complete: 1 analyzed, 0 failed"

        job = client.get(f"/queue/{job_id}").json()
        assert job["status"] == "completed"
        assert job["result"]["price_source"] == "market"

    def test_data_url_photos_accepted(self, build_client):
        client = build_client(quota=FakeQuota(limit=0))
        response = client.post("/queue", json={"photos": [f"data:image/jpeg;base64,{PHOTO_B64}"]})
        assert response.status_code == 201
        assert response.json()["job"]["photo_count"] == 1

    def test_invalid_base64_rejected(self, build_client):
        client = build_client()
        response = client.post("/queue", json={"photos": ["***not base64***"]})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_missing_photos_rejected(self, build_client):
        client = build_client()
        response = client.post("/queue", json={"images": []})
        assert response.status_code == 400

    @pytest.mark.parametrize("count", [0, 9])
    def test_photo_count_rejected(self, build_client, count):
        client = build_client()
        response = client.post("/queue", json={"photos": [PHOTO_B64] * count})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PHOTOS"

    def test_unknown_job_is_404(self, build_client):
        client = build_client()
        assert client.get("/queue/nope").status_code == 404
        assert client.delete("/queue/nope").status_code == 404
        assert client.post("/queue/nope/retry").status_code == 404

    def test_retry_of_pending_job_is_409(self, build_client):
        client = build_client(quota=FakeQuota(limit=0))
        job_id = client.post("/queue", json={"photos": [PHOTO_B64]}).json()["job"]["id"]

        response = client.post(f"/queue/{job_id}/retry")

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_remove_and_clear(self, build_client):
        client = build_client(quota=FakeQuota(limit=0))
        first = client.post("/queue", json={"photos": [PHOTO_B64]}).json()["job"]["id"]
        client.post("/queue", json={"photos": [PHOTO_B64]})

        assert client.delete(f"/queue/{first}").json() == {"removed": first}
        assert client.get("/queue").json()["counts"]["total"] == 1

        response = client.delete("/queue")
        assert response.json()["cleared"] == 1
        assert client.get("/queue").json()["jobs"] == []

    def test_start_refused_without_quota(self, build_client):
        client = build_client(quota=FakeQuota(limit=0))
        client.post("/queue", json={"photos": [PHOTO_B64]})

        response = client.post("/queue/start")

        assert response.json() == {"started": False, "status_message": STATUS_RATE_LIMITED}
        assert client.get("/queue").json()["rate_limit_hit"] is True

    def test_resume_after_quota_raised(self, build_client):
        quota = FakeQuota(limit=0)
        client = build_client(quota=quota)
        client.post("/queue", json={"photos": [PHOTO_B64]})
        client.post("/queue/start")

        quota.limit = 5
        response = client.post("/queue/resume")

        assert response.json()["started"] is True
        wait_for_queue(client, lambda s: s["counts"]["completed"] == 1 and not s["is_running"])

    def test_stop(self, build_client):
        client = build_client(quota=FakeQuota(limit=0))
        response = client.post("/queue/stop")
        assert response.json()["stopped"] is True

    def test_quota_endpoint(self, build_client):
        client = build_client(quota=FakeQuota(limit=7))
        assert client.get("/queue/quota").json()["monthly_limit"] == 7


@pytest.mark.integration
class TestMarketEndpoints:
    def test_comparables_with_tiers(self, build_client):
        client = build_client()

        response = client.get("/market/comparables", params={"q": "Nike Air Max", "category": "Sneakers"})

        assert response.status_code == 200
        data = response.json()
        assert data["query"] == "Nike Air Max"
        assert data["count"] == 4
        assert data["tiers"]["quick_sell"] == 17.5
        assert data["tiers"]["premium"] == 32.5

    def test_query_required(self, build_client):
        client = build_client()
        assert client.get("/market/comparables").status_code == 400

    def test_no_comparables_is_502(self, build_client):
        client = build_client(aggregator=FakeComparables(result=None))
        response = client.get("/market/comparables", params={"q": "mystery"})
        assert response.status_code == 502
        assert response.json()["error"] == "MARKET_DATA_UNAVAILABLE"

    def test_unconfigured_market_data_is_503(self, build_client):
        client = build_client(aggregator=None)
        assert client.get("/market/comparables", params={"q": "x"}).status_code == 503


@pytest.mark.integration
class TestHealth:
    def test_health(self, build_client):
        client = build_client(quota=FakeQuota(limit=3))
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["quota"]["monthly_limit"] == 3
        assert data["is_running"] is False
