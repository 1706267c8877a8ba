"""
Pytest fixtures and configuration for the test suite.

Mocking strategy:
- Real SQLite store in a temp directory
- Fake identifier / comparables / quota implementing the same protocols
- eBay HTTP traffic served by httpx.MockTransport
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

# Add project root to path so tests can import the top-level packages
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from config import QueueConfig  # noqa: E402
from pipeline.orchestrator import AnalysisPipeline  # noqa: E402
from services.exceptions import PersistenceError  # noqa: E402
from services.identification import IdentificationResult  # noqa: E402
from services.market_data import MarketDataResult, SoldListing  # noqa: E402
from services.processing_queue import JobStatus, ProcessingQueue  # noqa: E402
from services.queue_driver import QueueDriver  # noqa: E402
from services.queue_store import QueueStore  # noqa: E402

PHOTO = b"\xff\xd8\xff\xe0fake-jpeg"


def make_estimate(**overrides) -> IdentificationResult:
    """An identification result with sensible defaults."""
    fields = dict(
        name="Nike Air Max 90",
        brand="Nike",
        category="Sneakers",
        condition="Used - Good",
        quick_price=60.0,
        market_price=80.0,
        premium_price=110.0,
        title="Nike Air Max 90 Infrared Size 10",
        description="Classic runner in good shape.",
        confidence=0.9,
        colorway="Infrared",
        demand_level="High",
        keywords=["nike", "air max"],
        sourcing_tips=["Buy under $40"],
    )
    fields.update(overrides)
    return IdentificationResult(**fields)


def make_market(prices: Sequence[float], is_estimate: bool = False) -> MarketDataResult:
    return MarketDataResult(
        sold_listings=[SoldListing(title=f"Comp {i}", price=p, sold_date=None) for i, p in enumerate(prices)],
        is_estimate=is_estimate,
    )


class FakeIdentifier:
    """
    Identifier returning queued outcomes in order.

    Each outcome is an IdentificationResult, an exception instance to raise,
    or an awaitable factory (for tests that hold a call in flight).
    """

    def __init__(self, outcomes: Optional[List[Any]] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[Sequence[bytes]] = []

    async def identify(self, photos: Sequence[bytes]) -> IdentificationResult:
        self.calls.append(photos)
        outcome = self.outcomes.pop(0) if self.outcomes else make_estimate()
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeComparables:
    def __init__(self, result: Optional[MarketDataResult] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.stats = {"requests": 0}

    async def fetch_comparables(self, query, category=None, condition=None):
        self.calls.append({"query": query, "category": category, "condition": condition})
        self.stats["requests"] += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeQuota:
    """In-memory quota authority: allows `limit` recorded analyses."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self.broken = False
        self.recorded: List[Dict[str, Any]] = []

    @property
    def used(self) -> int:
        return len(self.recorded)

    def can_submit_analysis(self) -> bool:
        if self.broken:
            raise PersistenceError("count_usage")
        return self.used < self.limit

    def record_usage(self, kind: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.recorded.append({"kind": kind, **(metadata or {})})

    def get_status(self) -> Dict[str, Any]:
        return {"monthly_limit": self.limit, "used": self.used, "remaining": max(0, self.limit - self.used)}


class BrokenUsageLog:
    """Usage log whose database is unreachable."""

    def record_usage(self, kind, metadata, timestamp):
        raise PersistenceError("record_usage")

    def count_usage(self, kind, since):
        raise PersistenceError("count_usage")


class GatedPipeline:
    """Pipeline whose analyze() blocks until the test releases it."""

    def __init__(self, result_factory: Callable[[], Any]):
        self.result_factory = result_factory
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def analyze(self, photos):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        outcome = self.result_factory()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def assert_consistent(queue: ProcessingQueue) -> None:
    """At most one job is processing, and current_job_id points at it."""
    processing = queue.jobs_with_status(JobStatus.PROCESSING)
    assert len(processing) <= 1
    if processing:
        assert queue.current_job_id == processing[0].id
    else:
        assert queue.current_job_id is None


FAST_CONFIG = QueueConfig(advance_delay=0.0, progress_interval=0.05, identify_timeout=2.0, market_timeout=2.0)


@pytest.fixture
def temp_db(tmp_path) -> str:
    """Path to a fresh SQLite database file."""
    return str(tmp_path / "queue_test.db")


@pytest.fixture
def store(temp_db):
    store = QueueStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def fake_quota() -> FakeQuota:
    return FakeQuota()


@pytest.fixture
def fake_identifier() -> FakeIdentifier:
    return FakeIdentifier()


@pytest.fixture
def fake_comparables() -> FakeComparables:
    return FakeComparables(make_market([70.0, 80.0, 90.0, 100.0]))


@pytest.fixture
def pipeline(fake_identifier, fake_comparables) -> AnalysisPipeline:
    return AnalysisPipeline(fake_identifier, fake_comparables, identify_timeout=1.0, market_timeout=1.0)


@pytest.fixture
def make_driver(store, fake_quota, pipeline):
    """Factory for a driver over a fresh queue; override any collaborator."""

    def _make(pipeline_override=None, quota=None, queue=None, config=FAST_CONFIG) -> QueueDriver:
        return QueueDriver(
            queue if queue is not None else ProcessingQueue(),
            store,
            pipeline_override or pipeline,
            quota or fake_quota,
            config=config,
        )

    return _make
