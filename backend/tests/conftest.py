"""Shared test fixtures for backend tests."""

import copy
import json
import random
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from portalsim.api.deps import get_generation_manager, get_sink
from portalsim.main import app
from portalsim.services.generation_manager import GenerationManager
from portalsim.services.persistence import InMemorySink

SCENARIO_DIR = Path(__file__).resolve().parent.parent / "scenarios"


def _build_document(
    *,
    scenario_id: str = "scenario-unit",
    total_claims: int = 600,
    curve: str = "steep_improvement",
    baseline_rate: float = 30,
    current_rate: float = 5,
    procedure_codes: list[str] | None = None,
    seeded_total: int = 0,
    policies: list[dict] | None = None,
    target_metrics: dict | None = None,
) -> dict:
    """A six-month, single-pattern scenario over January-June 2025."""
    document = {
        "id": scenario_id,
        "name": f"Unit scenario {scenario_id}",
        "timeline": {"startDate": "2025-01-01", "endDate": "2025-06-30"},
        "practice": {
            "id": "practice-unit",
            "name": "Unit Test Clinic",
            "taxId": "98-7654321",
            "providers": [
                {"id": "prov-a", "name": "Dr. A", "npi": "1112223334", "specialty": "Family Medicine", "claimWeight": 2},
                {"id": "prov-b", "name": "Dr. B", "npi": "5556667778", "specialty": "Internal Medicine", "claimWeight": 1},
            ],
        },
        "volume": {
            "totalClaims": total_claims,
            "claimLinesPerClaim": {"min": 1, "max": 3},
            "claimValueRanges": {
                "low": {"min": 75, "max": 250},
                "medium": {"min": 250, "max": 1500},
                "high": {"min": 1500, "max": 5000},
            },
        },
        "patterns": [
            {
                "id": "MOD25-MISSING",
                "title": "Missing Modifier 25",
                "category": "modifier-missing",
                "tier": "high",
                "procedureCodes": procedure_codes or [],
                "policies": policies if policies is not None else [{"id": "POL-MOD-25", "triggerRate": 0.9}],
                "denialReason": "Modifier 25 required for E/M service on same day as procedure",
                "claimDistribution": {"total": seeded_total},
                "trajectory": {
                    "curve": curve,
                    "baseline": {"periodStart": "2025-01-01", "periodEnd": "2025-02-28", "denialRate": baseline_rate},
                    "current": {"periodStart": "2025-05-01", "periodEnd": "2025-06-30", "denialRate": current_rate},
                },
                "engagement": {
                    "firstViewedDate": "2025-01-10",
                    "totalViews": 5,
                    "claimLabTests": 2,
                    "claimsExported": 1,
                    "actionsRecorded": [
                        {"id": "act-1", "date": "2025-02-15", "type": "staff-training", "notes": "Modifier training"},
                    ],
                },
            },
        ],
        "learningEvents": {
            "eventDistribution": {"claim_inspected": 10, "policy_learned": 4},
            "eventClustering": {"MOD25-MISSING": ["2025-02-15"]},
        },
    }
    if target_metrics is not None:
        document["targetMetrics"] = target_metrics
    return document


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20250101)


@pytest.fixture
def scenario_factory():
    """Build scenario documents; keyword arguments override the defaults."""
    return _build_document


@pytest.fixture
def minimal_document() -> dict:
    return json.loads((SCENARIO_DIR / "test-minimal.scenario.json").read_text(encoding="utf-8"))


@pytest.fixture
def invalid_document(minimal_document) -> dict:
    document = copy.deepcopy(minimal_document)
    document["id"] = "broken-scenario"
    document["timeline"]["endDate"] = "2025-06-01"
    document["patterns"][0]["policies"] = [{"id": "POL-DOES-NOT-EXIST", "triggerRate": 0.5}]
    return document


@pytest.fixture
def memory_sink() -> InMemorySink:
    return InMemorySink()


class FakeRedis:
    """Enough of redis.asyncio for the job queue: hashes and a list."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.down = False
        self.closed = 0

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def hset(self, key, mapping):
        self._check()
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    async def hgetall(self, key):
        self._check()
        return dict(self.hashes.get(key, {}))

    async def expire(self, key, seconds):
        return True

    async def lpush(self, key, value):
        self._check()
        self.lists.setdefault(key, []).insert(0, value)

    async def brpop(self, key, timeout=0):
        items = self.lists.get(key)
        if not items:
            return None
        return key, items.pop()

    async def aclose(self):
        self.closed += 1


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    from portalsim.services import job_queue

    fake = FakeRedis()

    async def _get_redis():
        return fake

    monkeypatch.setattr(job_queue, "get_redis", _get_redis)
    return fake


@pytest_asyncio.fixture
async def manager(memory_sink) -> AsyncGenerator[GenerationManager, None]:
    gm = GenerationManager(
        memory_sink,
        rng=random.Random(7),
        min_interval_seconds=0.01,
        max_consecutive_failures=3,
    )
    yield gm
    await gm.shutdown()


@pytest_asyncio.fixture
async def client(memory_sink, manager) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with in-memory persistence."""
    app.dependency_overrides[get_sink] = lambda: memory_sink
    app.dependency_overrides[get_generation_manager] = lambda: manager
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
