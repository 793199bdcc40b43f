"""Tests for the Redis job queue and the bulk import worker."""

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

import worker
from portalsim.services import job_queue, persistence
from portalsim.services.job_queue import QUEUE_KEY
from portalsim.services.persistence import InMemorySink


@pytest.fixture
def sinks(monkeypatch):
    """Replace the SQL sink the worker builds with in-memory sinks."""
    created: list[InMemorySink] = []

    def _factory(session_maker):
        sink = InMemorySink()
        created.append(sink)
        return sink

    monkeypatch.setattr(persistence, "SqlAlchemySink", _factory)
    return created


async def _enqueue_and_pop(fake_redis, scenarios, **kwargs) -> dict:
    job_id = await job_queue.enqueue_bulk_import_job(scenarios, **kwargs)
    _, raw = await fake_redis.brpop(QUEUE_KEY, timeout=1)
    payload = json.loads(raw)
    assert payload["job_id"] == job_id
    return payload


@pytest.mark.asyncio
class TestJobQueue:
    async def test_enqueue_creates_job_hash(self, fake_redis, scenario_factory):
        job_id = await job_queue.enqueue_bulk_import_job([scenario_factory()], continue_on_error=True)
        status = await job_queue.get_job_status(job_id)
        assert status["status"] == "queued"
        assert status["total"] == 1
        assert status["continue_on_error"] is True
        assert status["dry_run"] is False
        assert status["error"] is None
        assert status["scenarios"][0]["status"] == "pending"

    async def test_unknown_job(self, fake_redis):
        assert await job_queue.get_job_status("BJOB-NOPE") is None

    async def test_update_sets_timestamps(self, fake_redis, scenario_factory):
        job_id = await job_queue.enqueue_bulk_import_job([scenario_factory()])
        await job_queue.update_job_status(job_id, status="validating")
        assert (await job_queue.get_job_status(job_id))["started_at"]
        await job_queue.update_job_status(job_id, status="completed", progress=100, result={"runs": []})
        status = await job_queue.get_job_status(job_id)
        assert status["completed_at"]
        assert status["progress"] == 100
        assert status["result"] == {"runs": []}

    async def test_client_closed_after_every_call(self, fake_redis, scenario_factory):
        job_id = await job_queue.enqueue_bulk_import_job([scenario_factory()])
        await job_queue.update_job_status(job_id, status="validating")
        await job_queue.get_job_status(job_id)
        assert fake_redis.closed == 3

    async def test_client_closed_when_redis_is_down(self, fake_redis, scenario_factory):
        fake_redis.down = True
        with pytest.raises(RedisConnectionError):
            await job_queue.enqueue_bulk_import_job([scenario_factory()])
        with pytest.raises(RedisConnectionError):
            await job_queue.get_job_status("BJOB-ANY")
        with pytest.raises(RedisConnectionError):
            await job_queue.update_job_status("BJOB-ANY", progress=50)
        assert fake_redis.closed == 3

    async def test_empty_update_skips_redis(self, fake_redis):
        await job_queue.update_job_status("BJOB-ANY")
        assert fake_redis.closed == 0


@pytest.mark.asyncio
class TestProcessBulkImportJob:
    async def test_all_scenarios_succeed(self, fake_redis, sinks, scenario_factory):
        scenarios = [scenario_factory(scenario_id="one", total_claims=60), scenario_factory(scenario_id="two", total_claims=60)]
        payload = await _enqueue_and_pop(fake_redis, scenarios)

        await worker.process_bulk_import_job(payload, SessionMaker=None)

        status = await job_queue.get_job_status(payload["job_id"])
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["succeeded"] == 2
        assert status["failed"] == 0
        assert [s["status"] for s in status["scenarios"]] == ["succeeded", "succeeded"]
        assert [r["scenario_id"] for r in status["result"]["runs"]] == ["one", "two"]
        assert len(sinks[0].claims) == 120

    async def test_invalid_scenario_rejects_whole_job(self, fake_redis, sinks, scenario_factory, invalid_document):
        scenarios = [scenario_factory(scenario_id="one"), invalid_document, scenario_factory(scenario_id="three")]
        payload = await _enqueue_and_pop(fake_redis, scenarios)

        await worker.process_bulk_import_job(payload, SessionMaker=None)

        status = await job_queue.get_job_status(payload["job_id"])
        assert status["status"] == "failed"
        assert status["failed"] == 1
        assert status["skipped"] == 2
        assert status["error"] == "1 scenario(s) failed validation"
        assert [s["status"] for s in status["scenarios"]] == ["skipped", "failed", "skipped"]
        assert sinks[0].claims == {}

    async def test_continue_on_error(self, fake_redis, sinks, scenario_factory, invalid_document):
        scenarios = [scenario_factory(scenario_id="one", total_claims=60), invalid_document, scenario_factory(scenario_id="three", total_claims=60)]
        payload = await _enqueue_and_pop(fake_redis, scenarios, continue_on_error=True)

        await worker.process_bulk_import_job(payload, SessionMaker=None)

        status = await job_queue.get_job_status(payload["job_id"])
        assert status["status"] == "completed"
        assert status["succeeded"] == 2
        assert status["failed"] == 1
        assert [s["status"] for s in status["scenarios"]] == ["succeeded", "failed", "succeeded"]
        assert status["scenarios"][1]["error"].startswith("Validation failed")
        assert len(status["result"]["failures"]) == 1

    async def test_dry_run_writes_nothing(self, fake_redis, sinks, scenario_factory):
        payload = await _enqueue_and_pop(fake_redis, [scenario_factory(total_claims=60)], dry_run=True)

        await worker.process_bulk_import_job(payload, SessionMaker=None)

        status = await job_queue.get_job_status(payload["job_id"])
        assert status["status"] == "completed"
        assert sinks[0].claims == {}
        assert sinks[0].runs == []
