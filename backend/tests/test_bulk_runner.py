"""Tests for running several scenarios through one pipeline."""

import random

import pytest

from portalsim.services.bulk_runner import BulkPipelineRunner
from portalsim.services.scenario_pipeline import ScenarioPipeline


@pytest.fixture
def documents(scenario_factory, invalid_document):
    return [
        scenario_factory(scenario_id="scenario-first", total_claims=120),
        invalid_document,
        scenario_factory(scenario_id="scenario-third", total_claims=120),
    ]


@pytest.mark.asyncio
class TestBulkPipelineRunner:
    async def test_stops_at_first_failure(self, documents, memory_sink):
        runner = BulkPipelineRunner(ScenarioPipeline(memory_sink, rng=random.Random(1)))
        report = await runner.run(documents)

        assert [r.scenario_id for r in report.results] == ["scenario-first"]
        assert [f.scenario_id for f in report.failures] == ["broken-scenario"]
        assert report.failures[0].index == 1
        assert report.failures[0].validation_errors
        assert report.skipped == ["scenario-third"]
        assert report.aborted
        # The first scenario's claims stay persisted
        assert len(memory_sink.claims) == 120

    async def test_continue_on_error_runs_the_rest(self, documents, memory_sink):
        runner = BulkPipelineRunner(ScenarioPipeline(memory_sink, rng=random.Random(2)))
        report = await runner.run(documents, continue_on_error=True)

        assert [r.scenario_id for r in report.results] == ["scenario-first", "scenario-third"]
        assert len(report.failures) == 1
        assert report.skipped == []
        assert not report.aborted
        assert len(memory_sink.claims) == 240

    async def test_progress_callback(self, documents):
        seen = []

        async def on_progress(index, total, result):
            seen.append((index, total, result.success))

        runner = BulkPipelineRunner(ScenarioPipeline(rng=random.Random(3)))
        await runner.run(documents, dry_run=True, continue_on_error=True, on_progress=on_progress)
        assert seen == [(0, 3, True), (1, 3, False), (2, 3, True)]

    async def test_report_to_dict(self, documents):
        runner = BulkPipelineRunner(ScenarioPipeline(rng=random.Random(4)))
        data = (await runner.run(documents, dry_run=True)).to_dict()
        assert data["total"] == 3
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert data["skipped"] == ["scenario-third"]
        assert data["aborted"] is True

    async def test_non_object_entries_are_failures(self, scenario_factory):
        documents = ["not-a-scenario", scenario_factory(scenario_id="scenario-ok", total_claims=60), 7]
        runner = BulkPipelineRunner(ScenarioPipeline(rng=random.Random(5)))
        report = await runner.run(documents, dry_run=True, continue_on_error=True)

        assert [r.scenario_id for r in report.results] == ["scenario-ok"]
        assert [f.index for f in report.failures] == [0, 2]
        assert report.failures[0].validation_errors[0]["type"] == "schema"

    async def test_non_object_entry_aborts_without_continue(self, scenario_factory):
        documents = [["nested"], scenario_factory(scenario_id="scenario-later", total_claims=60)]
        report = await BulkPipelineRunner(ScenarioPipeline(rng=random.Random(6))).run(documents, dry_run=True)

        assert report.aborted
        assert report.skipped == ["scenario-later"]
