"""Tests for the scenario pipeline: planning, injection, persistence and summaries."""

import random

import pytest

from portalsim.services.persistence import InMemorySink
from portalsim.services.scenario_pipeline import PipelineState, ScenarioPipeline

MONTHS = ["2025-01", "2025-02", "2025-03", "2025-04", "2025-05", "2025-06"]


@pytest.mark.asyncio
class TestPipelineRun:
    async def test_minimal_scenario_dry_run(self, minimal_document, memory_sink):
        pipeline = ScenarioPipeline(memory_sink, rng=random.Random(1))
        result = await pipeline.run(minimal_document, dry_run=True)

        assert result.success, result.error
        assert result.state == PipelineState.COMPLETED
        summary = result.summary
        assert summary.total_claims == 500
        assert sum(summary.month_claim_counts.values()) == 500
        assert len(result.months_completed) == 6
        assert set(summary.patterns) == {"MOD25-MISSING", "AUTH-MISSING"}
        # Orthopedic and sports providers never bill E/M codes, so only seeded claims match
        assert summary.patterns["MOD25-MISSING"].population == 150
        assert summary.total_events > 0
        # Dry runs leave the sink untouched
        assert memory_sink.claims == {}
        assert memory_sink.runs == []

    async def test_declared_monthly_rates_override_curve(self, minimal_document):
        result = await ScenarioPipeline(rng=random.Random(2)).run(minimal_document, dry_run=True)
        by_month = result.summary.patterns["MOD25-MISSING"].by_month
        assert [by_month[m]["target_rate"] for m in sorted(by_month)] == [32, 28, 20, 15, 12, 8]

    async def test_month_counts_do_not_depend_on_seed(self, scenario_factory):
        document = scenario_factory(total_claims=1000)
        document["volume"]["monthlyVariation"] = {"2025-02": 1.3, "2025-06": 0.6}
        first = await ScenarioPipeline(rng=random.Random(1)).run(document, dry_run=True)
        second = await ScenarioPipeline(rng=random.Random(99)).run(document, dry_run=True)
        assert first.summary.month_claim_counts == second.summary.month_claim_counts
        assert sum(first.summary.month_claim_counts.values()) == 1000

    async def test_same_seed_same_summary(self, scenario_factory):
        document = scenario_factory()
        first = await ScenarioPipeline(rng=random.Random(5)).run(document, dry_run=True)
        second = await ScenarioPipeline(rng=random.Random(5)).run(document, dry_run=True)
        assert first.summary.to_dict() == second.summary.to_dict()

    async def test_steep_curve_converges(self, scenario_factory):
        document = scenario_factory(total_claims=3000)
        result = await ScenarioPipeline(rng=random.Random(11), noise_pct=3).run(document, dry_run=True)
        by_month = result.summary.patterns["MOD25-MISSING"].by_month

        assert list(by_month) == MONTHS
        for month in MONTHS:
            assert by_month[month]["population"] == 500
            assert abs(by_month[month]["realized_rate"] - by_month[month]["target_rate"]) <= 0.11
        assert abs(by_month["2025-01"]["realized_rate"] - 30) <= 1.1
        assert abs(by_month["2025-06"]["realized_rate"] - 5) <= 1.1
        assert by_month["2025-03"]["realized_rate"] < 15

    async def test_persists_every_month(self, scenario_factory, memory_sink):
        result = await ScenarioPipeline(memory_sink, rng=random.Random(3)).run(scenario_factory())

        assert result.success
        assert len(memory_sink.claims) == 600
        assert memory_sink.batches_written == 6
        assert len(memory_sink.snapshots) == 6
        assert result.summary.persisted["claims"] == 600
        assert result.summary.persisted["appeals"] == len(memory_sink.appeals)
        assert memory_sink.runs == [result]
        assert all(cid.startswith("CLM-UNIT-") for cid in memory_sink.claims)

    async def test_appeals_reference_denied_claims(self, scenario_factory, memory_sink):
        await ScenarioPipeline(memory_sink, rng=random.Random(4)).run(scenario_factory())
        assert memory_sink.appeals
        for appeal in memory_sink.appeals:
            assert memory_sink.claims[appeal.claim_id].is_denied

    async def test_invalid_scenario_fails_before_generation(self, invalid_document, memory_sink):
        result = await ScenarioPipeline(memory_sink).run(invalid_document)

        assert result.state == PipelineState.FAILED
        assert result.error.startswith("Validation failed with")
        assert result.summary is None
        assert result.months_completed == []
        assert memory_sink.claims == {}
        # The failed run is still recorded
        assert memory_sink.runs == [result]

    async def test_non_object_document_fails_without_raising(self, memory_sink):
        result = await ScenarioPipeline(memory_sink).run("not-a-scenario")

        assert result.state == PipelineState.FAILED
        assert result.scenario_id is None
        assert result.error == "Validation failed with 1 error(s)"
        assert memory_sink.runs == [result]

    async def test_synthesis_error_fails_run(self, scenario_factory, memory_sink):
        pipeline = ScenarioPipeline(memory_sink, rng=random.Random(6), code_map={})
        result = await pipeline.run(scenario_factory())

        assert result.state == PipelineState.FAILED
        assert result.error.startswith("Synthesis failed:")
        assert memory_sink.claims == {}

    async def test_failed_month_keeps_earlier_months(self, scenario_factory):
        sink = InMemorySink(fail_after=2)
        result = await ScenarioPipeline(sink, rng=random.Random(8)).run(scenario_factory())

        assert result.state == PipelineState.FAILED
        assert "Persistence unavailable" in result.error
        assert result.months_completed == MONTHS[:2]
        expected = sum(result.summary.month_claim_counts[m] for m in MONTHS[:2])
        assert len(sink.claims) == expected

    async def test_shortfall_is_a_warning(self, scenario_factory):
        # Only seeded claims carry 99213 and the critical pattern takes half of them first
        document = scenario_factory(
            procedure_codes=["99213"], seeded_total=60,
            curve="flat", baseline_rate=100, current_rate=100,
        )
        document["practice"]["providers"] = [
            {"id": "prov-c", "name": "Dr. C", "npi": "9990001112", "specialty": "Cardiology"},
        ]
        document["patterns"].append({
            "id": "AUTH-MISSING",
            "title": "Missing Prior Authorization",
            "category": "authorization",
            "tier": "critical",
            "procedureCodes": ["99213"],
            "denialReason": "Prior authorization required but not obtained",
            "trajectory": {
                "curve": "flat",
                "baseline": {"periodStart": "2025-01-01", "periodEnd": "2025-02-28", "denialRate": 50},
                "current": {"periodStart": "2025-05-01", "periodEnd": "2025-06-30", "denialRate": 50},
            },
        })
        result = await ScenarioPipeline(rng=random.Random(9), noise_pct=0).run(document, dry_run=True)

        assert result.success
        stats = result.summary.patterns["MOD25-MISSING"]
        assert stats.shortfall_months
        assert stats.denied < stats.target_denied
        assert any(w.startswith("Pattern MOD25-MISSING short by") for w in result.warnings)

    async def test_seeded_claims_beyond_window_room_warn(self, scenario_factory):
        # Two-month window holds 200 claims, 300 are seeded into it
        document = scenario_factory(total_claims=600, seeded_total=300)
        trajectory = document["patterns"][0]["trajectory"]
        trajectory["baseline"].update(periodStart="2025-01-01", periodEnd="2025-01-31")
        trajectory["current"].update(periodStart="2025-02-01", periodEnd="2025-02-28")
        result = await ScenarioPipeline(rng=random.Random(12)).run(document, dry_run=True)

        assert result.success, result.error
        assert "Pattern MOD25-MISSING: 100 of 300 seeded claim(s) dropped, its window months are full" in result.warnings
        assert result.summary.total_claims == 600

    async def test_target_drift_is_reported(self, scenario_factory):
        document = scenario_factory(target_metrics={
            "totalClaims": 600,
            "totalDenied": 1,
            "overallDenialRate": 0.2,
            "totalDollarsDenied": 100,
            "totalAppeals": 0,
            "appealSuccessRate": 0,
        })
        result = await ScenarioPipeline(rng=random.Random(10)).run(document, dry_run=True)

        assert result.success
        comparison = {c["metric"]: c for c in result.summary.target_comparison}
        assert comparison["total_claims"]["within_tolerance"] is True
        assert comparison["total_denied"]["within_tolerance"] is False
        assert any(w.startswith("Drift on total_denied") for w in result.warnings)

    async def test_result_to_dict(self, scenario_factory):
        result = await ScenarioPipeline(rng=random.Random(12)).run(scenario_factory(), dry_run=True)
        data = result.to_dict()
        assert data["success"] is True
        assert data["state"] == "completed"
        assert data["run_id"].startswith("RUN-")
        assert data["summary"]["total_claims"] == 600
        assert data["validation"]["passed"] is True


class TestValidate:
    def test_validate_returns_report(self, invalid_document):
        scenario, report = ScenarioPipeline().validate(invalid_document)
        assert scenario is not None
        assert not report.passed
