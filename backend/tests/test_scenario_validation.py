"""Tests for scenario parsing and validation."""

import copy
import json

import pytest

from portalsim.schemas.scenario import load_scenario_documents
from portalsim.seed.policy_library import PolicyResolver
from portalsim.services.scenario_validation import parse_scenario, validate_scenario


def _validate(document, policies=None):
    scenario, report = parse_scenario(document)
    if scenario is not None:
        validate_scenario(scenario, policies, report=report)
    return report


def _fields(issues):
    return {issue.field for issue in issues}


class TestParseScenario:
    def test_minimal_scenario_passes(self, minimal_document):
        report = _validate(minimal_document)
        assert report.passed, report.to_dict()
        assert report.scenario_id == "test-minimal"

    def test_missing_required_field_is_schema_error(self, scenario_factory):
        document = scenario_factory()
        del document["volume"]["totalClaims"]
        scenario, report = parse_scenario(document)
        assert scenario is None
        assert not report.passed
        assert report.errors[0].issue_type == "schema"
        assert "volume.totalClaims" in _fields(report.errors)

    def test_unknown_curve_is_schema_error(self, scenario_factory):
        report = _validate(scenario_factory(curve="exponential_decay"))
        assert not report.passed
        assert any("trajectory.curve" in f for f in _fields(report.errors))

    @pytest.mark.parametrize("document", ["not-a-scenario", 42, None, ["nested"]])
    def test_non_object_is_schema_error(self, document):
        scenario, report = parse_scenario(document)
        assert scenario is None
        assert report.scenario_id is None
        [issue] = report.errors
        assert issue.issue_type == "schema"
        assert issue.message.startswith("Scenario must be an object")


class TestValidateScenario:
    def test_collects_every_error(self, invalid_document):
        report = _validate(invalid_document)
        assert not report.passed
        types = {e.issue_type for e in report.errors}
        assert {"timeline", "referential"} <= types
        assert any("POL-DOES-NOT-EXIST" in e.message for e in report.errors)

    def test_policy_ids_checked_against_given_library(self, scenario_factory):
        report = _validate(scenario_factory(), policies=PolicyResolver(policies=[]))
        assert any(e.issue_type == "referential" for e in report.errors)

    def test_seeded_totals_cannot_exceed_volume(self, scenario_factory):
        report = _validate(scenario_factory(total_claims=100, seeded_total=150))
        assert "patterns.claimDistribution.total" in _fields(report.errors)

    def test_rates_out_of_range(self, scenario_factory):
        report = _validate(scenario_factory(baseline_rate=120))
        assert "patterns.0.trajectory.baseline.denialRate" in _fields(report.errors)

    def test_inverted_ranges(self, scenario_factory):
        document = scenario_factory()
        document["volume"]["claimLinesPerClaim"] = {"min": 4, "max": 2}
        document["volume"]["claimValueRanges"]["high"] = {"min": 5000, "max": 1500}
        report = _validate(document)
        assert {"volume.claimLinesPerClaim", "volume.claimValueRanges.high"} <= _fields(report.errors)

    def test_no_providers(self, scenario_factory):
        document = scenario_factory()
        document["practice"]["providers"] = []
        report = _validate(document)
        assert "practice.providers" in _fields(report.errors)

    def test_duplicate_pattern_ids(self, scenario_factory):
        document = scenario_factory()
        document["patterns"].append(copy.deepcopy(document["patterns"][0]))
        report = _validate(document)
        assert any("Duplicate pattern id" in e.message for e in report.errors)

    def test_window_outside_timeline(self, scenario_factory):
        document = scenario_factory()
        trajectory = document["patterns"][0]["trajectory"]
        trajectory["baseline"].update(periodStart="2026-01-01", periodEnd="2026-02-28")
        trajectory["current"].update(periodStart="2026-05-01", periodEnd="2026-06-30")
        report = _validate(document)
        assert any("does not overlap" in e.message for e in report.errors)

    def test_bad_month_key(self, scenario_factory):
        document = scenario_factory()
        document["volume"]["monthlyVariation"] = {"2025-13": 1.0, "2025-02": 1.2}
        report = _validate(document)
        assert "volume.monthlyVariation.2025-13" in _fields(report.errors)

    def test_flat_series_with_wide_swing_warns(self, scenario_factory):
        document = scenario_factory(curve="flat", baseline_rate=10, current_rate=10)
        document["patterns"][0]["trajectory"]["snapshots"] = [
            {"month": "2025-01", "denialRate": 10},
            {"month": "2025-02", "denialRate": 25},
        ]
        report = _validate(document)
        assert report.passed
        assert "patterns.0.trajectory.snapshots" in _fields(report.warnings)

    def test_target_total_mismatch_warns(self, scenario_factory):
        document = scenario_factory(target_metrics={
            "totalClaims": 700, "totalDenied": 60, "overallDenialRate": 10,
            "totalDollarsDenied": 50000, "totalAppeals": 20, "appealSuccessRate": 50,
        })
        report = _validate(document)
        assert report.passed
        assert "targetMetrics.totalClaims" in _fields(report.warnings)

    def test_report_to_dict(self, invalid_document):
        data = _validate(invalid_document).to_dict()
        assert data["passed"] is False
        assert data["scenario_id"] == "broken-scenario"
        assert {"type", "field", "message"} == set(data["errors"][0])


class TestLoadScenarioDocuments:
    @pytest.mark.parametrize("wrap", [
        lambda docs: docs[0],
        lambda docs: docs,
        lambda docs: {"scenarios": docs},
    ])
    def test_accepted_shapes(self, tmp_path, scenario_factory, wrap):
        docs = [scenario_factory(scenario_id="one")]
        path = tmp_path / "scenarios.json"
        path.write_text(json.dumps(wrap(docs)))
        loaded = load_scenario_documents(path)
        assert [d["id"] for d in loaded] == ["one"]

    def test_rejects_scalar(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("42")
        with pytest.raises(ValueError):
            load_scenario_documents(path)
