"""
Scenario validation — run before any generation starts.

Checks, all collected into one report:
- Schema conformance (pydantic structure and types)
- Timeline sanity (end after start, key events inside the timeline)
- Practice (at least one provider, non-negative claim weights)
- Volume (month multipliers, ordered line and value ranges, pattern totals fit)
- Patterns (unique ids, rates in [0, 100], windows overlapping the timeline)
- Referential integrity (every policy id resolves)
- Learning events and appeal settings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from portalsim.schemas.scenario import ScenarioDefinition
from portalsim.seed.policy_library import PolicyResolver, default_resolver
from portalsim.services.curves import check_series_shape
from portalsim.services.timeline import months_between, parse_month_key

logger = logging.getLogger(__name__)

MIN_TOTAL_CLAIMS = 10


@dataclass
class ValidationIssue:
    issue_type: str
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"type": self.issue_type, "field": self.field, "message": self.message}


@dataclass
class ValidationReport:
    scenario_id: str | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors

    def error(self, issue_type: str, field_name: str, message: str):
        self.errors.append(ValidationIssue(issue_type, field_name, message))

    def warn(self, issue_type: str, field_name: str, message: str):
        self.warnings.append(ValidationIssue(issue_type, field_name, message))

    def to_dict(self) -> dict:
        return {
            "scenario_id": self.scenario_id,
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def parse_scenario(document: dict[str, Any] | ScenarioDefinition) -> tuple[ScenarioDefinition | None, ValidationReport]:
    """Load a raw document; schema problems become report errors instead of exceptions."""
    if isinstance(document, ScenarioDefinition):
        return document, ValidationReport(scenario_id=document.id)

    if not isinstance(document, dict):
        report = ValidationReport(scenario_id=None)
        report.error("schema", "", f"Scenario must be an object, got {type(document).__name__}")
        return None, report

    report = ValidationReport(scenario_id=document.get("id"))
    try:
        return ScenarioDefinition.model_validate(document), report
    except ValidationError as exc:
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"])
            report.error("schema", loc, err["msg"])
        return None, report


def validate_scenario(
    scenario: ScenarioDefinition,
    policies: PolicyResolver | None = None,
    noise_pct: float = 3.0,
    report: ValidationReport | None = None,
) -> ValidationReport:
    policies = policies or default_resolver
    report = report or ValidationReport(scenario_id=scenario.id)
    report.scenario_id = scenario.id

    if not scenario.id.strip():
        report.error("schema", "id", "Scenario id is required")
    if not scenario.name.strip():
        report.error("schema", "name", "Scenario name is required")

    month_keys = _check_timeline(scenario, report)
    _check_practice(scenario, report)
    _check_volume(scenario, report, month_keys)
    _check_patterns(scenario, report, policies, noise_pct)
    _check_learning_events(scenario, report)
    _check_appeals(scenario, report)

    logger.debug(
        "Validated scenario %s: %d errors, %d warnings",
        scenario.id, len(report.errors), len(report.warnings),
    )
    return report


# ── Sections ─────────────────────────────────────────────────────────────────

def _check_timeline(scenario: ScenarioDefinition, report: ValidationReport) -> list[str]:
    timeline = scenario.timeline
    if timeline.end_date <= timeline.start_date:
        report.error(
            "timeline", "timeline.endDate",
            f"End date {timeline.end_date} must be after start date {timeline.start_date}",
        )
        return []

    for i, event in enumerate(timeline.key_events):
        if not timeline.start_date <= event.on_date <= timeline.end_date:
            report.warn(
                "timeline", f"timeline.keyEvents.{i}.date",
                f"Key event on {event.on_date} falls outside the timeline",
            )
    return [m.key for m in months_between(timeline.start_date, timeline.end_date)]


def _check_practice(scenario: ScenarioDefinition, report: ValidationReport):
    providers = scenario.practice.providers
    if not providers:
        report.error("practice", "practice.providers", "At least one provider is required")
        return

    seen: set[str] = set()
    for i, provider in enumerate(providers):
        if provider.id in seen:
            report.error("practice", f"practice.providers.{i}.id", f"Duplicate provider id {provider.id}")
        seen.add(provider.id)
        if provider.claim_weight < 0:
            report.error(
                "practice", f"practice.providers.{i}.claimWeight",
                f"Claim weight must be non-negative, got {provider.claim_weight}",
            )
    if all(p.claim_weight == 0 for p in providers):
        report.error("practice", "practice.providers", "At least one provider needs a positive claim weight")


def _check_volume(scenario: ScenarioDefinition, report: ValidationReport, month_keys: list[str]):
    volume = scenario.volume
    if volume.total_claims < MIN_TOTAL_CLAIMS:
        report.error(
            "volume", "volume.totalClaims",
            f"Total claims must be at least {MIN_TOTAL_CLAIMS}, got {volume.total_claims}",
        )

    for key, multiplier in volume.monthly_variation.items():
        try:
            parse_month_key(key)
        except ValueError as exc:
            report.error("volume", f"volume.monthlyVariation.{key}", str(exc))
            continue
        if multiplier < 0:
            report.error(
                "volume", f"volume.monthlyVariation.{key}",
                f"Month multiplier must be non-negative, got {multiplier}",
            )
        if month_keys and key not in month_keys:
            report.warn("volume", f"volume.monthlyVariation.{key}", f"Month {key} is outside the timeline")

    if month_keys and all(volume.monthly_variation.get(k, 1.0) == 0 for k in month_keys):
        report.error("volume", "volume.monthlyVariation", "Every month in the timeline has a zero multiplier")

    lines = volume.claim_lines_per_claim
    if lines.min < 1:
        report.error("volume", "volume.claimLinesPerClaim.min", f"Claims need at least one line, got {lines.min}")
    if lines.min > lines.max:
        report.error(
            "volume", "volume.claimLinesPerClaim",
            f"Line range is inverted: min {lines.min} > max {lines.max}",
        )

    for tier in ("low", "medium", "high"):
        value_range = getattr(volume.claim_value_ranges, tier)
        if value_range.min < 0:
            report.error(
                "volume", f"volume.claimValueRanges.{tier}.min",
                f"Value range minimum must be non-negative, got {value_range.min}",
            )
        if value_range.min > value_range.max:
            report.error(
                "volume", f"volume.claimValueRanges.{tier}",
                f"Value range is inverted: min {value_range.min} > max {value_range.max}",
            )

    seeded = sum(p.claim_distribution.total for p in scenario.patterns)
    if seeded > volume.total_claims:
        report.error(
            "volume", "patterns.claimDistribution.total",
            f"Pattern claim totals ({seeded}) exceed total claims ({volume.total_claims})",
        )

    target = scenario.target_metrics
    if target is not None and target.total_claims != volume.total_claims:
        report.warn(
            "volume", "targetMetrics.totalClaims",
            f"Target total claims {target.total_claims} differs from volume {volume.total_claims}",
        )


def _check_patterns(
    scenario: ScenarioDefinition,
    report: ValidationReport,
    policies: PolicyResolver,
    noise_pct: float,
):
    if not scenario.patterns:
        report.error("pattern", "patterns", "At least one pattern is required")
        return

    timeline = scenario.timeline
    seen: set[str] = set()
    for i, pattern in enumerate(scenario.patterns):
        where = f"patterns.{i}"
        if not pattern.id.strip():
            report.error("pattern", f"{where}.id", "Pattern id is required")
        if not pattern.title.strip():
            report.error("pattern", f"{where}.title", "Pattern title is required")
        if pattern.id in seen:
            report.error("pattern", f"{where}.id", f"Duplicate pattern id {pattern.id}")
        seen.add(pattern.id)

        if pattern.claim_distribution.total < 0:
            report.error("pattern", f"{where}.claimDistribution.total", "Pattern claim total must be non-negative")

        for ref in pattern.policies:
            if not 0 <= ref.trigger_rate <= 1:
                report.error(
                    "pattern", f"{where}.policies.{ref.id}.triggerRate",
                    f"Trigger rate must be within [0, 1], got {ref.trigger_rate}",
                )
        for missing in policies.missing([ref.id for ref in pattern.policies]):
            report.error("referential", f"{where}.policies", f"Policy {missing} not found in policy library")

        trajectory = pattern.trajectory
        for label, metrics in (("baseline", trajectory.baseline), ("current", trajectory.current)):
            if not 0 <= metrics.denial_rate <= 100:
                report.error(
                    "pattern", f"{where}.trajectory.{label}.denialRate",
                    f"Denial rate must be within [0, 100], got {metrics.denial_rate}",
                )
            if metrics.period_end < metrics.period_start:
                report.error(
                    "pattern", f"{where}.trajectory.{label}",
                    f"Period ends {metrics.period_end} before it starts {metrics.period_start}",
                )

        if trajectory.window_end < trajectory.window_start:
            report.error(
                "pattern", f"{where}.trajectory",
                "Current period ends before the baseline period starts",
            )
        elif trajectory.window_end < timeline.start_date or trajectory.window_start > timeline.end_date:
            report.error(
                "timeline", f"{where}.trajectory",
                "Pattern window does not overlap the scenario timeline",
            )

        rates = []
        for j, snapshot in enumerate(trajectory.snapshots):
            if not 0 <= snapshot.denial_rate <= 100:
                report.error(
                    "pattern", f"{where}.trajectory.snapshots.{j}.denialRate",
                    f"Monthly denial rate must be within [0, 100], got {snapshot.denial_rate}",
                )
            rates.append(snapshot.denial_rate)
        for problem in check_series_shape(trajectory.curve, rates, noise_pct):
            report.warn("pattern", f"{where}.trajectory.snapshots", problem)


def _check_learning_events(scenario: ScenarioDefinition, report: ValidationReport):
    learning = scenario.learning_events
    for event_type, count in learning.event_distribution.items():
        if count < 0:
            report.error(
                "learning_events", f"learningEvents.eventDistribution.{event_type}",
                f"Event count must be non-negative, got {count}",
            )
    pattern_ids = {p.id for p in scenario.patterns}
    for pattern_id in learning.event_clustering:
        if pattern_id not in pattern_ids:
            report.warn(
                "learning_events", f"learningEvents.eventClustering.{pattern_id}",
                f"Clustering references unknown pattern {pattern_id}",
            )


def _check_appeals(scenario: ScenarioDefinition, report: ValidationReport):
    appeals = scenario.appeals
    if not 0 <= appeals.rate <= 1:
        report.error("appeals", "appeals.rate", f"Appeal rate must be within [0, 1], got {appeals.rate}")
    for name, lag in (("filingLagDays", appeals.filing_lag_days), ("resolutionLagDays", appeals.resolution_lag_days)):
        if lag.min < 0 or lag.min > lag.max:
            report.error("appeals", f"appeals.{name}", f"Lag range must be ordered and non-negative, got {lag.min}..{lag.max}")
