"""
Scenario pipeline — replays one scenario document into claims, appeals and events.

States: loaded → validating → generating → summarizing → completed | failed

Validation problems are collected into a report and fail the run before any
generation. Generation then walks the timeline month by month:

  1. month claim count from the volume multipliers (largest remainder)
  2. claims split across providers by claim weight; pattern-seeded claims
     lead with one of their pattern's codes
  3. each pattern active in the month gets a curve-derived target rate and
     the injector denies claims to meet it
  4. appeals for the newly denied claims, events planned for the month
  5. one snapshot per active pattern, then the batch goes to the sink

A month that fails aborts the run. Months already handed to the sink stay
persisted. Drift between realized totals and the scenario's target metrics
is reported as warnings, never as failure.
"""

from __future__ import annotations

import logging
import random
import time
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from portalsim.config import settings
from portalsim.middleware.metrics import (
    claims_generated_total,
    injection_shortfalls_total,
    scenario_run_duration_seconds,
    scenario_runs_total,
)
from portalsim.middleware.request_context import bind_run_id
from portalsim.schemas.scenario import PatternDefinition, ScenarioDefinition
from portalsim.seed.policy_library import PolicyResolver, default_resolver
from portalsim.services.appeal_synthesizer import appeal_stats, synthesize_appeals
from portalsim.services.claim_synthesizer import (
    ClaimIdSequence,
    SynthesisError,
    pick_value_tier,
    synthesize_claim,
)
from portalsim.services.curves import CurveSpec, denial_rate_for_month, distribute_counts
from portalsim.services.entities import (
    AppealOutcome,
    GeneratedAppeal,
    GeneratedBatch,
    GeneratedClaim,
    PatternSnapshot,
)
from portalsim.services.event_synthesizer import (
    PlannedEvent,
    cluster_dates_for,
    engagement_metrics,
    plan_distribution_events,
    plan_pattern_events,
    synthesize_planned,
)
from portalsim.services.pattern_injector import InjectionReport, InjectionTarget, PatternInjector
from portalsim.services.persistence import InMemorySink, PersistenceSink
from portalsim.services.scenario_validation import ValidationReport, parse_scenario, validate_scenario
from portalsim.services.timeline import MonthBucket, month_key, months_between, random_date

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    LOADED = "loaded"
    VALIDATING = "validating"
    GENERATING = "generating"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"


# ── Run summary ──────────────────────────────────────────────────────────────

@dataclass
class PatternRunStats:
    pattern_id: str
    population: int = 0
    denied: int = 0
    target_denied: int = 0
    appeals: int = 0
    overturned: int = 0
    dollars_denied: Decimal = Decimal("0.00")
    shortfall_months: list[str] = field(default_factory=list)
    by_month: dict[str, dict] = field(default_factory=dict)

    @property
    def realized_rate(self) -> float:
        if not self.population:
            return 0.0
        return round(self.denied / self.population * 100, 2)

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern_id,
            "population": self.population,
            "denied": self.denied,
            "target_denied": self.target_denied,
            "realized_rate": self.realized_rate,
            "appeals": self.appeals,
            "overturned": self.overturned,
            "dollars_denied": str(self.dollars_denied),
            "shortfall_months": list(self.shortfall_months),
            "by_month": dict(self.by_month),
        }


@dataclass
class RunSummary:
    total_claims: int = 0
    total_line_items: int = 0
    total_denied: int = 0
    total_events: int = 0
    total_snapshots: int = 0
    dollars_billed: Decimal = Decimal("0.00")
    dollars_denied: Decimal = Decimal("0.00")
    month_claim_counts: dict[str, int] = field(default_factory=dict)
    patterns: dict[str, PatternRunStats] = field(default_factory=dict)
    appeals: dict = field(default_factory=lambda: appeal_stats([]))
    engagement: dict = field(default_factory=dict)
    persisted: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    persistence_failures: list[dict] = field(default_factory=list)
    target_comparison: list[dict] = field(default_factory=list)

    @property
    def overall_denial_rate(self) -> float:
        if not self.total_claims:
            return 0.0
        return round(self.total_denied / self.total_claims * 100, 2)

    def to_dict(self) -> dict:
        return {
            "total_claims": self.total_claims,
            "total_line_items": self.total_line_items,
            "total_denied": self.total_denied,
            "overall_denial_rate": self.overall_denial_rate,
            "total_events": self.total_events,
            "total_snapshots": self.total_snapshots,
            "dollars_billed": str(self.dollars_billed),
            "dollars_denied": str(self.dollars_denied),
            "month_claim_counts": dict(self.month_claim_counts),
            "patterns": {pid: stats.to_dict() for pid, stats in self.patterns.items()},
            "appeals": dict(self.appeals),
            "engagement": dict(self.engagement),
            "persisted": dict(self.persisted),
            "persistence_failures": list(self.persistence_failures[:100]),
            "target_comparison": list(self.target_comparison),
        }


@dataclass
class ScenarioRunResult:
    run_id: str
    scenario_id: str | None
    scenario_name: str | None
    dry_run: bool
    state: PipelineState = PipelineState.LOADED
    validation: ValidationReport = field(default_factory=ValidationReport)
    summary: RunSummary | None = None
    warnings: list[str] = field(default_factory=list)
    months_completed: list[str] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.state == PipelineState.COMPLETED

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "scenario_id": self.scenario_id,
            "scenario_name": self.scenario_name,
            "dry_run": self.dry_run,
            "success": self.success,
            "state": self.state.value,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
            "months_completed": list(self.months_completed),
            "warnings": list(self.warnings),
            "validation": self.validation.to_dict(),
            "summary": self.summary.to_dict() if self.summary else None,
        }


# ── Per-run working state ────────────────────────────────────────────────────

@dataclass
class _RunPlan:
    scenario: ScenarioDefinition
    months: list[MonthBucket]
    month_counts: list[int]
    windows: dict[str, list[str]]
    seeded: dict[str, list[tuple[PatternDefinition, int]]]
    planned_events: dict[str, list[PlannedEvent]]
    ids: ClaimIdSequence
    appeals: list[GeneratedAppeal] = field(default_factory=list)
    events: list = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _overlaps(bucket: MonthBucket, pattern: PatternDefinition) -> bool:
    trajectory = pattern.trajectory
    return bucket.start <= trajectory.window_end and bucket.end >= trajectory.window_start


class ScenarioPipeline:
    """Runs scenario documents through validation, generation and summary."""

    def __init__(
        self,
        sink: PersistenceSink | None = None,
        *,
        policies: PolicyResolver | None = None,
        rng: random.Random | None = None,
        noise_pct: float | None = None,
        count_tolerance_pct: float | None = None,
        rate_tolerance_points: float | None = None,
        code_map: dict[str, list[str]] | None = None,
    ):
        self.sink = sink if sink is not None else InMemorySink()
        self.policies = policies or default_resolver
        self.rng = rng or random.Random(settings.random_seed)
        self.noise_pct = settings.curve_noise_pct if noise_pct is None else noise_pct
        self.count_tolerance_pct = (
            settings.drift_count_tolerance_pct if count_tolerance_pct is None else count_tolerance_pct
        )
        self.rate_tolerance_points = (
            settings.drift_rate_tolerance_points if rate_tolerance_points is None else rate_tolerance_points
        )
        self.code_map = code_map
        self.injector = PatternInjector(self.rng, self.policies)

    def validate(self, document: dict[str, Any] | ScenarioDefinition) -> tuple[ScenarioDefinition | None, ValidationReport]:
        scenario, report = parse_scenario(document)
        if scenario is not None:
            validate_scenario(scenario, self.policies, self.noise_pct, report)
        return scenario, report

    async def run(
        self,
        document: dict[str, Any] | ScenarioDefinition,
        *,
        dry_run: bool = False,
    ) -> ScenarioRunResult:
        """Run one scenario. Never raises for bad input or failed months."""
        run_id = f"RUN-{uuid4().hex[:12].upper()}"
        if isinstance(document, ScenarioDefinition):
            scenario_id, scenario_name = document.id, document.name
        elif isinstance(document, dict):
            scenario_id, scenario_name = document.get("id"), document.get("name")
        else:
            scenario_id = scenario_name = None

        result = ScenarioRunResult(
            run_id=run_id,
            scenario_id=scenario_id,
            scenario_name=scenario_name,
            dry_run=dry_run,
        )
        t_start = time.time()

        with bind_run_id(run_id):
            logger.info("Scenario %s run started (dry_run=%s)", scenario_id, dry_run)
            self._transition(result, PipelineState.VALIDATING)
            scenario, report = self.validate(document)
            result.validation = report
            result.warnings.extend(w.message for w in report.warnings)

            if scenario is None or not report.passed:
                result.error = f"Validation failed with {len(report.errors)} error(s)"
                self._transition(result, PipelineState.FAILED)
            else:
                await self._generate(scenario, result)

            result.duration_seconds = round(time.time() - t_start, 3)
            scenario_runs_total.labels(status=result.state.value, dry_run=str(dry_run).lower()).inc()
            scenario_run_duration_seconds.observe(result.duration_seconds)

            if not dry_run:
                try:
                    await self.sink.record_run(result)
                except Exception:
                    logger.error("Could not record run %s", run_id, exc_info=True)

            logger.info(
                "Scenario %s run %s in %.2fs",
                scenario_id, result.state.value, result.duration_seconds,
            )
        return result

    def _transition(self, result: ScenarioRunResult, state: PipelineState):
        logger.debug("Run %s: %s -> %s", result.run_id, result.state.value, state.value)
        result.state = state

    # ── Generation ───────────────────────────────────────────────────────────

    async def _generate(self, scenario: ScenarioDefinition, result: ScenarioRunResult):
        self._transition(result, PipelineState.GENERATING)
        summary = RunSummary()
        result.summary = summary

        try:
            plan = self._plan(scenario)
            result.warnings.extend(plan.warnings)
            for index, bucket in enumerate(plan.months):
                batch, injection = self._generate_month(plan, index, bucket)
                self._accumulate(summary, batch, injection, bucket, result)

                if not result.dry_run:
                    sink_result = await self.sink.write_batch(batch)
                    for kind, count in sink_result.written.items():
                        summary.persisted[kind] += count
                    summary.persistence_failures.extend(f.__dict__ for f in sink_result.failures)
                result.months_completed.append(bucket.key)
        except SynthesisError as exc:
            logger.error("Synthesis failed for scenario %s: %s", scenario.id, exc)
            result.error = f"Synthesis failed: {exc}"
            self._transition(result, PipelineState.FAILED)
            return
        except Exception as exc:
            logger.error("Generation failed for scenario %s", scenario.id, exc_info=True)
            result.error = f"{type(exc).__name__}: {exc}"
            self._transition(result, PipelineState.FAILED)
            return

        self._transition(result, PipelineState.SUMMARIZING)
        summary.appeals = appeal_stats(plan.appeals)
        summary.engagement = engagement_metrics(plan.events)
        if scenario.target_metrics is not None:
            self._compare_targets(scenario, summary, result)
        self._transition(result, PipelineState.COMPLETED)

    def _plan(self, scenario: ScenarioDefinition) -> _RunPlan:
        timeline = scenario.timeline
        months = months_between(timeline.start_date, timeline.end_date)
        weights = [scenario.volume.monthly_variation.get(m.key, 1.0) for m in months]
        month_counts = distribute_counts(scenario.volume.total_claims, weights)

        windows = {
            p.id: [m.key for m in months if _overlaps(m, p)]
            for p in scenario.patterns
        }

        # Pattern-seeded claims follow the month volume inside each window
        seeded: dict[str, list[tuple[PatternDefinition, int]]] = defaultdict(list)
        room = {m.key: count for m, count in zip(months, month_counts)}
        plan_warnings: list[str] = []
        for pattern in scenario.patterns:
            total = pattern.claim_distribution.total
            window = windows[pattern.id]
            if total <= 0 or not window:
                continue
            window_weights = [room[key] for key in window]
            if not any(window_weights):
                window_weights = [1] * len(window)
            dropped = 0
            for key, n in zip(window, distribute_counts(total, window_weights)):
                placed = min(n, room[key])
                dropped += n - placed
                if placed:
                    seeded[key].append((pattern, placed))
                    room[key] -= placed
            if dropped:
                logger.warning("Pattern %s: %d seeded claim(s) do not fit its window", pattern.id, dropped)
                plan_warnings.append(
                    f"Pattern {pattern.id}: {dropped} of {total} seeded claim(s) dropped, its window months are full"
                )

        planned: list[PlannedEvent] = []
        for pattern in scenario.patterns:
            planned.extend(plan_pattern_events(
                self.rng, pattern, cluster_dates_for(pattern, scenario.learning_events),
                start=timeline.start_date, end=timeline.end_date,
            ))
        planned.extend(plan_distribution_events(
            self.rng, scenario.learning_events,
            start=timeline.start_date, end=timeline.end_date,
        ))
        planned_events: dict[str, list[PlannedEvent]] = defaultdict(list)
        for item in planned:
            planned_events[month_key(item.on_date)].append(item)

        logger.info(
            "Planned %d months, %d claims, %d engagement items for %s",
            len(months), sum(month_counts), len(planned), scenario.id,
        )
        return _RunPlan(
            scenario=scenario,
            months=months,
            month_counts=month_counts,
            windows=windows,
            seeded=seeded,
            planned_events=planned_events,
            ids=ClaimIdSequence(scenario.claim_tag),
            warnings=plan_warnings,
        )

    def _synthesize_claims(self, plan: _RunPlan, index: int, bucket: MonthBucket) -> list[GeneratedClaim]:
        scenario = plan.scenario
        count = plan.month_counts[index]
        providers = scenario.practice.providers
        if not providers:
            raise SynthesisError(f"Scenario {scenario.id} has no providers")

        seed_codes: list[list[str] | None] = []
        for pattern, n in plan.seeded.get(bucket.key, []):
            seed_codes.extend([list(pattern.procedure_codes) or None] * n)
        seed_codes.extend([None] * (count - len(seed_codes)))
        self.rng.shuffle(seed_codes)

        assignments = []
        per_provider = distribute_counts(count, [p.claim_weight for p in providers])
        for provider, n in zip(providers, per_provider):
            assignments.extend([provider] * n)
        self.rng.shuffle(assignments)

        drafts = sorted(
            (
                (random_date(self.rng, bucket.start, bucket.end), i, provider, codes)
                for i, (provider, codes) in enumerate(zip(assignments, seed_codes))
            ),
            key=lambda d: (d[0], d[1]),
        )

        volume = scenario.volume
        line_range = (volume.claim_lines_per_claim.min, volume.claim_lines_per_claim.max)
        claims = []
        for day, _, provider, codes in drafts:
            tier = pick_value_tier(self.rng)
            value_range = getattr(volume.claim_value_ranges, tier.value)
            claims.append(synthesize_claim(
                self.rng,
                claim_id=plan.ids.next(day),
                provider=provider,
                date_of_service=day,
                tier=tier,
                value_range=(Decimal(str(value_range.min)), Decimal(str(value_range.max))),
                line_range=line_range,
                tax_id=scenario.practice.tax_id,
                scenario_id=scenario.id,
                seed_codes=codes,
                code_map=self.code_map,
            ))
        return claims

    def _target_rate(self, plan: _RunPlan, pattern: PatternDefinition, month: str) -> float:
        """Declared monthly snapshot when there is one, the shaped curve otherwise."""
        trajectory = pattern.trajectory
        for snapshot in trajectory.snapshots:
            if snapshot.month == month:
                return snapshot.denial_rate
        window = plan.windows[pattern.id]
        curve = CurveSpec(trajectory.curve, trajectory.baseline.denial_rate, trajectory.current.denial_rate)
        return denial_rate_for_month(
            curve, window.index(month), len(window), rng=self.rng, noise_pct=self.noise_pct,
        )

    def _generate_month(self, plan: _RunPlan, index: int, bucket: MonthBucket) -> tuple[GeneratedBatch, InjectionReport]:
        scenario = plan.scenario
        claims = self._synthesize_claims(plan, index, bucket)

        active = [p for p in scenario.patterns if bucket.key in plan.windows[p.id]]
        targets = [
            InjectionTarget(
                pattern_id=p.id,
                category=p.category,
                tier=p.tier,
                denial_reason=p.denial_reason,
                target_rate=self._target_rate(plan, p, bucket.key),
                procedure_codes=tuple(p.procedure_codes),
                policies=tuple(p.policies),
            )
            for p in active
        ]
        injection = self.injector.inject(claims, targets)

        appeal_cfg = scenario.appeals
        appeals = synthesize_appeals(
            self.rng,
            injection.newly_denied,
            appeal_rate=appeal_cfg.rate,
            filing_lag_days=(appeal_cfg.filing_lag_days.min, appeal_cfg.filing_lag_days.max),
            resolution_lag_days=(appeal_cfg.resolution_lag_days.min, appeal_cfg.resolution_lag_days.max),
            as_of=scenario.timeline.end_date,
        )
        events = synthesize_planned(
            self.rng,
            plan.planned_events.get(bucket.key, []),
            scenario_id=scenario.id,
            categories={p.id: p.category for p in scenario.patterns},
        )

        by_id = {c.claim_id: c for c in claims}
        snapshots = []
        for target in targets:
            outcome = injection.patterns[target.pattern_id]
            population = [c for c in claims if target.matches(c)]
            denied = [by_id[cid] for cid in outcome.claim_ids]
            snapshots.append(PatternSnapshot(
                scenario_id=scenario.id,
                pattern_id=target.pattern_id,
                month=bucket.key,
                claim_count=outcome.population,
                denied_count=outcome.denied,
                target_rate=target.target_rate,
                dollars_denied=sum((c.billed_amount for c in denied), Decimal("0.00")),
                dollars_at_risk=sum((c.billed_amount for c in population), Decimal("0.00")),
                appeal_count=sum(1 for a in appeals if a.pattern_id == target.pattern_id),
            ))

        plan.appeals.extend(appeals)
        plan.events.extend(events)
        claims_generated_total.labels(source="scenario").inc(len(claims))

        batch = GeneratedBatch(
            batch_key=f"{scenario.id}:{bucket.key}",
            scenario_id=scenario.id,
            claims=claims,
            appeals=appeals,
            events=events,
            snapshots=snapshots,
        )
        logger.debug("Month %s: %s", bucket.key, batch.counts())
        return batch, injection

    def _accumulate(
        self,
        summary: RunSummary,
        batch: GeneratedBatch,
        injection: InjectionReport,
        bucket: MonthBucket,
        result: ScenarioRunResult,
    ):
        summary.month_claim_counts[bucket.key] = len(batch.claims)
        summary.total_claims += len(batch.claims)
        summary.total_line_items += batch.line_count
        summary.total_events += len(batch.events)
        summary.total_snapshots += len(batch.snapshots)
        for claim in batch.claims:
            summary.dollars_billed += claim.billed_amount
            if claim.is_denied:
                summary.total_denied += 1
                summary.dollars_denied += claim.billed_amount

        for snapshot in batch.snapshots:
            stats = summary.patterns.setdefault(snapshot.pattern_id, PatternRunStats(snapshot.pattern_id))
            outcome = injection.patterns[snapshot.pattern_id]
            stats.population += snapshot.claim_count
            stats.denied += snapshot.denied_count
            stats.target_denied += outcome.target
            stats.dollars_denied += snapshot.dollars_denied
            stats.appeals += snapshot.appeal_count
            stats.overturned += sum(
                1 for a in batch.appeals
                if a.pattern_id == snapshot.pattern_id and a.outcome == AppealOutcome.OVERTURNED
            )
            stats.by_month[bucket.key] = {
                "population": snapshot.claim_count,
                "denied": snapshot.denied_count,
                "target_rate": snapshot.target_rate,
                "realized_rate": snapshot.denial_rate,
            }
            if outcome.shortfall > 0:
                stats.shortfall_months.append(bucket.key)
                injection_shortfalls_total.labels(pattern_id=snapshot.pattern_id).inc()
                result.warnings.append(
                    f"Pattern {snapshot.pattern_id} short by {outcome.shortfall} claim(s) in {bucket.key}"
                )

    # ── Target drift ─────────────────────────────────────────────────────────

    def _compare_targets(self, scenario: ScenarioDefinition, summary: RunSummary, result: ScenarioRunResult):
        target = scenario.target_metrics
        resolved = summary.appeals["overturned"] + summary.appeals["upheld"]
        actual_success = round(summary.appeals["overturned"] / resolved * 100, 2) if resolved else 0.0

        checks = [
            ("total_claims", target.total_claims, summary.total_claims, "relative"),
            ("total_denied", target.total_denied, summary.total_denied, "relative"),
            ("overall_denial_rate", target.overall_denial_rate, summary.overall_denial_rate, "points"),
            ("total_dollars_denied", target.total_dollars_denied, float(summary.dollars_denied), "relative"),
            ("total_appeals", target.total_appeals, summary.appeals["total"], "relative"),
            ("appeal_success_rate", target.appeal_success_rate, actual_success, "points"),
        ]
        for metric, expected, actual, mode in checks:
            if mode == "points":
                tolerance = self.rate_tolerance_points
                within = abs(actual - expected) <= tolerance
            else:
                tolerance = self.count_tolerance_pct
                if expected == 0:
                    within = actual == 0
                else:
                    within = abs(actual - expected) / abs(expected) * 100 <= tolerance
            summary.target_comparison.append({
                "metric": metric,
                "target": expected,
                "actual": actual,
                "tolerance": tolerance,
                "mode": mode,
                "within_tolerance": within,
            })
            if not within:
                message = f"Drift on {metric}: target {expected}, actual {actual}"
                logger.warning("Scenario %s: %s", scenario.id, message)
                result.warnings.append(message)
