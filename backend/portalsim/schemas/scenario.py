"""
Scenario document schemas.

A scenario describes one practice's claim history: its providers, a volume
profile, and the denial patterns whose trajectories the generator must
reproduce. Documents are camelCase JSON; the models expose snake_case
attributes and are frozen once loaded.

Structural problems (missing fields, wrong types, unknown enum values) are
caught here. Value checks such as ordered ranges and resolvable policy ids
live in ``portalsim.services.scenario_validation`` so they can be reported
together.
"""

from __future__ import annotations

import datetime as dt
import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ScenarioModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ── Enums ────────────────────────────────────────────────────────────────────

class TrajectoryShape(str, Enum):
    STEEP_IMPROVEMENT = "steep_improvement"
    GRADUAL_IMPROVEMENT = "gradual_improvement"
    SLIGHT_IMPROVEMENT = "slight_improvement"
    STABLE = "stable"
    FLAT = "flat"
    REGRESSION = "regression"


class PatternCategory(str, Enum):
    MODIFIER_MISSING = "modifier-missing"
    CODE_MISMATCH = "code-mismatch"
    DOCUMENTATION = "documentation"
    AUTHORIZATION = "authorization"
    BILLING_ERROR = "billing-error"
    TIMING = "timing"
    CODING_SPECIFICITY = "coding-specificity"
    MEDICAL_NECESSITY = "medical-necessity"
    NON_COVERED = "non-covered"


class PatternStatus(str, Enum):
    ACTIVE = "active"
    IMPROVING = "improving"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class PatternTier(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def severity(self) -> int:
        return _TIER_SEVERITY[self]


_TIER_SEVERITY = {
    PatternTier.CRITICAL: 4,
    PatternTier.HIGH: 3,
    PatternTier.MEDIUM: 2,
    PatternTier.LOW: 1,
}


# ── Timeline & practice ──────────────────────────────────────────────────────

class KeyEvent(ScenarioModel):
    on_date: dt.date = Field(alias="date")
    type: Literal["training", "system_update", "staff_meeting", "audit", "policy_change"]
    description: str
    impacted_patterns: list[str] = []


class TimelineDefinition(ScenarioModel):
    start_date: dt.date
    end_date: dt.date
    period_days: int | None = None
    key_events: list[KeyEvent] = []


class Address(ScenarioModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


class ProviderDefinition(ScenarioModel):
    id: str
    name: str
    npi: str
    specialty: str
    taxonomy: str = ""
    claim_weight: float = 1.0


class PracticeDefinition(ScenarioModel):
    id: str
    name: str
    tax_id: str
    address: Address | None = None
    providers: list[ProviderDefinition] = []


# ── Volume ───────────────────────────────────────────────────────────────────

class IntRange(ScenarioModel):
    min: int
    max: int


class ValueRange(ScenarioModel):
    min: float
    max: float


class ClaimValueRanges(ScenarioModel):
    low: ValueRange
    medium: ValueRange
    high: ValueRange


class VolumeDefinition(ScenarioModel):
    total_claims: int
    monthly_variation: dict[str, float] = {}
    claim_lines_per_claim: IntRange = IntRange(min=1, max=4)
    claim_value_ranges: ClaimValueRanges


# ── Patterns ─────────────────────────────────────────────────────────────────

class PolicyReference(ScenarioModel):
    id: str
    trigger_rate: float = 0.8


class ClaimDistribution(ScenarioModel):
    total: int = 0
    denied_baseline: int = 0
    denied_current: int = 0
    appeals_filed: int = 0
    appeals_overturned: int = 0


class PeriodMetrics(ScenarioModel):
    period_start: dt.date
    period_end: dt.date
    claim_count: int = 0
    denied_count: int = 0
    denial_rate: float
    dollars_denied: float = 0


class MonthlySnapshot(ScenarioModel):
    month: str
    denial_rate: float
    dollars_denied: float = 0
    claim_count: int | None = None
    denied_count: int | None = None


class PatternTrajectory(ScenarioModel):
    curve: TrajectoryShape
    baseline: PeriodMetrics
    current: PeriodMetrics
    snapshots: list[MonthlySnapshot] = []

    @property
    def window_start(self) -> dt.date:
        return self.baseline.period_start

    @property
    def window_end(self) -> dt.date:
        return self.current.period_end


class RecordedAction(ScenarioModel):
    id: str
    on_date: dt.date = Field(alias="date")
    type: Literal[
        "resubmission", "workflow-update", "staff-training",
        "system-config", "practice-change", "other",
    ]
    notes: str | None = None


class PatternEngagement(ScenarioModel):
    first_viewed_date: dt.date | None = None
    total_views: int = 0
    claim_lab_tests: int = 0
    claims_exported: int = 0
    actions_recorded: list[RecordedAction] = []


class ShortTermRemediation(ScenarioModel):
    description: str
    can_resubmit: bool = False
    claim_count: int = 0
    amount: float = 0


class LongTermRemediation(ScenarioModel):
    description: str
    steps: list[str] = []


class RemediationInfo(ScenarioModel):
    short_term: ShortTermRemediation
    long_term: LongTermRemediation


class PatternDefinition(ScenarioModel):
    id: str
    title: str
    description: str = ""
    category: PatternCategory
    status: PatternStatus = PatternStatus.ACTIVE
    tier: PatternTier = PatternTier.MEDIUM
    procedure_codes: list[str] = []
    policies: list[PolicyReference] = []
    denial_reason: str
    claim_distribution: ClaimDistribution = ClaimDistribution()
    trajectory: PatternTrajectory
    engagement: PatternEngagement = PatternEngagement()
    remediation: RemediationInfo | None = None


# ── Learning events, targets, appeals ────────────────────────────────────────

class LearningEventsDefinition(ScenarioModel):
    event_distribution: dict[str, int] = {}
    event_clustering: dict[str, list[dt.date]] = {}


class TargetMetrics(ScenarioModel):
    total_claims: int
    total_denied: int
    overall_denial_rate: float
    total_dollars_denied: float
    total_appeals: int
    appeal_success_rate: float


class AppealSettings(ScenarioModel):
    rate: float = 0.40
    filing_lag_days: IntRange = IntRange(min=3, max=14)
    resolution_lag_days: IntRange = IntRange(min=14, max=45)


class ScenarioDefinition(ScenarioModel):
    id: str
    name: str
    description: str = ""
    timeline: TimelineDefinition
    practice: PracticeDefinition
    volume: VolumeDefinition
    patterns: list[PatternDefinition] = []
    learning_events: LearningEventsDefinition = LearningEventsDefinition()
    target_metrics: TargetMetrics | None = None
    appeals: AppealSettings = AppealSettings()

    @property
    def claim_tag(self) -> str:
        """Short uppercase tag embedded in claim ids."""
        tag = self.id.removeprefix("scenario-")
        return tag[:8].upper()


# ── Loading ──────────────────────────────────────────────────────────────────

def load_scenario_documents(path: str | Path) -> list[dict[str, Any]]:
    """Read a scenario file: a single object, an array, or ``{"scenarios": [...]}``."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict) and "scenarios" in raw:
        raw = raw["scenarios"]
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list):
        return raw
    raise ValueError(f"{path}: expected a scenario object or array, got {type(raw).__name__}")
