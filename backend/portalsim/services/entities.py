"""
In-memory entities produced by the synthesizers.

These are plain dataclasses. Nothing here touches the database; the
persistence sink maps them onto ORM rows.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

from portalsim.schemas.scenario import PatternCategory
from portalsim.services.timeline import month_key

CENTS = Decimal("0.01")


def _d(value: float | Decimal) -> Decimal:
    """Convert to Decimal rounded to 2 decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def random_id(rng: random.Random, prefix: str, length: int = 12) -> str:
    """Id drawn from *rng* so seeded runs produce identical ids."""
    return f"{prefix}-{uuid.UUID(int=rng.getrandbits(128), version=4).hex[:length].upper()}"


class ClaimStatus(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


class AppealOutcome(str, Enum):
    OVERTURNED = "overturned"
    UPHELD = "upheld"
    PENDING = "pending"


class ValueTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Patient:
    name: str
    dob: date
    sex: str
    member_id: str


@dataclass
class GeneratedLineItem:
    line_number: int
    procedure_code: str
    description: str
    units: int
    billed_amount: Decimal
    paid_amount: Decimal = Decimal("0.00")
    modifiers: list[str] = field(default_factory=list)
    diagnosis_codes: list[str] = field(default_factory=list)
    status: ClaimStatus = ClaimStatus.APPROVED
    pattern_id: str | None = None
    policy_ids: list[str] = field(default_factory=list)
    edit_codes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "procedure_code": self.procedure_code,
            "description": self.description,
            "units": self.units,
            "billed_amount": str(self.billed_amount),
            "paid_amount": str(self.paid_amount),
            "modifiers": list(self.modifiers),
            "diagnosis_codes": list(self.diagnosis_codes),
            "status": self.status.value,
            "pattern_id": self.pattern_id,
            "policy_ids": list(self.policy_ids),
            "edit_codes": list(self.edit_codes),
        }


@dataclass
class GeneratedClaim:
    claim_id: str
    scenario_id: str | None
    provider_id: str
    provider_npi: str
    specialty: str
    tax_id: str
    patient: Patient
    date_of_service: date
    submission_date: date
    processing_date: date
    value_tier: ValueTier
    diagnosis_codes: list[str]
    lines: list[GeneratedLineItem]
    place_of_service: str = "11"
    status: ClaimStatus = ClaimStatus.APPROVED
    denial_reason: str | None = None
    denial_category: PatternCategory | None = None
    pattern_id: str | None = None
    policy_ids: list[str] = field(default_factory=list)
    edit_codes: list[str] = field(default_factory=list)
    fix_guidance: str | None = None

    @property
    def billed_amount(self) -> Decimal:
        return sum((line.billed_amount for line in self.lines), Decimal("0.00"))

    @property
    def paid_amount(self) -> Decimal:
        return sum((line.paid_amount for line in self.lines), Decimal("0.00"))

    @property
    def procedure_codes(self) -> list[str]:
        return [line.procedure_code for line in self.lines]

    @property
    def month(self) -> str:
        return month_key(self.date_of_service)

    @property
    def is_denied(self) -> bool:
        return self.status == ClaimStatus.DENIED

    def to_dict(self) -> dict:
        return {
            "claim_id": self.claim_id,
            "scenario_id": self.scenario_id,
            "provider_id": self.provider_id,
            "provider_npi": self.provider_npi,
            "specialty": self.specialty,
            "tax_id": self.tax_id,
            "patient_name": self.patient.name,
            "patient_dob": self.patient.dob.isoformat(),
            "patient_sex": self.patient.sex,
            "member_id": self.patient.member_id,
            "date_of_service": self.date_of_service.isoformat(),
            "submission_date": self.submission_date.isoformat(),
            "processing_date": self.processing_date.isoformat(),
            "value_tier": self.value_tier.value,
            "place_of_service": self.place_of_service,
            "diagnosis_codes": list(self.diagnosis_codes),
            "status": self.status.value,
            "billed_amount": str(self.billed_amount),
            "paid_amount": str(self.paid_amount),
            "denial_reason": self.denial_reason,
            "denial_category": self.denial_category.value if self.denial_category else None,
            "pattern_id": self.pattern_id,
            "policy_ids": list(self.policy_ids),
            "edit_codes": list(self.edit_codes),
            "fix_guidance": self.fix_guidance,
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass
class GeneratedAppeal:
    appeal_id: str
    claim_id: str
    pattern_id: str | None
    category: PatternCategory | None
    appeal_reason: str
    denial_date: date
    filed_date: date
    outcome_date: date
    outcome: AppealOutcome
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "appeal_id": self.appeal_id,
            "claim_id": self.claim_id,
            "pattern_id": self.pattern_id,
            "category": self.category.value if self.category else None,
            "appeal_reason": self.appeal_reason,
            "denial_date": self.denial_date.isoformat(),
            "filed_date": self.filed_date.isoformat(),
            "outcome_date": self.outcome_date.isoformat(),
            "outcome": self.outcome.value,
            "amount": str(self.amount),
        }


@dataclass
class GeneratedEvent:
    event_id: str
    event_type: str
    occurred_at: datetime
    scenario_id: str | None = None
    pattern_id: str | None = None
    claim_id: str | None = None
    session_id: str | None = None
    context: str = "dashboard"
    device: str = "desktop"
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            "scenario_id": self.scenario_id,
            "pattern_id": self.pattern_id,
            "claim_id": self.claim_id,
            "session_id": self.session_id,
            "context": self.context,
            "device": self.device,
            "metadata": dict(self.metadata),
        }


@dataclass
class PatternSnapshot:
    """Realized metrics for one pattern in one month."""

    scenario_id: str
    pattern_id: str
    month: str
    claim_count: int
    denied_count: int
    target_rate: float
    dollars_denied: Decimal
    dollars_at_risk: Decimal
    appeal_count: int

    @property
    def denial_rate(self) -> float:
        if not self.claim_count:
            return 0.0
        return round(self.denied_count / self.claim_count * 100, 2)

    @property
    def appeal_rate(self) -> float:
        if not self.denied_count:
            return 0.0
        return round(self.appeal_count / self.denied_count * 100, 2)

    def to_dict(self) -> dict:
        return {
            "scenario_id": self.scenario_id,
            "pattern_id": self.pattern_id,
            "month": self.month,
            "claim_count": self.claim_count,
            "denied_count": self.denied_count,
            "denial_rate": self.denial_rate,
            "target_rate": self.target_rate,
            "dollars_denied": str(self.dollars_denied),
            "dollars_at_risk": str(self.dollars_at_risk),
            "appeal_count": self.appeal_count,
            "appeal_rate": self.appeal_rate,
        }


@dataclass
class GeneratedBatch:
    """Everything one month (pipeline) or one tick (live generation) produced."""

    batch_key: str
    scenario_id: str | None
    claims: list[GeneratedClaim] = field(default_factory=list)
    appeals: list[GeneratedAppeal] = field(default_factory=list)
    events: list[GeneratedEvent] = field(default_factory=list)
    snapshots: list[PatternSnapshot] = field(default_factory=list)

    @property
    def line_count(self) -> int:
        return sum(len(c.lines) for c in self.claims)

    def counts(self) -> dict[str, int]:
        return {
            "claims": len(self.claims),
            "line_items": self.line_count,
            "appeals": len(self.appeals),
            "events": len(self.events),
            "snapshots": len(self.snapshots),
        }
