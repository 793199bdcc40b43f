"""
Appeal synthesis for denied claims.

Whether an appeal is filed is a Bernoulli draw at the configured appeal
rate. The outcome comes from the denial category's overturn probability:
modifier problems are usually fixed on appeal, non-covered services rarely
are. Outcomes whose resolution date falls after ``as_of`` stay pending.
"""

from __future__ import annotations

import random
from datetime import date, timedelta

from portalsim.schemas.scenario import PatternCategory
from portalsim.seed.reference_data import (
    DEFAULT_APPEAL_REASON,
    DEFAULT_OVERTURN_RATE,
    DENIAL_CATEGORY_PROFILES,
)
from portalsim.services.entities import AppealOutcome, GeneratedAppeal, GeneratedClaim, random_id

DEFAULT_FILING_LAG_DAYS = (3, 14)
DEFAULT_RESOLUTION_LAG_DAYS = (14, 45)


def overturn_rate_for(category: PatternCategory | None) -> float:
    profile = DENIAL_CATEGORY_PROFILES.get(category) if category else None
    return profile["overturn_rate"] if profile else DEFAULT_OVERTURN_RATE


def appeal_reason_for(category: PatternCategory | None) -> str:
    profile = DENIAL_CATEGORY_PROFILES.get(category) if category else None
    return profile["appeal_reason"] if profile else DEFAULT_APPEAL_REASON


def synthesize_appeal(
    rng: random.Random,
    claim: GeneratedClaim,
    *,
    appeal_rate: float,
    filing_lag_days: tuple[int, int] = DEFAULT_FILING_LAG_DAYS,
    resolution_lag_days: tuple[int, int] = DEFAULT_RESOLUTION_LAG_DAYS,
    as_of: date | None = None,
) -> GeneratedAppeal | None:
    """Maybe file an appeal for a denied *claim*; returns None when none is filed."""
    if not 0 <= appeal_rate <= 1:
        raise ValueError(f"appeal_rate must be within [0, 1], got {appeal_rate}")
    if not claim.is_denied:
        return None
    if rng.random() >= appeal_rate:
        return None

    category = claim.denial_category
    overturned = rng.random() < overturn_rate_for(category)

    denial_date = claim.processing_date
    filed_date = denial_date + timedelta(days=rng.randint(*filing_lag_days))
    outcome_date = filed_date + timedelta(days=rng.randint(*resolution_lag_days))

    if as_of is not None and outcome_date > as_of:
        outcome = AppealOutcome.PENDING
    else:
        outcome = AppealOutcome.OVERTURNED if overturned else AppealOutcome.UPHELD

    return GeneratedAppeal(
        appeal_id=random_id(rng, "APL"),
        claim_id=claim.claim_id,
        pattern_id=claim.pattern_id,
        category=category,
        appeal_reason=appeal_reason_for(category),
        denial_date=denial_date,
        filed_date=filed_date,
        outcome_date=outcome_date,
        outcome=outcome,
        amount=claim.billed_amount,
    )


def synthesize_appeals(
    rng: random.Random,
    denied_claims: list[GeneratedClaim],
    *,
    appeal_rate: float,
    filing_lag_days: tuple[int, int] = DEFAULT_FILING_LAG_DAYS,
    resolution_lag_days: tuple[int, int] = DEFAULT_RESOLUTION_LAG_DAYS,
    as_of: date | None = None,
) -> list[GeneratedAppeal]:
    appeals = []
    for claim in denied_claims:
        appeal = synthesize_appeal(
            rng,
            claim,
            appeal_rate=appeal_rate,
            filing_lag_days=filing_lag_days,
            resolution_lag_days=resolution_lag_days,
            as_of=as_of,
        )
        if appeal is not None:
            appeals.append(appeal)
    return appeals


def appeal_stats(appeals: list[GeneratedAppeal]) -> dict:
    """Totals by outcome; success rate is over resolved appeals only."""
    overturned = sum(1 for a in appeals if a.outcome == AppealOutcome.OVERTURNED)
    upheld = sum(1 for a in appeals if a.outcome == AppealOutcome.UPHELD)
    pending = sum(1 for a in appeals if a.outcome == AppealOutcome.PENDING)
    resolved = overturned + upheld
    return {
        "total": len(appeals),
        "overturned": overturned,
        "upheld": upheld,
        "pending": pending,
        "success_rate": round(overturned / resolved * 100, 2) if resolved else 0.0,
    }
