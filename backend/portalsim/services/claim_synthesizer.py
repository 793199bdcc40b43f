"""
Claim synthesis.

Builds one claim at a time from a provider, a date of service, a value tier
and a line-count range. Procedure codes come from the provider's specialty;
claims seeded by a denial pattern lead with one of the pattern's codes so the
pattern has a population to act on. The claim's billed amount is always the
sum of its lines.

All randomness flows through the ``rng`` argument.
"""

from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import Decimal

from portalsim.schemas.scenario import ProviderDefinition
from portalsim.seed.reference_data import (
    AGE_BANDS,
    DIAGNOSIS_CODES,
    FALLBACK_SPECIALTY,
    FIRST_NAMES_FEMALE,
    FIRST_NAMES_MALE,
    LAST_NAMES,
    MEMBER_ID_PREFIXES,
    PLACE_OFFICE,
    PROCEDURE_CODES_BY_SPECIALTY,
    PROCEDURE_DESCRIPTIONS,
    diagnosis_group_for,
    needs_modifier_25,
)
from portalsim.services.entities import (
    ClaimStatus,
    GeneratedClaim,
    GeneratedLineItem,
    Patient,
    ValueTier,
    _d,
)

TIER_WEIGHTS = [(ValueTier.LOW, 0.20), (ValueTier.MEDIUM, 0.60), (ValueTier.HIGH, 0.20)]

SUBMISSION_LAG_DAYS = (1, 7)
PROCESSING_LAG_DAYS = (3, 14)
PAID_RATIO = (0.70, 0.95)


class SynthesisError(RuntimeError):
    """Raised when a claim cannot be built from the inputs given."""


class ClaimIdSequence:
    """Sequential claim ids ``CLM-{TAG}-{YYYYMM}-{seq:06d}`` for one run."""

    def __init__(self, tag: str):
        self.tag = tag
        self._seq = 0

    def next(self, service_date: date) -> str:
        self._seq += 1
        return f"CLM-{self.tag}-{service_date.year:04d}{service_date.month:02d}-{self._seq:06d}"

    @property
    def issued(self) -> int:
        return self._seq


def pick_value_tier(rng: random.Random) -> ValueTier:
    roll = rng.random()
    cumulative = 0.0
    for tier, weight in TIER_WEIGHTS:
        cumulative += weight
        if roll < cumulative:
            return tier
    return TIER_WEIGHTS[-1][0]


def procedure_codes_for_specialty(
    specialty: str,
    code_map: dict[str, list[str]] | None = None,
) -> list[str]:
    """Codes billed by *specialty*; unknown specialties use the general practice list."""
    code_map = PROCEDURE_CODES_BY_SPECIALTY if code_map is None else code_map
    codes = code_map.get(specialty) or code_map.get(FALLBACK_SPECIALTY) or []
    if not codes:
        raise SynthesisError(f"No procedure codes mapped for specialty {specialty!r}")
    return codes


def generate_patient(rng: random.Random, ref_date: date) -> Patient:
    sex = "female" if rng.random() < 0.52 else "male"
    first = rng.choice(FIRST_NAMES_FEMALE if sex == "female" else FIRST_NAMES_MALE)
    last = rng.choice(LAST_NAMES)

    roll = rng.random()
    low, high = AGE_BANDS[-1][:2]
    for band_low, band_high, cumulative in AGE_BANDS:
        if roll < cumulative:
            low, high = band_low, band_high
            break
    age = rng.randint(low, high)
    dob = date(ref_date.year - age, rng.randint(1, 12), rng.randint(1, 28))

    member_id = f"{rng.choice(MEMBER_ID_PREFIXES)}{rng.randint(100_000_000, 999_999_999)}"
    return Patient(name=f"{first} {last}", dob=dob, sex=sex, member_id=member_id)


def _pick_codes(
    rng: random.Random,
    pool: list[str],
    line_count: int,
    seed_codes: list[str] | None,
) -> list[str]:
    codes: list[str] = []
    if seed_codes:
        codes.append(rng.choice(seed_codes))
    remaining = [c for c in pool if c not in codes]
    need = line_count - len(codes)
    if need <= 0:
        return codes
    if len(remaining) >= need:
        codes.extend(rng.sample(remaining, need))
    else:
        codes.extend(rng.choice(pool) for _ in range(need))
    return codes


def synthesize_claim(
    rng: random.Random,
    *,
    claim_id: str,
    provider: ProviderDefinition,
    date_of_service: date,
    tier: ValueTier,
    value_range: tuple[Decimal, Decimal],
    line_range: tuple[int, int],
    tax_id: str,
    scenario_id: str | None = None,
    seed_codes: list[str] | None = None,
    code_map: dict[str, list[str]] | None = None,
) -> GeneratedClaim:
    """Build one approved claim. The pattern injector may deny it afterwards."""
    min_lines, max_lines = line_range
    if min_lines < 1 or min_lines > max_lines:
        raise SynthesisError(f"Invalid claim line range {line_range}")
    low, high = value_range
    if low < 0 or low > high:
        raise SynthesisError(f"Invalid value range {value_range} for tier {tier.value}")

    pool = procedure_codes_for_specialty(provider.specialty, code_map)
    line_count = rng.randint(min_lines, max_lines)
    codes = _pick_codes(rng, pool, line_count, seed_codes)

    group = DIAGNOSIS_CODES[diagnosis_group_for(codes[0])]
    dx_count = min(len(group), rng.randint(1, 3))
    diagnosis_codes = rng.sample(group, dx_count)

    lines: list[GeneratedLineItem] = []
    for i, code in enumerate(codes):
        billed = _d(rng.uniform(float(low), float(high)))
        paid = _d(float(billed) * rng.uniform(*PAID_RATIO))
        modifiers: list[str] = []
        if not seed_codes and needs_modifier_25(code, codes[:i] + codes[i + 1:]):
            modifiers.append("25")
        lines.append(GeneratedLineItem(
            line_number=i + 1,
            procedure_code=code,
            description=PROCEDURE_DESCRIPTIONS.get(code, f"Procedure {code}"),
            units=rng.randint(1, 3),
            billed_amount=billed,
            paid_amount=paid,
            modifiers=modifiers,
            diagnosis_codes=list(diagnosis_codes) if i == 0 else [diagnosis_codes[0]],
        ))

    submission_date = date_of_service + timedelta(days=rng.randint(*SUBMISSION_LAG_DAYS))
    processing_date = submission_date + timedelta(days=rng.randint(*PROCESSING_LAG_DAYS))

    return GeneratedClaim(
        claim_id=claim_id,
        scenario_id=scenario_id,
        provider_id=provider.id,
        provider_npi=provider.npi,
        specialty=provider.specialty,
        tax_id=tax_id,
        patient=generate_patient(rng, date_of_service),
        date_of_service=date_of_service,
        submission_date=submission_date,
        processing_date=processing_date,
        value_tier=tier,
        diagnosis_codes=diagnosis_codes,
        lines=lines,
        place_of_service=PLACE_OFFICE,
        status=ClaimStatus.APPROVED,
    )
