"""
Pattern injection.

Given one batch of freshly synthesized claims and the patterns active for it,
deny just enough claims per pattern to hit each pattern's target rate.

A pattern's population is the set of claims whose procedure codes intersect
the pattern's codes, or every claim when the pattern lists none. The target
denied count is taken over that population. Candidates are population claims
not already denied, and in particular not claimed by a higher-priority
pattern earlier in the same pass. Patterns are processed by descending tier
severity, ties kept in input order. When candidates run short the count is
capped and the shortfall is reported.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal

from portalsim.schemas.scenario import PatternCategory, PatternTier, PolicyReference
from portalsim.seed.policy_library import PolicyResolver, default_resolver
from portalsim.seed.reference_data import DENIAL_CATEGORY_PROFILES
from portalsim.services.curves import distribute_denied
from portalsim.services.entities import ClaimStatus, GeneratedClaim

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InjectionTarget:
    pattern_id: str
    category: PatternCategory
    tier: PatternTier
    denial_reason: str
    target_rate: float  # percent, 0..100
    procedure_codes: tuple[str, ...] = ()
    policies: tuple[PolicyReference, ...] = ()

    def matches(self, claim: GeneratedClaim) -> bool:
        if not self.procedure_codes:
            return True
        return any(code in self.procedure_codes for code in claim.procedure_codes)


@dataclass
class PatternInjection:
    pattern_id: str
    population: int
    target: int
    denied: int
    target_rate: float
    claim_ids: list[str] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return self.target - self.denied

    @property
    def realized_rate(self) -> float:
        if not self.population:
            return 0.0
        return round(self.denied / self.population * 100, 2)


@dataclass
class InjectionReport:
    patterns: dict[str, PatternInjection] = field(default_factory=dict)
    newly_denied: list[GeneratedClaim] = field(default_factory=list)

    @property
    def shortfalls(self) -> list[PatternInjection]:
        return [p for p in self.patterns.values() if p.shortfall > 0]


class PatternInjector:
    """Marks claims denied on behalf of denial patterns."""

    def __init__(self, rng: random.Random, policies: PolicyResolver | None = None):
        self.rng = rng
        self.policies = policies or default_resolver

    def inject(self, claims: list[GeneratedClaim], targets: list[InjectionTarget]) -> InjectionReport:
        report = InjectionReport()
        ordered = sorted(
            enumerate(targets),
            key=lambda pair: (-PatternTier(pair[1].tier).severity, pair[0]),
        )

        for _, target in ordered:
            population = [c for c in claims if target.matches(c)]
            wanted = distribute_denied(len(population), target.target_rate)
            candidates = [c for c in population if not c.is_denied]

            take = min(wanted, len(candidates))
            chosen = self.rng.sample(candidates, take) if take else []
            for claim in chosen:
                self._deny(claim, target)

            result = PatternInjection(
                pattern_id=target.pattern_id,
                population=len(population),
                target=wanted,
                denied=take,
                target_rate=target.target_rate,
                claim_ids=[c.claim_id for c in chosen],
            )
            report.patterns[target.pattern_id] = result
            report.newly_denied.extend(chosen)

            if result.shortfall > 0:
                logger.warning(
                    "Pattern %s short of target: %d eligible of %d wanted (population %d)",
                    target.pattern_id, take, wanted, len(population),
                )
        return report

    def _triggered_policies(self, target: InjectionTarget) -> list[str]:
        triggered = [p.id for p in target.policies if self.rng.random() < p.trigger_rate]
        if not triggered and target.policies:
            triggered = [target.policies[0].id]
        return triggered

    def _deny(self, claim: GeneratedClaim, target: InjectionTarget):
        policy_ids = self._triggered_policies(target)
        profile = DENIAL_CATEGORY_PROFILES.get(PatternCategory(target.category))
        edit_codes = [profile["edit_code"]] if profile else []

        guidance = None
        for pid in policy_ids:
            guidance = self.policies.guidance(pid)
            if guidance:
                break

        claim.status = ClaimStatus.DENIED
        claim.denial_reason = target.denial_reason
        claim.denial_category = PatternCategory(target.category)
        claim.pattern_id = target.pattern_id
        claim.policy_ids = policy_ids
        claim.edit_codes = edit_codes
        claim.fix_guidance = guidance.fix_guidance if guidance else None

        for line in claim.lines:
            line.status = ClaimStatus.DENIED
            line.paid_amount = Decimal("0.00")
            if not target.procedure_codes or line.procedure_code in target.procedure_codes:
                line.pattern_id = target.pattern_id
                line.policy_ids = list(policy_ids)
                line.edit_codes = list(edit_codes)
