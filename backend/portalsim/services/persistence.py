"""
Persistence sinks for generated batches.

The generator never talks to the database directly. It hands each batch to a
``PersistenceSink`` and reads back per-entity results. Claims whose id is
already stored are reported as failures and skipped, so a retried batch
does not duplicate rows.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsim import models
from portalsim.services.entities import (
    GeneratedAppeal,
    GeneratedBatch,
    GeneratedClaim,
    GeneratedEvent,
    PatternSnapshot,
)

if TYPE_CHECKING:
    from portalsim.services.scenario_pipeline import ScenarioRunResult

logger = logging.getLogger(__name__)


@dataclass
class EntityFailure:
    entity: str
    entity_id: str
    reason: str


@dataclass
class SinkResult:
    written: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    failures: list[EntityFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "written": dict(self.written),
            "failures": [f.__dict__ for f in self.failures[:100]],
        }


class PersistenceSink(Protocol):
    async def write_batch(self, batch: GeneratedBatch) -> SinkResult: ...

    async def record_run(self, result: ScenarioRunResult) -> None: ...


class InMemorySink:
    """Keeps everything in memory. Used by tests, dry runs and the CLI.

    ``fail_batches`` makes the next N writes raise; ``fail_after`` makes every
    write raise once that many batches have been stored.
    """

    def __init__(self, fail_batches: int = 0, fail_after: int | None = None):
        self.claims: dict[str, GeneratedClaim] = {}
        self.appeals: list[GeneratedAppeal] = []
        self.events: list[GeneratedEvent] = []
        self.snapshots: list[PatternSnapshot] = []
        self.runs: list[ScenarioRunResult] = []
        self.batches_written = 0
        self.fail_batches = fail_batches
        self.fail_after = fail_after

    async def write_batch(self, batch: GeneratedBatch) -> SinkResult:
        if self.fail_after is not None and self.batches_written >= self.fail_after:
            raise RuntimeError(f"Persistence unavailable for batch {batch.batch_key}")
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise RuntimeError(f"Persistence unavailable for batch {batch.batch_key}")

        result = SinkResult()
        accepted: set[str] = set()
        for claim in batch.claims:
            if claim.claim_id in self.claims:
                result.failures.append(EntityFailure("claim", claim.claim_id, "duplicate claim_id"))
                continue
            self.claims[claim.claim_id] = claim
            accepted.add(claim.claim_id)
            result.written["claims"] += 1
            result.written["line_items"] += len(claim.lines)

        for appeal in batch.appeals:
            if appeal.claim_id not in accepted:
                result.failures.append(EntityFailure("appeal", appeal.appeal_id, "claim not written"))
                continue
            self.appeals.append(appeal)
            result.written["appeals"] += 1

        self.events.extend(batch.events)
        result.written["events"] += len(batch.events)
        self.snapshots.extend(batch.snapshots)
        result.written["snapshots"] += len(batch.snapshots)

        self.batches_written += 1
        return result

    async def record_run(self, result: ScenarioRunResult) -> None:
        self.runs.append(result)


class SqlAlchemySink:
    """Writes each batch in its own transaction; a failure rolls the batch back and re-raises."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def write_batch(self, batch: GeneratedBatch) -> SinkResult:
        result = SinkResult()
        async with self.session_factory() as db:
            try:
                existing: set[str] = set()
                if batch.claims:
                    rows = await db.execute(
                        select(models.Claim.claim_id).where(
                            models.Claim.claim_id.in_([c.claim_id for c in batch.claims])
                        )
                    )
                    existing = set(rows.scalars())

                accepted: set[str] = set()
                for claim in batch.claims:
                    if claim.claim_id in existing:
                        result.failures.append(EntityFailure("claim", claim.claim_id, "duplicate claim_id"))
                        continue
                    db.add(_claim_row(claim))
                    accepted.add(claim.claim_id)
                    result.written["claims"] += 1
                    result.written["line_items"] += len(claim.lines)

                for appeal in batch.appeals:
                    if appeal.claim_id not in accepted:
                        result.failures.append(EntityFailure("appeal", appeal.appeal_id, "claim not written"))
                        continue
                    db.add(_appeal_row(appeal))
                    result.written["appeals"] += 1

                seen_events: set[str] = set()
                if batch.events:
                    rows = await db.execute(
                        select(models.LearningEvent.event_id).where(
                            models.LearningEvent.event_id.in_([e.event_id for e in batch.events])
                        )
                    )
                    seen_events = set(rows.scalars())
                for event in batch.events:
                    if event.event_id in seen_events:
                        result.failures.append(EntityFailure("event", event.event_id, "duplicate event_id"))
                        continue
                    db.add(_event_row(event))
                    result.written["events"] += 1

                # A replayed month replaces its snapshot
                for snapshot in batch.snapshots:
                    await db.execute(delete(models.PatternSnapshot).where(
                        models.PatternSnapshot.scenario_id == snapshot.scenario_id,
                        models.PatternSnapshot.pattern_id == snapshot.pattern_id,
                        models.PatternSnapshot.month == snapshot.month,
                    ))
                    db.add(_snapshot_row(snapshot))
                result.written["snapshots"] += len(batch.snapshots)

                await db.commit()
            except Exception:
                await db.rollback()
                logger.error("Rolled back batch %s", batch.batch_key, exc_info=True)
                raise

        if result.failures:
            logger.warning("Batch %s: %d entities skipped", batch.batch_key, len(result.failures))
        return result

    async def record_run(self, result: ScenarioRunResult) -> None:
        async with self.session_factory() as db:
            db.add(models.ScenarioRun(
                run_id=result.run_id,
                scenario_id=result.scenario_id,
                scenario_name=result.scenario_name,
                status=result.state.value,
                dry_run=result.dry_run,
                duration_seconds=result.duration_seconds,
                error=result.error,
                validation_report=result.validation.to_dict(),
                summary=result.summary.to_dict() if result.summary else None,
                warnings=list(result.warnings),
            ))
            await db.commit()


# ── Row mapping ──────────────────────────────────────────────────────────────

def _claim_row(claim: GeneratedClaim) -> models.Claim:
    return models.Claim(
        claim_id=claim.claim_id,
        scenario_id=claim.scenario_id,
        provider_id=claim.provider_id,
        provider_npi=claim.provider_npi,
        specialty=claim.specialty,
        tax_id=claim.tax_id,
        patient_name=claim.patient.name,
        patient_dob=claim.patient.dob,
        patient_sex=claim.patient.sex,
        member_id=claim.patient.member_id,
        date_of_service=claim.date_of_service,
        submission_date=claim.submission_date,
        processing_date=claim.processing_date,
        place_of_service=claim.place_of_service,
        value_tier=claim.value_tier.value,
        diagnosis_codes=list(claim.diagnosis_codes),
        status=claim.status.value,
        billed_amount=claim.billed_amount,
        paid_amount=claim.paid_amount,
        denial_reason=claim.denial_reason,
        denial_category=claim.denial_category.value if claim.denial_category else None,
        pattern_id=claim.pattern_id,
        policy_ids=list(claim.policy_ids),
        edit_codes=list(claim.edit_codes),
        fix_guidance=claim.fix_guidance,
        lines=[
            models.ClaimLineItem(
                line_number=line.line_number,
                procedure_code=line.procedure_code,
                description=line.description,
                units=line.units,
                modifiers=list(line.modifiers),
                diagnosis_codes=list(line.diagnosis_codes),
                billed_amount=line.billed_amount,
                paid_amount=line.paid_amount,
                status=line.status.value,
                pattern_id=line.pattern_id,
                policy_ids=list(line.policy_ids),
                edit_codes=list(line.edit_codes),
            )
            for line in claim.lines
        ],
    )


def _appeal_row(appeal: GeneratedAppeal) -> models.ClaimAppeal:
    return models.ClaimAppeal(
        appeal_id=appeal.appeal_id,
        claim_id=appeal.claim_id,
        pattern_id=appeal.pattern_id,
        category=appeal.category.value if appeal.category else None,
        appeal_reason=appeal.appeal_reason,
        denial_date=appeal.denial_date,
        filed_date=appeal.filed_date,
        outcome_date=appeal.outcome_date,
        outcome=appeal.outcome.value,
        amount=appeal.amount,
    )


def _event_row(event: GeneratedEvent) -> models.LearningEvent:
    return models.LearningEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        occurred_at=event.occurred_at,
        scenario_id=event.scenario_id,
        pattern_id=event.pattern_id,
        claim_id=event.claim_id,
        session_id=event.session_id,
        context=event.context,
        device=event.device,
        event_metadata=event.metadata or None,
    )


def _snapshot_row(snapshot: PatternSnapshot) -> models.PatternSnapshot:
    return models.PatternSnapshot(
        scenario_id=snapshot.scenario_id,
        pattern_id=snapshot.pattern_id,
        month=snapshot.month,
        claim_count=snapshot.claim_count,
        denied_count=snapshot.denied_count,
        denial_rate=snapshot.denial_rate,
        target_rate=snapshot.target_rate,
        dollars_denied=snapshot.dollars_denied,
        dollars_at_risk=snapshot.dollars_at_risk,
        appeal_count=snapshot.appeal_count,
        appeal_rate=snapshot.appeal_rate,
    )
