"""
Continuous generation — drips synthetic claims, appeals and events for live demos.

One ``GenerationManager`` exists per process (created in the app lifespan).
Only one job can run at a time: ``start`` while running is rejected, not
queued. The job is an asyncio task that ticks on an interval derived from
claims/day and the speed multiplier, and waits on a stop event between ticks
so ``stop`` takes effect before the next tick. An in-flight tick finishes.

A tick that raises is logged and counted; the loop keeps going until
``max_consecutive_failures`` ticks in a row have failed, then stops itself.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from portalsim.config import settings
from portalsim.middleware.metrics import (
    claims_generated_total,
    generation_batches_total,
    generation_running,
)
from portalsim.middleware.request_context import bind_run_id
from portalsim.schemas.generation import (
    BatchResponse,
    GenerationConfig,
    GenerationState,
    GenerationStats,
    GenerationStatus,
    PatternInjectionConfig,
    StartResponse,
    StopResponse,
)
from portalsim.schemas.scenario import PatternCategory, PatternTier, PolicyReference, ProviderDefinition
from portalsim.seed.policy_library import PolicyResolver, default_resolver
from portalsim.seed.reference_data import (
    DEFAULT_PROVIDERS,
    DEFAULT_TAX_ID,
    DEFAULT_VALUE_RANGES,
    PREDEFINED_PATTERNS,
)
from portalsim.services.appeal_synthesizer import synthesize_appeals
from portalsim.services.claim_synthesizer import ClaimIdSequence, pick_value_tier, synthesize_claim
from portalsim.services.entities import GeneratedBatch
from portalsim.services.event_synthesizer import synthesize_event_batch
from portalsim.services.pattern_injector import InjectionTarget, PatternInjector
from portalsim.services.persistence import PersistenceSink, SinkResult
from portalsim.services.timeline import random_date

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
LINE_RANGE = (1, 4)
# Share of live claims that lead with a configured pattern's codes
PATTERN_SEED_SHARE = 0.5


@dataclass(frozen=True)
class TickPlan:
    interval_seconds: float
    batch_size: int


class GenerationManager:
    """Start/stop/status controller for the continuous generation job."""

    def __init__(
        self,
        sink: PersistenceSink,
        *,
        rng: random.Random | None = None,
        policies: PolicyResolver | None = None,
        batch_size: int | None = None,
        min_interval_seconds: float | None = None,
        lookback_days: int | None = None,
        max_consecutive_failures: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sink = sink
        self.rng = rng or random.Random(settings.random_seed)
        self.policies = policies or default_resolver
        self.batch_size = batch_size or settings.generation_batch_size
        self.min_interval_seconds = min_interval_seconds or settings.generation_min_interval_seconds
        self.lookback_days = lookback_days or settings.generation_lookback_days
        self.max_consecutive_failures = max_consecutive_failures or settings.generation_max_consecutive_failures
        self.clock = clock
        self.providers = [ProviderDefinition(**p) for p in DEFAULT_PROVIDERS]

        self._lock = asyncio.Lock()
        self._state = GenerationState.IDLE
        self._config: GenerationConfig | None = None
        self._stats = GenerationStats()
        self._plan: TickPlan | None = None
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._sim_now: datetime | None = None
        self._ids = self._new_id_sequence()
        self._job_id = ""

    @property
    def state(self) -> GenerationState:
        return self._state

    def plan_ticks(self, config: GenerationConfig) -> TickPlan:
        """Tick interval and batch size that deliver claims_per_day at *speed*."""
        batches_per_day = config.claims_per_day / self.batch_size
        interval = SECONDS_PER_DAY / batches_per_day / config.speed
        if interval >= self.min_interval_seconds:
            return TickPlan(interval, self.batch_size)
        # Clamped: grow the batch so the daily rate still holds
        batch = math.ceil(self.batch_size * self.min_interval_seconds / interval)
        return TickPlan(self.min_interval_seconds, batch)

    def resolve_patterns(self, patterns: list[PatternInjectionConfig]) -> list[InjectionTarget]:
        """Merge request overrides onto the predefined pattern catalogue.

        Raises ValueError for an unknown pattern that does not carry its own
        category and denial reason.
        """
        targets = []
        for cfg in patterns:
            base = PREDEFINED_PATTERNS.get(cfg.pattern_id, {})
            category = cfg.category or base.get("category")
            denial_reason = cfg.denial_reason or base.get("denial_reason")
            if category is None or not denial_reason:
                raise ValueError(
                    f"Unknown pattern {cfg.pattern_id}: category and denialReason are required"
                )
            codes = cfg.procedure_codes if cfg.procedure_codes is not None else base.get("procedure_codes", [])
            targets.append(InjectionTarget(
                pattern_id=cfg.pattern_id,
                category=PatternCategory(category),
                tier=PatternTier(cfg.tier or base.get("tier", PatternTier.MEDIUM)),
                denial_reason=denial_reason,
                target_rate=round(cfg.rate * 100, 4),
                procedure_codes=tuple(codes),
                policies=tuple(PolicyReference(id=pid) for pid in base.get("policy_ids", [])),
            ))
        return targets

    def _new_id_sequence(self) -> ClaimIdSequence:
        """Live ids carry a per-start stamp so restarts and sibling workers never reuse one."""
        return ClaimIdSequence(f"LIVE{self.clock():%y%m%d%H%M%S}{secrets.token_hex(3).upper()}")

    # ── Control surface ──────────────────────────────────────────────────────

    async def start(self, config: GenerationConfig) -> StartResponse:
        async with self._lock:
            if self._state != GenerationState.IDLE:
                return StartResponse(accepted=False, message=f"Generation already {self._state.value}")
            try:
                self.resolve_patterns(config.patterns)
            except ValueError as exc:
                return StartResponse(accepted=False, message=str(exc))

            self._config = config
            self._plan = self.plan_ticks(config)
            self._stats = GenerationStats(started_at=self.clock())
            self._sim_now = self.clock()
            self._stop_event = asyncio.Event()
            self._job_id = f"GEN-{self.clock():%Y%m%d%H%M%S}"
            self._ids = self._new_id_sequence()
            self._state = GenerationState.RUNNING
            generation_running.set(1)
            self._task = asyncio.create_task(self._run_loop(), name="portalsim-generation")

        logger.info(
            "Generation started: %d claims/day at %sx, %d claims every %.2fs",
            config.claims_per_day, config.speed, self._plan.batch_size, self._plan.interval_seconds,
        )
        return StartResponse(
            accepted=True,
            message=f"Generation started: {config.claims_per_day} claims/day at {config.speed}x speed",
        )

    async def stop(self) -> StopResponse:
        async with self._lock:
            if self._state == GenerationState.IDLE:
                return StopResponse(stopped=False, message="Generation not running", stats=self._stats.model_copy())
            if self._state == GenerationState.STOPPING:
                return StopResponse(stopped=False, message="Generation already stopping", stats=self._stats.model_copy())
            self._state = GenerationState.STOPPING
            self._stop_event.set()
            task = self._task

        if task is not None:
            await task
        stats = self._stats.model_copy()
        logger.info("Generation stopped after %d batches", stats.batches_completed)
        return StopResponse(stopped=True, message="Generation stopped", stats=stats)

    def status(self) -> GenerationStatus:
        return GenerationStatus(
            state=self._state,
            config=self._config if self._state != GenerationState.IDLE else None,
            stats=self._stats.model_copy(),
            interval_seconds=self._plan.interval_seconds if self._plan else None,
            batch_size=self._plan.batch_size if self._plan else None,
            simulated_date=self._sim_now,
        )

    async def run_single_batch(self, config: GenerationConfig) -> BatchResponse:
        """One batch outside the timer, for previews. Sink errors propagate."""
        targets = self.resolve_patterns(config.patterns)
        batch = self.build_batch(config, targets, self.batch_size, self.clock())
        result = await self.sink.write_batch(batch)
        claims_generated_total.labels(source="single_batch").inc(result.written["claims"])
        return self._batch_response(batch, result)

    async def shutdown(self):
        if self._state != GenerationState.IDLE:
            await self.stop()

    # ── Loop ─────────────────────────────────────────────────────────────────

    async def _run_loop(self):
        targets = self.resolve_patterns(self._config.patterns)
        with bind_run_id(self._job_id):
            try:
                while not self._stop_event.is_set():
                    await self._tick(targets)
                    if self._stats.consecutive_failures >= self.max_consecutive_failures:
                        logger.error(
                            "Stopping generation after %d consecutive failed batches",
                            self._stats.consecutive_failures,
                        )
                        break
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=self._plan.interval_seconds)
                    except asyncio.TimeoutError:
                        pass
            finally:
                self._state = GenerationState.IDLE
                self._task = None
                generation_running.set(0)

    async def _tick(self, targets: list[InjectionTarget]):
        config, plan = self._config, self._plan
        stats = self._stats
        try:
            batch = self.build_batch(config, targets, plan.batch_size, self._sim_now)
            result = await self.sink.write_batch(batch)
        except Exception as exc:
            stats.errors += 1
            stats.batches_failed += 1
            stats.consecutive_failures += 1
            stats.last_error = f"{type(exc).__name__}: {exc}"
            generation_batches_total.labels(status="failed").inc()
            logger.error("Generation batch failed: %s", exc, exc_info=True)
            return

        rejected = {f.entity_id for f in result.failures if f.entity == "claim"}
        stats.claims_generated += result.written["claims"]
        stats.claims_denied += sum(1 for c in batch.claims if c.is_denied and c.claim_id not in rejected)
        stats.appeals_generated += result.written["appeals"]
        stats.events_generated += result.written["events"]
        stats.persistence_failures += len(result.failures)
        if result.failures:
            logger.warning("Sink rejected %d entities in batch %s", len(result.failures), batch.batch_key)
        stats.batches_completed += 1
        stats.consecutive_failures = 0
        stats.last_batch_at = self.clock()
        generation_batches_total.labels(status="completed").inc()
        claims_generated_total.labels(source="live").inc(result.written["claims"])
        self._sim_now += timedelta(days=plan.batch_size / config.claims_per_day)

    # ── Batch building ───────────────────────────────────────────────────────

    def build_batch(
        self,
        config: GenerationConfig,
        targets: list[InjectionTarget],
        size: int,
        now: datetime,
    ) -> GeneratedBatch:
        today = now.date()
        window_start = today - timedelta(days=self.lookback_days)
        weights = [p.claim_weight for p in self.providers]
        seedable = [t for t in targets if t.procedure_codes]

        claims = []
        for _ in range(size):
            provider = self.rng.choices(self.providers, weights=weights)[0]
            day = random_date(self.rng, window_start, today)
            tier = pick_value_tier(self.rng)
            seed_codes = None
            if seedable and self.rng.random() < PATTERN_SEED_SHARE:
                seed_codes = list(self.rng.choice(seedable).procedure_codes)
            claims.append(synthesize_claim(
                self.rng,
                claim_id=self._ids.next(day),
                provider=provider,
                date_of_service=day,
                tier=tier,
                value_range=DEFAULT_VALUE_RANGES[tier.value],
                line_range=LINE_RANGE,
                tax_id=DEFAULT_TAX_ID,
                scenario_id=config.scenario_id,
                seed_codes=seed_codes,
            ))

        injection = PatternInjector(self.rng, self.policies).inject(claims, targets)

        appeals = []
        if config.generate_appeals:
            appeals = synthesize_appeals(
                self.rng, injection.newly_denied, appeal_rate=config.appeal_rate, as_of=today,
            )

        events = []
        if config.generate_events:
            # Events keep pace with claims whatever size the tick was planned at
            count = math.ceil(config.events_per_day * size / config.claims_per_day)
            events = synthesize_event_batch(
                self.rng, count, now=now,
                pattern_ids=[t.pattern_id for t in targets],
                scenario_id=config.scenario_id,
            )

        return GeneratedBatch(
            batch_key=f"live:{now:%Y%m%dT%H%M%S}:{self._ids.issued}",
            scenario_id=config.scenario_id,
            claims=claims,
            appeals=appeals,
            events=events,
        )

    @staticmethod
    def _batch_response(batch: GeneratedBatch, result: SinkResult) -> BatchResponse:
        return BatchResponse(
            claims=len(batch.claims),
            denied=sum(1 for c in batch.claims if c.is_denied),
            appeals=len(batch.appeals),
            events=len(batch.events),
            persisted=dict(result.written),
            failures=len(result.failures),
        )
