"""Tests for the continuous generation manager."""

import asyncio
import random
from datetime import datetime, timedelta

import pytest

from portalsim.schemas.generation import GenerationConfig, GenerationState, PatternInjectionConfig
from portalsim.services.generation_manager import GenerationManager, TickPlan
from portalsim.services.persistence import InMemorySink

MOD25 = PatternInjectionConfig(pattern_id="MOD25-MISSING", rate=0.5)
# 1000 batches a simulated day at 1000x: one tick every 86ms
FAST = {"claims_per_day": 10000, "speed": 1000}


async def _wait_for(predicate, timeout: float = 3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestPlanTicks:
    def test_interval_from_daily_rate(self):
        gm = GenerationManager(InMemorySink(), batch_size=10, min_interval_seconds=1.0)
        assert gm.plan_ticks(GenerationConfig(claims_per_day=100, speed=1)) == TickPlan(8640.0, 10)

    def test_speed_shortens_interval(self):
        gm = GenerationManager(InMemorySink(), batch_size=10, min_interval_seconds=1.0)
        plan = gm.plan_ticks(GenerationConfig(claims_per_day=100, speed=10))
        assert plan.interval_seconds == pytest.approx(864.0)

    def test_clamped_interval_grows_batch(self):
        gm = GenerationManager(InMemorySink(), batch_size=10, min_interval_seconds=1.0)
        plan = gm.plan_ticks(GenerationConfig(claims_per_day=10000, speed=1000))
        assert plan == TickPlan(1.0, 116)

    def test_interval_above_minimum_keeps_batch(self):
        gm = GenerationManager(InMemorySink(), batch_size=10, min_interval_seconds=0.01)
        plan = gm.plan_ticks(GenerationConfig(claims_per_day=10000, speed=1000))
        assert plan.interval_seconds == pytest.approx(0.0864)
        assert plan.batch_size == 10

    def test_tiny_minimum_interval_clamps(self):
        gm = GenerationManager(InMemorySink(), batch_size=10, min_interval_seconds=0.5)
        assert gm.plan_ticks(GenerationConfig(claims_per_day=10000, speed=1000)) == TickPlan(0.5, 58)


class TestResolvePatterns:
    @pytest.fixture
    def manager(self):
        return GenerationManager(InMemorySink(), rng=random.Random(0))

    def test_predefined_pattern(self, manager):
        [target] = manager.resolve_patterns([PatternInjectionConfig(pattern_id="AUTH-MISSING", rate=0.25)])
        assert target.target_rate == 25
        assert target.tier.value == "critical"
        assert "27447" in target.procedure_codes
        assert [p.id for p in target.policies] == ["POL-AUTH-PROC", "POL-AUTH-MRI"]

    def test_overrides_apply(self, manager):
        [target] = manager.resolve_patterns([PatternInjectionConfig(
            pattern_id="MOD25-MISSING", rate=0.1, procedure_codes=["99214"], tier="low",
        )])
        assert target.procedure_codes == ("99214",)
        assert target.tier.value == "low"

    def test_custom_pattern_needs_category_and_reason(self, manager):
        with pytest.raises(ValueError, match="Unknown pattern CUSTOM-1"):
            manager.resolve_patterns([PatternInjectionConfig(pattern_id="CUSTOM-1", rate=0.2)])
        [target] = manager.resolve_patterns([PatternInjectionConfig(
            pattern_id="CUSTOM-1", rate=0.2, category="timing", denial_reason="Too soon",
        )])
        assert target.procedure_codes == ()


@pytest.mark.asyncio
class TestStartStop:
    async def test_start_then_stop(self, manager, memory_sink):
        started = await manager.start(GenerationConfig(patterns=[MOD25], **FAST))
        assert started.accepted
        assert started.message == "Generation started: 10000 claims/day at 1000.0x speed"
        assert manager.state == GenerationState.RUNNING

        await _wait_for(lambda: manager.status().stats.batches_completed >= 2)
        stopped = await manager.stop()

        assert stopped.stopped
        assert stopped.stats.batches_completed >= 2
        assert stopped.stats.claims_generated == len(memory_sink.claims)
        assert manager.state == GenerationState.IDLE
        assert manager.status().config is None

    async def test_second_start_rejected(self, manager):
        assert (await manager.start(GenerationConfig())).accepted
        again = await manager.start(GenerationConfig(claims_per_day=500))
        assert not again.accepted
        assert again.message == "Generation already running"
        assert manager.status().config.claims_per_day == 100

    async def test_stop_when_idle(self, manager):
        result = await manager.stop()
        assert not result.stopped
        assert result.message == "Generation not running"

    async def test_unknown_pattern_rejected(self, manager):
        result = await manager.start(GenerationConfig(
            patterns=[PatternInjectionConfig(pattern_id="NOPE", rate=0.5)],
        ))
        assert not result.accepted
        assert "Unknown pattern NOPE" in result.message
        assert manager.state == GenerationState.IDLE

    async def test_restart_after_stop(self, manager):
        await manager.start(GenerationConfig())
        await manager.stop()
        assert (await manager.start(GenerationConfig())).accepted

    async def test_status_while_running(self, manager):
        await manager.start(GenerationConfig(claims_per_day=200, speed=2))
        status = manager.status()
        assert status.state == GenerationState.RUNNING
        assert status.config.claims_per_day == 200
        assert status.interval_seconds == pytest.approx(2160.0)
        assert status.stats.started_at is not None


@pytest.mark.asyncio
class TestFailures:
    async def test_stops_after_consecutive_failures(self):
        gm = GenerationManager(
            InMemorySink(fail_batches=1000),
            rng=random.Random(1), min_interval_seconds=0.01, max_consecutive_failures=3,
        )
        try:
            await gm.start(GenerationConfig(**FAST))
            await _wait_for(lambda: gm.state == GenerationState.IDLE)
            stats = gm.status().stats
            assert stats.errors == 3
            assert stats.batches_failed == 3
            assert stats.batches_completed == 0
            assert stats.last_error.startswith("RuntimeError: Persistence unavailable")
        finally:
            await gm.shutdown()

    async def test_recovers_after_transient_failures(self):
        sink = InMemorySink(fail_batches=2)
        gm = GenerationManager(sink, rng=random.Random(2), min_interval_seconds=0.01, max_consecutive_failures=3)
        try:
            await gm.start(GenerationConfig(**FAST))
            await _wait_for(lambda: gm.status().stats.batches_completed >= 2)
            stats = gm.status().stats
            assert stats.errors == 2
            assert stats.consecutive_failures == 0
            assert gm.state == GenerationState.RUNNING
        finally:
            await gm.shutdown()
        assert sink.batches_written >= 2


@pytest.mark.asyncio
class TestSingleBatch:
    async def test_single_batch_persists(self, manager, memory_sink):
        result = await manager.run_single_batch(GenerationConfig(patterns=[MOD25]))
        assert result.claims == manager.batch_size
        assert result.persisted["claims"] == result.claims
        assert result.failures == 0
        assert len(memory_sink.claims) == result.claims
        assert manager.state == GenerationState.IDLE

    async def test_single_batch_unknown_pattern(self, manager):
        with pytest.raises(ValueError):
            await manager.run_single_batch(GenerationConfig(
                patterns=[PatternInjectionConfig(pattern_id="NOPE", rate=0.5)],
            ))

    async def test_sink_error_propagates(self):
        gm = GenerationManager(InMemorySink(fail_batches=1), rng=random.Random(3))
        with pytest.raises(RuntimeError):
            await gm.run_single_batch(GenerationConfig())


class TestBuildBatch:
    def test_batch_contents(self):
        now = datetime(2025, 7, 1, 12, 0)
        gm = GenerationManager(InMemorySink(), rng=random.Random(4), batch_size=50, lookback_days=30)
        config = GenerationConfig(patterns=[PatternInjectionConfig(pattern_id="DOC-INCOMPLETE", rate=0.2)])
        batch = gm.build_batch(config, gm.resolve_patterns(config.patterns), 50, now)

        assert len(batch.claims) == 50
        assert sum(1 for c in batch.claims if c.is_denied) == 10
        assert all(now.date() - timedelta(days=30) <= c.date_of_service <= now.date() for c in batch.claims)
        assert all(c.claim_id.startswith("CLM-LIVE") for c in batch.claims)
        assert len(batch.events) == 10

    def test_appeals_and_events_can_be_disabled(self):
        gm = GenerationManager(InMemorySink(), rng=random.Random(5))
        config = GenerationConfig(
            generate_appeals=False, generate_events=False,
            patterns=[PatternInjectionConfig(pattern_id="DOC-INCOMPLETE", rate=1.0)],
        )
        batch = gm.build_batch(config, gm.resolve_patterns(config.patterns), 10, datetime(2025, 7, 1))
        assert batch.appeals == []
        assert batch.events == []
        assert all(c.is_denied for c in batch.claims)

    def test_events_follow_clamped_tick_size(self):
        gm = GenerationManager(InMemorySink(), rng=random.Random(6), batch_size=10, min_interval_seconds=1.0)
        config = GenerationConfig(claims_per_day=10000, speed=1000, events_per_day=1000)
        plan = gm.plan_ticks(config)
        assert plan.batch_size == 116

        batch = gm.build_batch(config, [], plan.batch_size, datetime(2025, 7, 1))
        # 116 claims is 0.0116 of a simulated day
        assert len(batch.events) == 12
        assert len(batch.events) * config.claims_per_day / plan.batch_size >= config.events_per_day


class PreloadedSink(InMemorySink):
    """Already holds every other claim id it is sent, as after an earlier run."""

    async def write_batch(self, batch):
        for claim in batch.claims[::2]:
            self.claims.setdefault(claim.claim_id, claim)
        return await super().write_batch(batch)


@pytest.mark.asyncio
class TestLiveClaimIds:
    async def test_restarted_manager_does_not_reuse_ids(self):
        clock = lambda: datetime(2025, 7, 1, 9, 30)  # noqa: E731
        sink = InMemorySink()
        first = GenerationManager(sink, rng=random.Random(8), min_interval_seconds=0.01, clock=clock)
        await first.run_single_batch(GenerationConfig())
        before = len(sink.claims)

        second = GenerationManager(sink, rng=random.Random(8), min_interval_seconds=0.01, clock=clock)
        try:
            await second.start(GenerationConfig(**FAST))
            await _wait_for(lambda: second.status().stats.batches_completed >= 1)
        finally:
            await second.shutdown()

        stats = second.status().stats
        assert stats.persistence_failures == 0
        assert stats.claims_generated == len(sink.claims) - before

    async def test_each_start_gets_fresh_ids(self, manager):
        await manager.start(GenerationConfig())
        await manager.stop()
        first_tag = manager._ids.tag
        await manager.start(GenerationConfig())
        await manager.stop()
        assert manager._ids.tag != first_tag
        assert first_tag.startswith("LIVE")

    async def test_stats_count_only_written_rows(self):
        sink = PreloadedSink()
        gm = GenerationManager(sink, rng=random.Random(9), min_interval_seconds=0.01)
        try:
            await gm.start(GenerationConfig(**FAST))
            await _wait_for(lambda: gm.status().stats.batches_completed >= 1)
        finally:
            await gm.shutdown()

        stats = gm.status().stats
        assert stats.claims_generated == sink.batches_written * 5
        assert stats.persistence_failures >= sink.batches_written * 5
        assert stats.claims_denied <= stats.claims_generated
