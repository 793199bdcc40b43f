"""SqlAlchemySink against the configured database. Skipped when it is unreachable."""

import random
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portalsim import models
from portalsim.config import settings
from portalsim.database import Base
from portalsim.services.persistence import SqlAlchemySink
from portalsim.services.scenario_pipeline import ScenarioPipeline


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(settings.database_url, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        await engine.dispose()
        pytest.skip(f"database unavailable: {exc}")
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def scenario_id(session_factory) -> AsyncGenerator[str, None]:
    sid = f"sql-{uuid.uuid4().hex[:6]}"
    yield sid
    async with session_factory() as db:
        claim_ids = select(models.Claim.claim_id).where(models.Claim.scenario_id == sid)
        await db.execute(delete(models.ClaimAppeal).where(models.ClaimAppeal.claim_id.in_(claim_ids)))
        pks = select(models.Claim.id).where(models.Claim.scenario_id == sid)
        await db.execute(delete(models.ClaimLineItem).where(models.ClaimLineItem.claim_pk.in_(pks)))
        await db.execute(delete(models.Claim).where(models.Claim.scenario_id == sid))
        await db.execute(delete(models.LearningEvent).where(models.LearningEvent.scenario_id == sid))
        await db.execute(delete(models.PatternSnapshot).where(models.PatternSnapshot.scenario_id == sid))
        await db.execute(delete(models.ScenarioRun).where(models.ScenarioRun.scenario_id == sid))
        await db.commit()


async def _count(session_factory, model, sid) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model).where(model.scenario_id == sid))


@pytest.mark.asyncio
class TestSqlAlchemySink:
    async def test_run_is_persisted(self, session_factory, scenario_id, scenario_factory):
        sink = SqlAlchemySink(session_factory)
        result = await ScenarioPipeline(sink, rng=random.Random(1)).run(
            scenario_factory(scenario_id=scenario_id, total_claims=60)
        )

        assert result.success, result.error
        assert await _count(session_factory, models.Claim, scenario_id) == 60
        assert await _count(session_factory, models.PatternSnapshot, scenario_id) == 6
        assert await _count(session_factory, models.ScenarioRun, scenario_id) == 1

    async def test_replay_skips_existing_claims(self, session_factory, scenario_id, scenario_factory):
        sink = SqlAlchemySink(session_factory)
        document = scenario_factory(scenario_id=scenario_id, total_claims=60)
        await ScenarioPipeline(sink, rng=random.Random(2)).run(document)

        # Same seed, same claim ids: every claim is a duplicate the second time
        replay = await ScenarioPipeline(sink, rng=random.Random(2)).run(document)

        failures = replay.summary.persistence_failures
        assert replay.summary.persisted["claims"] == 0
        assert sum(1 for f in failures if f["entity"] == "claim") == 60
        assert await _count(session_factory, models.Claim, scenario_id) == 60
        assert await _count(session_factory, models.PatternSnapshot, scenario_id) == 6
