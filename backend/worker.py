"""
Bulk import worker — processes scenario import jobs from the Redis queue.

Run with: python worker.py
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from portalsim.config import settings
from portalsim.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger("worker")


async def process_bulk_import_job(job_data: dict, SessionMaker):
    """Run every scenario in a job through the pipeline against the SQL sink."""
    from portalsim.services.bulk_runner import BulkPipelineRunner
    from portalsim.services.job_queue import update_job_status
    from portalsim.services.persistence import SqlAlchemySink
    from portalsim.services.scenario_pipeline import ScenarioPipeline

    job_id = job_data["job_id"]
    documents = job_data.get("scenarios") or []
    dry_run = bool(job_data.get("dry_run"))
    continue_on_error = bool(job_data.get("continue_on_error"))
    total = len(documents)

    per_scenario = [
        {
            "index": i,
            "scenario_id": doc.get("id") if isinstance(doc, dict) else None,
            "status": "pending",
            "error": None,
        }
        for i, doc in enumerate(documents)
    ]
    counts = {"succeeded": 0, "failed": 0}

    await update_job_status(job_id, status="validating", progress=0)

    pipeline = ScenarioPipeline(SqlAlchemySink(SessionMaker))

    # Validate everything up front so a doomed job fails before writing rows
    invalid = 0
    for entry, doc in zip(per_scenario, documents):
        _, report = pipeline.validate(doc)
        if not report.passed:
            invalid += 1
            entry["error"] = "; ".join(e.message for e in report.errors[:5])
    if invalid and not continue_on_error:
        for entry in per_scenario:
            entry["status"] = "failed" if entry["error"] else "skipped"
        await update_job_status(
            job_id, status="failed", progress=100,
            failed=invalid, skipped=total - invalid, scenarios=per_scenario,
            error=f"{invalid} scenario(s) failed validation",
        )
        logger.warning("Job %s rejected: %d invalid scenario(s)", job_id, invalid)
        return

    await update_job_status(job_id, status="generating", scenarios=per_scenario)

    async def on_progress(index, _total, result):
        entry = per_scenario[index]
        if result.success:
            entry["status"] = "succeeded"
            counts["succeeded"] += 1
        else:
            entry["status"] = "failed"
            entry["error"] = result.error
            counts["failed"] += 1
        if index + 1 < total and per_scenario[index + 1]["status"] == "pending":
            per_scenario[index + 1]["status"] = "generating"
        await update_job_status(
            job_id,
            progress=round((index + 1) / total * 100),
            succeeded=counts["succeeded"],
            failed=counts["failed"],
            scenarios=per_scenario,
        )

    if per_scenario:
        per_scenario[0]["status"] = "generating"

    try:
        report = await BulkPipelineRunner(pipeline).run(
            documents,
            dry_run=dry_run,
            continue_on_error=continue_on_error,
            on_progress=on_progress,
        )
    except Exception as exc:
        logger.error("Job %s failed: %s", job_id, exc, exc_info=True)
        await update_job_status(job_id, status="failed", error=f"{type(exc).__name__}: {exc}")
        return

    for entry in per_scenario:
        if entry["status"] in ("pending", "generating"):
            entry["status"] = "skipped"

    await update_job_status(
        job_id,
        status="failed" if report.aborted else "completed",
        progress=100,
        succeeded=counts["succeeded"],
        failed=counts["failed"],
        skipped=len(report.skipped),
        scenarios=per_scenario,
        result={
            "runs": [
                {"scenario_id": r.scenario_id, "run_id": r.run_id, "summary": r.summary.to_dict()}
                for r in report.results
            ],
            "failures": [f.to_dict() for f in report.failures],
        },
    )
    logger.info(
        "Job %s finished: %d succeeded, %d failed, %d skipped",
        job_id, counts["succeeded"], counts["failed"], len(report.skipped),
    )


async def main():
    """Main worker loop — polls Redis queue for bulk import jobs."""
    from portalsim.database import create_tables
    from portalsim.services.job_queue import QUEUE_KEY

    await create_tables()
    engine = create_async_engine(settings.database_url, echo=False)
    SessionMaker = async_sessionmaker(engine, expire_on_commit=False)

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", QUEUE_KEY)

    try:
        while True:
            try:
                # Block-pop from queue (5 second timeout)
                result = await r.brpop(QUEUE_KEY, timeout=5)
                if result is None:
                    continue
                _, raw = result
                job_data = json.loads(raw)
                logger.info("Processing job: %s", job_data.get("job_id"))
                await process_bulk_import_job(job_data, SessionMaker)
            except Exception as exc:
                logger.error("Worker loop error: %s", exc, exc_info=True)
                await asyncio.sleep(1)
    finally:
        await r.aclose()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
