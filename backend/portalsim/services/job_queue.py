"""
Redis-backed queue for bulk scenario imports.

The API enqueues a job and returns immediately; ``worker.py`` pops the job,
runs the scenarios and writes progress back onto the job hash, which the
status endpoint reads.

Job statuses: queued → validating → generating → completed | failed
Per-scenario statuses: pending → generating → succeeded | failed | skipped
"""

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

import redis.asyncio as aioredis

from portalsim.config import settings

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "portalsim:bulk-import:job:"
QUEUE_KEY = "portalsim:bulk-import:queue"

_INT_FIELDS = ("progress", "total", "succeeded", "failed", "skipped")
_BOOL_FIELDS = ("dry_run", "continue_on_error")


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def enqueue_bulk_import_job(
    scenarios: list[dict],
    *,
    dry_run: bool = False,
    continue_on_error: bool = False,
) -> str:
    """Enqueue a bulk import and return its job_id."""
    job_id = f"BJOB-{uuid4().hex[:12].upper()}"
    r = await get_redis()

    per_scenario = [
        {
            "index": i,
            "scenario_id": doc.get("id") if isinstance(doc, dict) else None,
            "status": "pending",
            "error": None,
        }
        for i, doc in enumerate(scenarios)
    ]
    job_data = {
        "job_id": job_id,
        "status": "queued",
        "progress": 0,
        "total": len(scenarios),
        "succeeded": 0,
        "failed": 0,
        "skipped": 0,
        "dry_run": str(dry_run),
        "continue_on_error": str(continue_on_error),
        "scenarios": json.dumps(per_scenario),
        "started_at": "",
        "completed_at": "",
        "error": "",
    }
    key = f"{JOB_KEY_PREFIX}{job_id}"
    try:
        await r.hset(key, mapping=job_data)
        await r.expire(key, settings.bulk_job_ttl_seconds)

        await r.lpush(QUEUE_KEY, json.dumps({
            "job_id": job_id,
            "scenarios": scenarios,
            "dry_run": dry_run,
            "continue_on_error": continue_on_error,
        }))
    finally:
        await r.aclose()
    logger.info("Enqueued bulk import %s with %d scenario(s)", job_id, len(scenarios))
    return job_id


async def get_job_status(job_id: str) -> dict | None:
    """Current state of a bulk import job, or None when unknown or expired."""
    r = await get_redis()
    try:
        data = await r.hgetall(f"{JOB_KEY_PREFIX}{job_id}")
    finally:
        await r.aclose()
    if not data:
        return None

    status = dict(data)
    for name in _INT_FIELDS:
        status[name] = int(status.get(name) or 0)
    for name in _BOOL_FIELDS:
        status[name] = status.get(name) == "True"
    status["scenarios"] = json.loads(status.get("scenarios") or "[]")
    status["error"] = status.get("error") or None
    if status.get("result"):
        status["result"] = json.loads(status["result"])
    return status


async def update_job_status(
    job_id: str,
    *,
    status: str | None = None,
    progress: int | None = None,
    succeeded: int | None = None,
    failed: int | None = None,
    skipped: int | None = None,
    scenarios: list[dict] | None = None,
    error: str | None = None,
    result: dict | None = None,
):
    """Update fields on a bulk import job."""
    updates: dict = {}
    if status is not None:
        updates["status"] = status
    if progress is not None:
        updates["progress"] = progress
    if succeeded is not None:
        updates["succeeded"] = succeeded
    if failed is not None:
        updates["failed"] = failed
    if skipped is not None:
        updates["skipped"] = skipped
    if scenarios is not None:
        updates["scenarios"] = json.dumps(scenarios)
    if error is not None:
        updates["error"] = error
    if status == "validating":
        updates["started_at"] = _now()
    if status in ("completed", "failed"):
        updates["completed_at"] = _now()
    if result:
        updates["result"] = json.dumps(result, default=str)

    if not updates:
        return
    r = await get_redis()
    try:
        await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=updates)
    finally:
        await r.aclose()
