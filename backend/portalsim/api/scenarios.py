"""
Scenario API — validate and replay scenario documents.

POST /api/admin/scenarios/validate
  Validation report for one document, nothing generated
POST /api/admin/scenarios/run?dry_run=
  Run one scenario in-process and return the run result (422 when invalid)
POST /api/admin/scenarios/bulk-import
  Enqueue several scenarios as a background job (returns immediately)
GET /api/admin/scenarios/bulk-import/{job_id}
  Progress and per-scenario status of a bulk import job
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from portalsim.api.deps import get_pipeline
from portalsim.schemas.generation import (
    BulkImportEnqueueResponse,
    BulkImportJobStatus,
    BulkImportRequest,
    ScenarioRunRequest,
)
from portalsim.services.job_queue import enqueue_bulk_import_job, get_job_status
from portalsim.services.scenario_pipeline import PipelineState, ScenarioPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/scenarios", tags=["scenarios"])


@router.post("/validate")
async def validate_scenario(
    body: ScenarioRunRequest,
    pipeline: ScenarioPipeline = Depends(get_pipeline),
):
    _, report = pipeline.validate(body.scenario)
    return report.to_dict()


@router.post("/run")
async def run_scenario(
    body: ScenarioRunRequest,
    dry_run: bool = Query(False, description="Generate without persisting"),
    pipeline: ScenarioPipeline = Depends(get_pipeline),
):
    result = await pipeline.run(body.scenario, dry_run=dry_run)
    if result.state == PipelineState.FAILED and not result.validation.passed:
        raise HTTPException(status_code=422, detail=result.validation.to_dict())
    return result.to_dict()


@router.post("/bulk-import", response_model=BulkImportEnqueueResponse, status_code=202)
async def bulk_import(body: BulkImportRequest):
    job_id = await enqueue_bulk_import_job(
        body.scenarios,
        dry_run=body.dry_run,
        continue_on_error=body.continue_on_error,
    )
    return BulkImportEnqueueResponse(job_id=job_id, status="queued", scenario_count=len(body.scenarios))


@router.get("/bulk-import/{job_id}", response_model=BulkImportJobStatus)
async def bulk_import_status(job_id: str):
    status = await get_job_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return status
