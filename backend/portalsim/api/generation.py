"""
Generation control API — continuous synthetic data generation.

POST /api/admin/generation/start
  Start the background job (409 if already running)
POST /api/admin/generation/stop
  Stop it and return the run's statistics (409 if not running)
GET /api/admin/generation/status
  Current state, config and totals
POST /api/admin/generation/batch
  Generate and persist exactly one batch, bypassing the timer
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from portalsim.api.deps import get_generation_manager
from portalsim.schemas.generation import (
    BatchResponse,
    GenerationConfig,
    GenerationStatus,
    StartResponse,
    StopResponse,
)
from portalsim.services.generation_manager import GenerationManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/generation", tags=["generation"])


@router.post("/start", response_model=StartResponse)
async def start_generation(
    config: GenerationConfig,
    manager: GenerationManager = Depends(get_generation_manager),
):
    result = await manager.start(config)
    if not result.accepted:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@router.post("/stop", response_model=StopResponse)
async def stop_generation(manager: GenerationManager = Depends(get_generation_manager)):
    result = await manager.stop()
    if not result.stopped:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@router.get("/status", response_model=GenerationStatus)
async def generation_status(manager: GenerationManager = Depends(get_generation_manager)):
    return manager.status()


@router.post("/batch", response_model=BatchResponse)
async def run_single_batch(
    config: GenerationConfig,
    manager: GenerationManager = Depends(get_generation_manager),
):
    try:
        return await manager.run_single_batch(config)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
