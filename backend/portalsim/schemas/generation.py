"""Control-plane schemas for continuous generation and scenario runs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from portalsim.schemas.scenario import PatternCategory, PatternTier


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class PatternInjectionConfig(CamelModel):
    pattern_id: str
    rate: float = Field(..., ge=0, le=1, description="Fraction of matching claims to deny")
    procedure_codes: list[str] | None = None
    denial_reason: str | None = None
    category: PatternCategory | None = None
    tier: PatternTier | None = None


class GenerationConfig(CamelModel):
    claims_per_day: int = Field(100, ge=10, le=10000)
    speed: float = Field(1.0, ge=1, le=1000, description="Simulated days per real day")
    patterns: list[PatternInjectionConfig] = []
    generate_appeals: bool = True
    generate_events: bool = True
    appeal_rate: float = Field(0.40, ge=0, le=1)
    events_per_day: int = Field(20, ge=0, le=100000)
    scenario_id: str | None = None


class GenerationStats(CamelModel):
    claims_generated: int = 0
    claims_denied: int = 0
    appeals_generated: int = 0
    events_generated: int = 0
    batches_completed: int = 0
    batches_failed: int = 0
    errors: int = 0
    consecutive_failures: int = 0
    persistence_failures: int = 0
    last_error: str | None = None
    started_at: datetime | None = None
    last_batch_at: datetime | None = None


class StartResponse(CamelModel):
    accepted: bool
    message: str


class StopResponse(CamelModel):
    stopped: bool
    message: str
    stats: GenerationStats


class GenerationStatus(CamelModel):
    state: GenerationState
    config: GenerationConfig | None = None
    stats: GenerationStats
    interval_seconds: float | None = None
    batch_size: int | None = None
    simulated_date: datetime | None = None


class BatchResponse(CamelModel):
    claims: int
    denied: int
    appeals: int
    events: int
    persisted: dict[str, int] = {}
    failures: int = 0


class ScenarioRunRequest(BaseModel):
    scenario: dict[str, Any]


class BulkImportRequest(BaseModel):
    scenarios: list[dict[str, Any]] = Field(..., min_length=1)
    dry_run: bool = False
    continue_on_error: bool = False


class BulkImportEnqueueResponse(BaseModel):
    job_id: str
    status: str
    scenario_count: int


class BulkImportJobStatus(BaseModel):
    job_id: str
    status: str
    progress: int
    total: int
    succeeded: int
    failed: int
    skipped: int
    dry_run: bool
    continue_on_error: bool
    scenarios: list[dict[str, Any]] = []
    started_at: str
    completed_at: str
    error: str | None = None
