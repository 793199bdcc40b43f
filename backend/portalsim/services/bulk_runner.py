"""
Bulk pipeline runner — feeds several scenario documents through one pipeline in order.

With ``continue_on_error`` off, the first failed scenario aborts the rest,
which are reported as skipped. With it on, failures are recorded and the
runner moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from portalsim.services.scenario_pipeline import ScenarioPipeline, ScenarioRunResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, ScenarioRunResult], Awaitable[None]]


@dataclass
class BulkFailure:
    index: int
    scenario_id: str | None
    error: str | None
    validation_errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "scenario_id": self.scenario_id,
            "error": self.error,
            "validation_errors": list(self.validation_errors),
        }


@dataclass
class BulkRunReport:
    """Successful runs in ``results``; failed ones in ``failures``."""

    results: list[ScenarioRunResult] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)
    skipped: list[str | None] = field(default_factory=list)
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "total": len(self.results) + len(self.failures) + len(self.skipped),
            "succeeded": len(self.results),
            "failed": len(self.failures),
            "skipped": list(self.skipped),
            "aborted": self.aborted,
            "failures": [f.to_dict() for f in self.failures],
            "results": [r.to_dict() for r in self.results],
        }


class BulkPipelineRunner:
    def __init__(self, pipeline: ScenarioPipeline):
        self.pipeline = pipeline

    async def run(
        self,
        documents: list[dict[str, Any]],
        *,
        dry_run: bool = False,
        continue_on_error: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> BulkRunReport:
        report = BulkRunReport()
        total = len(documents)
        logger.info(
            "Bulk run of %d scenario(s) (dry_run=%s, continue_on_error=%s)",
            total, dry_run, continue_on_error,
        )

        for index, document in enumerate(documents):
            result = await self.pipeline.run(document, dry_run=dry_run)
            if on_progress is not None:
                await on_progress(index, total, result)

            if result.success:
                report.results.append(result)
                continue
            report.failures.append(BulkFailure(
                index=index,
                scenario_id=result.scenario_id,
                error=result.error,
                validation_errors=[e.to_dict() for e in result.validation.errors],
            ))
            logger.warning("Scenario %s (#%d) failed: %s", result.scenario_id, index + 1, result.error)
            if not continue_on_error:
                report.aborted = True
                report.skipped = [
                    doc.get("id") if isinstance(doc, dict) else None
                    for doc in documents[index + 1:]
                ]
                break

        logger.info(
            "Bulk run finished: %d succeeded, %d failed, %d skipped",
            len(report.results), len(report.failures), len(report.skipped),
        )
        return report
