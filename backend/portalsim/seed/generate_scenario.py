"""
Replay scenario files into the database.

Usage:
    python -m portalsim.seed.generate_scenario <file> [--dry-run] [--validate-only]
        [--continue-on-error] [--verbose]

A file holds one scenario object, an array, or {"scenarios": [...]}.
Exit code is 0 when every scenario succeeded (or validated), 1 otherwise.
"""

import asyncio
import sys
import time

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from portalsim.config import settings
from portalsim.middleware.logging_config import configure_logging
from portalsim.schemas.scenario import load_scenario_documents
from portalsim.services.bulk_runner import BulkPipelineRunner
from portalsim.services.persistence import InMemorySink, SqlAlchemySink
from portalsim.services.scenario_pipeline import ScenarioPipeline

USAGE = (
    "usage: python -m portalsim.seed.generate_scenario <file> "
    "[--dry-run] [--validate-only] [--continue-on-error] [--verbose]"
)


def _print_validation(index: int, report):
    mark = "OK" if report.passed else "INVALID"
    print(f"  [{index + 1}] {report.scenario_id or '<no id>'}: {mark}")
    for issue in report.errors:
        print(f"      error   {issue.field}: {issue.message}")
    for issue in report.warnings:
        print(f"      warning {issue.field}: {issue.message}")


def _print_run(result):
    summary = result.summary
    print(f"  {result.scenario_id}: {result.state.value} in {result.duration_seconds:.2f}s")
    if summary is None:
        return
    print(f"    claims {summary.total_claims:,} ({summary.total_line_items:,} lines), "
          f"denied {summary.total_denied:,} ({summary.overall_denial_rate}%)")
    print(f"    appeals {summary.appeals['total']:,} "
          f"({summary.appeals['overturned']} overturned, {summary.appeals['pending']} pending), "
          f"events {summary.total_events:,}")
    for stats in summary.patterns.values():
        months = ", ".join(
            f"{month} {m['realized_rate']}%/{m['target_rate']}%"
            for month, m in stats.by_month.items()
        )
        print(f"    {stats.pattern_id}: {stats.realized_rate}% realized [{months}]")
    for warning in result.warnings:
        print(f"    warning: {warning}")


async def generate(argv: list[str]) -> int:
    paths = [a for a in argv if not a.startswith("--")]
    dry_run = "--dry-run" in argv
    validate_only = "--validate-only" in argv
    continue_on_error = "--continue-on-error" in argv
    verbose = "--verbose" in argv

    if len(paths) != 1:
        print(USAGE)
        return 2
    configure_logging("DEBUG" if verbose else "WARNING", "text")

    try:
        documents = load_scenario_documents(paths[0])
    except (OSError, ValueError) as exc:
        print(f"Could not read {paths[0]}: {exc}")
        return 1

    print("=" * 60)
    print(f"Scenario generation — {len(documents)} scenario(s) from {paths[0]}")
    print("=" * 60)

    if validate_only:
        pipeline = ScenarioPipeline(InMemorySink())
        reports = [pipeline.validate(doc)[1] for doc in documents]
        for i, report in enumerate(reports):
            _print_validation(i, report)
        return 0 if all(r.passed for r in reports) else 1

    start = time.time()
    engine = None
    if dry_run:
        sink = InMemorySink()
    else:
        from portalsim.database import create_tables

        await create_tables()
        engine = create_async_engine(settings.database_url, echo=False)
        sink = SqlAlchemySink(async_sessionmaker(engine, expire_on_commit=False))

    try:
        report = await BulkPipelineRunner(ScenarioPipeline(sink)).run(
            documents, dry_run=dry_run, continue_on_error=continue_on_error,
        )
    finally:
        if engine is not None:
            await engine.dispose()

    print()
    for result in report.results:
        _print_run(result)
    for failure in report.failures:
        print(f"  FAILED #{failure.index + 1} {failure.scenario_id}: {failure.error}")
        for issue in failure.validation_errors:
            print(f"      {issue['field']}: {issue['message']}")
    for scenario_id in report.skipped:
        print(f"  skipped {scenario_id}")

    elapsed = time.time() - start
    mode = "dry run" if dry_run else "persisted"
    print(f"\n{len(report.results)} succeeded, {len(report.failures)} failed, "
          f"{len(report.skipped)} skipped ({mode}) in {elapsed:.1f}s")
    return 0 if not report.failures and not report.skipped else 1


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(generate(sys.argv[1:] if argv is None else argv))


if __name__ == "__main__":
    sys.exit(main())
