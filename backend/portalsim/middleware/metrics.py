"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for scenario runs, live generation batches and injection shortfalls.
"""

import time

from prometheus_client import Counter, Histogram, Gauge
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Scenario pipeline metrics ────────────────────────────────────────────────

scenario_runs_total = Counter(
    "scenario_runs_total",
    "Total scenario pipeline runs",
    ["status", "dry_run"],
)

scenario_run_duration_seconds = Histogram(
    "scenario_run_duration_seconds",
    "Scenario pipeline run duration in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
)

injection_shortfalls_total = Counter(
    "injection_shortfalls_total",
    "Batches where a pattern had too few eligible claims to meet its target",
    ["pattern_id"],
)

# ── Generation metrics ───────────────────────────────────────────────────────

claims_generated_total = Counter(
    "claims_generated_total",
    "Total synthetic claims generated",
    ["source"],
)

generation_batches_total = Counter(
    "generation_batches_total",
    "Live generation batches by outcome",
    ["status"],
)

generation_running = Gauge(
    "generation_running",
    "1 while the continuous generation job is running",
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/admin/scenarios/bulk-import/BJOB-ABC123 → /api/admin/scenarios/bulk-import/{id}
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (
            part.startswith("BJOB-")
            or part.startswith("CLM-")
            or part.isdigit()
            or len(part) > 20
        ):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
