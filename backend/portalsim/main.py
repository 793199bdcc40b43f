import logging
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from portalsim.config import settings
from portalsim.database import async_session, create_tables, engine
from portalsim.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from portalsim.api.generation import router as generation_router  # noqa: E402
from portalsim.api.scenarios import router as scenarios_router  # noqa: E402
from portalsim.middleware.metrics import PrometheusMiddleware  # noqa: E402
from portalsim.middleware.request_context import RequestContextMiddleware  # noqa: E402
from portalsim.services.generation_manager import GenerationManager  # noqa: E402
from portalsim.services.persistence import SqlAlchemySink  # noqa: E402

logger = logging.getLogger("portalsim")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: make sure the tables exist, then build the generation controller
    await create_tables()
    sink = SqlAlchemySink(async_session)
    app.state.sink = sink
    app.state.generation_manager = GenerationManager(sink)
    logger.info("portalsim started (%s)", settings.environment)
    yield
    # Shutdown: let an in-flight tick finish before the pool goes away
    await app.state.generation_manager.shutdown()
    await engine.dispose()


app = FastAPI(
    title="Provider Portal Simulator",
    description="Scenario-driven synthetic claims, appeals and learning events",
    version="0.1.0",
    lifespan=lifespan,
)

origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-ID"],
)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(PrometheusMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    detail = f"{type(exc).__name__}: {exc}"
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(generation_router)
app.include_router(scenarios_router)


@app.get("/metrics", tags=["metrics"])
async def prometheus_metrics():
    """Expose Prometheus metrics in text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ── Health check ─────────────────────────────────────────────────────────────

async def _probe_database() -> dict:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return {"status": "disconnected", "error": str(exc)}
    return {"status": "connected"}


async def _probe_redis() -> dict:
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except Exception as exc:
        return {"status": "disconnected", "error": str(exc)}
    finally:
        await client.aclose()
    return {"status": "connected"}


@app.get("/api/health")
async def health_check(request: Request):
    """Database and Redis reachability plus the live generation state.

    Redis only backs bulk imports, so losing it degrades the service
    instead of taking it down.
    """
    manager = getattr(request.app.state, "generation_manager", None)
    components = {
        "database": await _probe_database(),
        "redis": await _probe_redis(),
        "generation": {"status": manager.state.value if manager else "unavailable"},
    }

    if components["database"]["status"] != "connected":
        overall = "unhealthy"
    elif components["redis"]["status"] != "connected":
        overall = "degraded"
    else:
        overall = "healthy"

    return {"status": overall, "environment": settings.environment, "components": components}
