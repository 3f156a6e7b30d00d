import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cidertrack import models  # noqa: F401  (register tables on Base.metadata)
from cidertrack.config import settings
from cidertrack.database import Base, engine
from cidertrack.middleware.exceptions import register_exception_handlers
from cidertrack.routers import health, press_runs
from cidertrack.services.audit import audit_event_bus, log_audit_event

logger = logging.getLogger("cidertrack")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables and attach the log sink to the audit bus."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sub_id = audit_event_bus.subscribe(log_audit_event)
    logger.info("CiderTrack started (%s)", settings.environment)
    try:
        yield
    finally:
        audit_event_bus.unsubscribe(sub_id)
        await engine.dispose()
        logger.info("CiderTrack stopped")


app = FastAPI(
    title="CiderTrack",
    description="Cidery production tracking: press runs, batches and provenance",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(press_runs.router, prefix="/api/press-runs", tags=["press-runs"])
