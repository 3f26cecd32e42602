import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from orderbot.core.clock import as_utc, utcnow
from orderbot.core.config import DATABASE_URL, IS_DEV
from orderbot.core.database import Base, SessionLocal, engine
from orderbot.core.logging_setup import configure_logging
from orderbot.core.startup_checks import ensure_schema_present, validate_database_environment
from orderbot.deps import get_scheduler, shutdown_scheduler
from orderbot.middleware.observability import ObservabilityMiddleware
from orderbot.services import debounce
import orderbot.models  # garante que os models são importados antes do create_all

from orderbot.routers.admin_ai import router as admin_ai_router
from orderbot.routers.admin_whatsapp import router as admin_whatsapp_router
from orderbot.routers.debounce import router as debounce_router
from orderbot.routers.internal_metrics import router as internal_metrics_router
from orderbot.routers.recovery import router as recovery_router
from orderbot.routers.simulator import router as simulator_router
from orderbot.routers.webhook import router as webhook_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"


def _rearm_pending_entries() -> None:
    """Entradas pending que sobreviveram a um restart voltam a ter timer."""
    scheduler = get_scheduler()
    if scheduler is None:
        return
    db = SessionLocal()
    try:
        now = utcnow()
        for entry in db.query(orderbot.models.DebounceQueueEntry).filter_by(status=debounce.PENDING).all():
            delay = (as_utc(entry.scheduled_process_at) - now).total_seconds()
            scheduler.schedule(entry.id, delay)
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if IS_DEV or DATABASE_URL.startswith("sqlite"):
            # Cria tabelas (dev). Em produção, use migrations.
            Base.metadata.create_all(bind=engine)
        ensure_schema_present(engine)
        _rearm_pending_entries()
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="OrderBot API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(webhook_router)
app.include_router(debounce_router)
app.include_router(recovery_router)
app.include_router(admin_ai_router)
app.include_router(admin_whatsapp_router)
app.include_router(simulator_router)
app.include_router(internal_metrics_router)


@app.get("/health")
def health():
    return {"status": "ok"}
