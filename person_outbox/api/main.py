"""
FastAPI application: person CRUD plus outbox/reconciliation status.

Usage:
    uvicorn person_outbox.api.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core import heartbeat
from ..core.client import default_handle
from ..core.config import VERSION, debug_enabled, get_reconcile_interval, validate_remote_config
from ..core.outbox import PendingOperationStore
from ..core.outcomes import RemoteStoreError, StoreConfigurationError
from ..core.reconcile import Reconciler
from ..core.router import PersonService
from ..util.logging import logger
from .personas import router as personas_router
from .schemas import HealthResponse, SyncStatusResponse

RECONCILE_TASK = "reconcile_outbox"


def wire_services(app: FastAPI, outbox: PendingOperationStore = None, handle=None):
    """Attach the queue, router and reconciler to the application state."""
    outbox = outbox or PendingOperationStore()
    handle = handle or default_handle
    app.state.outbox = outbox
    app.state.handle = handle
    app.state.person_service = PersonService(outbox, handle)
    app.state.reconciler = Reconciler(outbox, handle)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire services and start the background reconciliation loop."""
    issues = validate_remote_config()
    if issues:
        logger.warning(f"Remote store configuration issues: {issues}")

    if not hasattr(app.state, "person_service"):
        wire_services(app)

    heartbeat.register_task(RECONCILE_TASK, get_reconcile_interval(), app.state.reconciler.run)
    heartbeat.start_in_background()

    yield

    heartbeat.stop()
    heartbeat.unregister_task(RECONCILE_TASK)


app = FastAPI(
    title="Person Outbox API",
    version=VERSION,
    description="Person CRUD over a remote document store with a durable write-behind queue",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)

app.include_router(personas_router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Invalid input data: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": "Invalid input data", "errors": _jsonable_errors(exc)})


@app.exception_handler(RemoteStoreError)
async def remote_store_error_handler(request: Request, exc: RemoteStoreError):
    logger.error(f"Remote store operation failed: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Remote store operation failed"})


@app.exception_handler(StoreConfigurationError)
async def store_configuration_error_handler(request: Request, exc: StoreConfigurationError):
    logger.error(f"Remote store misconfigured: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Remote store is misconfigured"})


def _jsonable_errors(exc: RequestValidationError):
    return [{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()]


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(request: Request):
    """Check system health."""
    outbox = request.app.state.outbox
    handle = request.app.state.handle

    try:
        client = handle.resolve()
        if client is None:
            remote_status = "offline"
        else:
            remote_status = "available" if handle.is_available(client) else "unavailable"
    except StoreConfigurationError:
        remote_status = "misconfigured"

    outbox_health = outbox.health_check()
    return HealthResponse(
        status="healthy" if outbox_health else "unhealthy",
        version=VERSION,
        outbox_health=outbox_health,
        pending_operations=outbox.count() if outbox_health else 0,
        remote_status=remote_status
    )


@app.get("/sync/status", response_model=SyncStatusResponse)
def sync_status_endpoint(request: Request):
    """Queue depth and the last reconciliation report."""
    reconciler = request.app.state.reconciler
    last_report = reconciler.last_report
    return SyncStatusResponse(
        pending_operations=request.app.state.outbox.count(),
        running=reconciler.running,
        heartbeat=heartbeat.get_status(),
        last_report=last_report.to_dict() if last_report else None
    )


@app.post("/sync/run")
def sync_run_endpoint(request: Request):
    """Trigger a reconciliation pass now. Skipped if one is already running."""
    report = request.app.state.reconciler.run()
    return report.to_dict()
