import logging
import time
from datetime import datetime

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from tcrs_approval.api import dictionaries, gl_coding, invoices, requests, stats, workflow
from tcrs_approval.core.config import (
    APP_NAME, APP_VERSION, AZURE_STORAGE_CONNECTION_STRING, AZURE_STORAGE_CONTAINER_NAME,
    CORS_ORIGINS, is_production,
)
from tcrs_approval.core.database import Base, SessionLocal, engine, get_db
from tcrs_approval.core.errors import TCRSError
from tcrs_approval.core.logging_config import configure_logging
from tcrs_approval.metrics import init_metrics_zero, request_latency_seconds
from tcrs_approval.models import ApprovalRequest
from tcrs_approval.services.request_ids import RequestIdGenerator
from tcrs_approval.services.workflow_catalog import seed_workflow_steps

logger = logging.getLogger(__name__)

app = FastAPI(
    title="TCRS Approval API",
    description="Invoice approval workflow with GL coding and audit trail",
    version=APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS, allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

app.state.request_ids = RequestIdGenerator()
app.state.blob_storage = None

for r in (requests.router, gl_coding.router, dictionaries.router, invoices.router, stats.router, workflow.router):
    app.include_router(r)


def _build_blob_storage():
    if not AZURE_STORAGE_CONNECTION_STRING:
        logger.warning("AZURE_STORAGE_CONNECTION_STRING not set; file endpoints disabled")
        return None
    from tcrs_approval.utils.blob_storage import BlobStorage
    return BlobStorage(AZURE_STORAGE_CONNECTION_STRING, AZURE_STORAGE_CONTAINER_NAME)


@app.on_event("startup")
def on_startup():
    configure_logging()
    logger.info("starting %s %s on %s", APP_NAME, APP_VERSION, engine.name)
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("creating tables failed")
    with SessionLocal() as db:
        seed_workflow_steps(db)
    init_metrics_zero()
    if app.state.blob_storage is None:
        app.state.blob_storage = _build_blob_storage()
    logger.info("tables: %s", inspect(engine).get_table_names())


# ===== ERROR MAPPING =====

@app.exception_handler(TCRSError)
async def tcrs_error_handler(request: Request, exc: TCRSError):
    content = {"detail": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    content = {"detail": "Internal server error"}
    if not is_production():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.middleware("http")
async def record_latency(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", None) or "unmatched"
    request_latency_seconds.labels(path=path).observe(time.perf_counter() - start)
    return response


# ===== HEALTH / OPS =====

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        return {
            "status": "healthy",
            "database": "connected",
            "requests_count": db.query(ApprovalRequest).count(),
            "timestamp": datetime.now(),
        }
    except Exception as e:
        logger.warning("health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now(),
        }


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/public/healthz", include_in_schema=False)
def public_healthz(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception:
        return Response(content='{"status":"error"}', media_type="application/json", status_code=503)


@app.get("/public/version", include_in_schema=False)
def public_version():
    return {"name": APP_NAME, "version": APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
