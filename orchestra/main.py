import logging

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import get_current_active_admin
from .core.config import settings
from .db.models import User
from .db.session import check_db_health
from .errors import ServiceError
from .jobs.cleanup import get_job_status, start_background_jobs, stop_background_jobs
from .llm_providers import list_available_providers, validate_provider_config
from .middleware.correlation import CorrelationIDMiddleware
from .middleware.error_handler import (
    database_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    service_exception_handler,
    validation_exception_handler,
)
from .middleware.metrics import MetricsMiddleware, get_metrics
from .routers import agents, auth, deliverables, predictions, projects, workflows
from .workers import side_effects

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Orchestra API (Deliverable Orchestration)",
    description="Plans, executes, quality-gates, revises and publishes marketing deliverables",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation id first, so it's available in all logs
app.add_middleware(CorrelationIDMiddleware)
app.middleware("http")(MetricsMiddleware())

app.add_exception_handler(ServiceError, service_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(auth.router)
app.include_router(agents.router)
app.include_router(projects.router)
app.include_router(deliverables.router)
app.include_router(workflows.router)
app.include_router(predictions.router)


@app.on_event("startup")
async def startup_event():
    """Validate configuration and start background jobs."""
    logger.info("Starting Orchestra API...")
    settings.validate_production_config()

    if settings.ENABLE_SCHEDULER:
        start_background_jobs()
    else:
        logger.info("Background jobs disabled")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Orchestra API...")
    stop_background_jobs()
    await side_effects.stop()


@app.get("/health")
async def health():
    """Health check endpoint."""
    db_ok, latency_ms, error = await check_db_health()
    return {
        "status": "ok" if db_ok else "degraded",
        "env": settings.ORCHESTRA_ENV,
        "database": {
            "healthy": db_ok,
            "latency_ms": round(latency_ms, 2),
            "error": error if settings.DEBUG else None,
        },
        "generator": settings.MODEL_PROVIDER,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics()


@app.get("/admin/jobs")
async def get_jobs(admin: User = Depends(get_current_active_admin)):
    """Get status of background jobs."""
    return {"jobs": get_job_status()}


@app.get("/admin/providers")
async def get_providers(admin: User = Depends(get_current_active_admin)):
    """Get status of configured LLM providers."""
    providers = list_available_providers()
    current = settings.MODEL_PROVIDER
    current_validation = validate_provider_config(current)

    return {
        "current_provider": current,
        "current_model": settings.MODEL_NAME,
        "current_valid": current_validation["valid"],
        "current_missing": current_validation["missing"],
        "providers": providers
    }
