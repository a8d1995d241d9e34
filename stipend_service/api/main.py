"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.engine import Engine
from starlette.responses import Response

from stipend_service.api.errors import register_exception_handlers
from stipend_service.api.middleware import MetricsMiddleware, RequestIDMiddleware
from stipend_service.api.v1 import audit, calculation, reports, rules, stipends, transfers
from stipend_service.config import Settings, get_settings
from stipend_service.infrastructure.database.models import Base
from stipend_service.infrastructure.database.seed import seed_deduction_rules
from stipend_service.infrastructure.database.session import build_engine, build_session_factory
from stipend_service.infrastructure.observability.logging import setup_logging

logger = logging.getLogger(__name__)


def init_database(app: FastAPI) -> None:
    """Create missing tables and, when enabled, seed the default deduction rules"""
    Base.metadata.create_all(bind=app.state.engine)
    if app.state.settings.seed_default_rules:
        db = app.state.session_factory()
        try:
            created = seed_deduction_rules(db)
        finally:
            db.close()
        logger.info("Default deduction rules seeded", extra={"created": created})


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_database(app)
    yield
    app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.service_name)

    app = FastAPI(
        title="Stipend Service",
        description="Stipend calculation, deduction ledger and disbursement service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine or build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(rules.router, prefix="/v1", tags=["rules"])
    app.include_router(stipends.router, prefix="/v1", tags=["stipends"])
    app.include_router(calculation.router, prefix="/v1", tags=["calculations"])
    app.include_router(transfers.router, prefix="/v1", tags=["transfers"])
    app.include_router(audit.router, prefix="/v1", tags=["audit"])
    app.include_router(reports.router, prefix="/v1", tags=["reports"])

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("stipend_service.api.main:app", host="0.0.0.0", port=settings.http_port)
