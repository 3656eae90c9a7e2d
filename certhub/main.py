import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import inspect

from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  registers tables on Base.metadata
from .routes.departments import router as departments_router
from .routes.employees import router as employees_router
from .routes.training_types import router as training_types_router
from .routes.providers import router as providers_router
from .routes.certificates import router as certificates_router
from .routes.verify import router as verify_router
from .routes.files import router as files_router
from .routes.reports import router as reports_router
from .routes.import_export import router as import_export_router


log = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(departments_router)
    app.include_router(employees_router)
    app.include_router(training_types_router)
    app.include_router(providers_router)
    app.include_router(certificates_router)
    app.include_router(verify_router)
    app.include_router(files_router)
    app.include_router(reports_router)
    app.include_router(import_export_router)

    # Metrics
    if settings.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            existing = set(inspect(engine).get_table_names())
            missing = set(Base.metadata.tables.keys()) - existing
            if missing:
                log.info("startup_create_tables", missing=sorted(missing))
                Base.metadata.create_all(bind=engine)
        log.info("startup_complete", app=settings.app_name, environment=settings.environment)

    return app


app = create_app()
