import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import structlog

from .config import settings
from .db import Base, engine, SessionLocal
from .logging import setup_logging, RequestIdMiddleware
from .auth.permissions import seed_default_roles
from .auth.router import router as auth_router
from .routes.users import router as users_router
from .routes.employees import router as employees_router
from .routes.bank_holidays import router as bank_holidays_router
from .routes.holidays import router as holidays_router
from .routes.timesheets import router as timesheets_router
from .routes.sick_leave import router as sick_leave_router
from .routes.notes import router as notes_router
from .routes.bookings import router as bookings_router, deleted_router, contacts_router
from .routes.finance import router as finance_router
from .routes.vehicles import router as vehicles_router
from .routes.equipment import router as equipment_router
from .routes.maintenance import router as maintenance_router
from .routes.vehicle_checks import router as vehicle_checks_router
from .routes.defects import router as defects_router
from .routes.realtime import router as realtime_router
from .routes.audit import router as audit_router

logger = structlog.get_logger(__name__)


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

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(employees_router)
    app.include_router(bank_holidays_router)
    app.include_router(holidays_router)
    app.include_router(timesheets_router)
    app.include_router(sick_leave_router)
    app.include_router(notes_router)
    app.include_router(bookings_router)
    app.include_router(deleted_router)
    app.include_router(contacts_router)
    app.include_router(finance_router)
    app.include_router(vehicles_router)
    app.include_router(equipment_router)
    app.include_router(maintenance_router)
    app.include_router(vehicle_checks_router)
    app.include_router(defects_router)
    app.include_router(realtime_router)
    app.include_router(audit_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        logger.info("startup_begin", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_verified", count=len(Base.metadata.tables))
            db = SessionLocal()
            try:
                seed_default_roles(db)
            finally:
                db.close()
        logger.info("startup_complete")

    return app


app = create_app()
