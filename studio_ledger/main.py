from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import Base, SessionLocal, engine
from .observability import RequestTimingLoggingMiddleware, add_exception_handlers, configure_logging
from .routers import health
from .routers import bookings as bookings_router
from .routers import instructor as instructor_router
from .routers import payments as payments_router
from .routers import purchases as purchases_router
from .routers import sessions as sessions_router
from .routers import settings as settings_router
from .routers import waitlist as waitlist_router
from .studio_settings import StudioSettingsService

# Ensure schema is present when the module is imported (helps tests using TestClient without lifespan)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        app.state.studio_settings.refresh(db)
    yield


def create_app(studio_settings: Optional[StudioSettingsService] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    application = FastAPI(title="Studio Ledger API", version="0.1.0", lifespan=lifespan)

    if studio_settings is None:
        studio_settings = StudioSettingsService(settings.studio_timezone)
        with SessionLocal() as db:
            studio_settings.refresh(db)
    application.state.studio_settings = studio_settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestTimingLoggingMiddleware)

    add_exception_handlers(application)

    # Routers
    application.include_router(health.router)
    application.include_router(purchases_router.router)
    application.include_router(payments_router.router)
    application.include_router(bookings_router.router)
    application.include_router(instructor_router.router)
    application.include_router(sessions_router.router)
    application.include_router(waitlist_router.router)
    application.include_router(settings_router.router)

    return application


app = create_app()
