"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from lodge.controllers.allocation_controller import router as allocation_router
from lodge.controllers.reservation_controller import router as reservation_router
from lodge.repository.data_repository import DataRepository
from lodge.services.allocation_service import AllocationService
from lodge.services.booking_service import BookingService
from lodge.services.calendar_service import CalendarService
from lodge.services.change_feed import ChangeFeed
from lodge.services.inventory_service import InventoryService
from lodge.services.pricing_service import PricingService
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is created here and exposed through app.state, so each
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    inventory_service = InventoryService(repository=repository, settings=settings)
    allocation_service = AllocationService(
        inventory_service=inventory_service,
        settings=settings,
    )
    pricing_service = PricingService(repository=repository, settings=settings)
    change_feed = ChangeFeed()
    booking_service = BookingService(
        repository=repository,
        pricing_service=pricing_service,
        change_feed=change_feed,
        settings=settings,
    )
    calendar_service = CalendarService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(allocation_router)
    app.include_router(reservation_router)

    # --- Services for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.inventory_service = inventory_service
    app.state.allocation_service = allocation_service
    app.state.pricing_service = pricing_service
    app.state.change_feed = change_feed
    app.state.booking_service = booking_service
    app.state.calendar_service = calendar_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the demo inventory is seeded.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo rooms and charges (skipped if not empty)")
        repository.seed_demo_data()

    logger.info(
        "Startup complete | database=%s | rooms=%s | reservations=%s",
        repository.database_path,
        len(repository.list_rooms()),
        repository.count_reservations(),
    )


# Module-level app object for uvicorn
app = create_app()
