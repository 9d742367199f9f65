"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from lodge.services.allocation_service import AllocationService
from lodge.services.booking_service import BookingService
from lodge.services.calendar_service import CalendarService
from lodge.services.inventory_service import InventoryService
from lodge.services.pricing_service import PricingService


def _service_from_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_inventory_service(request: Request) -> InventoryService:
    return _service_from_state(request, "inventory_service", "Inventory")


def get_allocation_service(request: Request) -> AllocationService:
    return _service_from_state(request, "allocation_service", "Allocation")


def get_pricing_service(request: Request) -> PricingService:
    return _service_from_state(request, "pricing_service", "Pricing")


def get_booking_service(request: Request) -> BookingService:
    return _service_from_state(request, "booking_service", "Booking")


def get_calendar_service(request: Request) -> CalendarService:
    return _service_from_state(request, "calendar_service", "Calendar")
