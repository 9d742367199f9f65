"""Controller layer for reservations and the reservation calendar."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from lodge.controllers.allocation_controller import (
    DiscountModel,
    PaymentCalculationResponse,
    SpecialChargeModel,
    StayRequest,
)
from lodge.controllers.dependencies import get_booking_service, get_calendar_service
from lodge.domain.models import CalendarEvent, Reservation
from lodge.repository.data_repository import RepositoryError
from lodge.services.booking_service import (
    BookingService,
    BookingValidationError,
    InvalidStatusTransitionError,
    ReservationNotFoundError,
    RoomConflictError,
)
from lodge.services.calendar_service import ALL, CalendarService, CalendarState, ViewMode
from lodge.services.pricing_service import PricingValidationError
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reservations"])


class RoomSelection(BaseModel):
    room_id: str = Field(min_length=1)
    guest_count: int = Field(ge=1)


class CreateReservationRequest(StayRequest):
    guest_name: str = Field(min_length=1)
    guest_phone: str = ""
    guest_count: int = Field(ge=1)
    rooms: list[RoomSelection] = Field(min_length=1)
    special_charges: list[SpecialChargeModel] = Field(default_factory=list)
    discount: DiscountModel = Field(default_factory=DiscountModel)
    status: str = "reservation"


class ReservationRoomResponse(BaseModel):
    room_id: str
    room_number: str
    room_type: str
    guest_count: int = Field(ge=1)


class ReservationResponse(BaseModel):
    reservation_id: str
    reference_number: str
    guest_name: str
    guest_phone: str
    check_in_date: date
    check_out_date: date
    guest_count: int = Field(ge=1)
    status: str
    total_quote: Decimal = Field(ge=0)
    rooms: list[ReservationRoomResponse]

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            reservation_id=reservation.reservation_id,
            reference_number=reservation.reference_number,
            guest_name=reservation.guest_name,
            guest_phone=reservation.guest_phone,
            check_in_date=reservation.check_in_date,
            check_out_date=reservation.check_out_date,
            guest_count=reservation.guest_count,
            status=reservation.status,
            total_quote=reservation.total_quote,
            rooms=[
                ReservationRoomResponse(
                    room_id=room.room_id,
                    room_number=room.room_number,
                    room_type=room.room_type,
                    guest_count=room.guest_count,
                )
                for room in reservation.rooms
            ],
        )


class CreateReservationResponse(BaseModel):
    reservation: ReservationResponse
    payment: PaymentCalculationResponse


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1)


class RoomChangeRequest(BaseModel):
    new_room_id: str = Field(min_length=1)


class CalendarEventResponse(BaseModel):
    event_id: str
    title: str
    start: date
    end: date
    color: str
    text_color: str
    status: str
    room_numbers: list[str]

    @classmethod
    def from_domain(cls, event: CalendarEvent) -> "CalendarEventResponse":
        return cls(
            event_id=event.event_id,
            title=event.title,
            start=event.start,
            end=event.end,
            color=event.color,
            text_color=event.text_color,
            status=event.status,
            room_numbers=list(event.room_numbers),
        )


class CalendarResponse(BaseModel):
    view_mode: ViewMode
    range_start: date
    range_end: date
    room_types: list[str]
    status_types: list[str]
    events: list[CalendarEventResponse]


@router.post(
    "/reservations",
    response_model=CreateReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reservation(
    payload: CreateReservationRequest,
    service: BookingService = Depends(get_booking_service),
) -> CreateReservationResponse:
    """Price and persist a reservation; rooms are re-checked atomically."""
    try:
        allocations = service.build_allocations(
            [(item.room_id, item.guest_count) for item in payload.rooms]
        )
        reservation, calculation = service.create_reservation(
            guest_name=payload.guest_name,
            guest_phone=payload.guest_phone,
            check_in_date=payload.check_in_date,
            check_out_date=payload.check_out_date,
            guest_count=payload.guest_count,
            allocations=allocations,
            special_charges=[charge.to_domain() for charge in payload.special_charges],
            discount=payload.discount.to_domain(),
            status=payload.status,
        )
        return CreateReservationResponse(
            reservation=ReservationResponse.from_domain(reservation),
            payment=PaymentCalculationResponse.from_domain(calculation),
        )
    except (BookingValidationError, PricingValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except RoomConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except RepositoryError as exc:
        logger.error("Reservation write failed | error=%s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reservation could not be saved",
        ) from exc


@router.patch(
    "/reservations/{reservation_id}/status",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
async def update_reservation_status(
    reservation_id: str,
    payload: StatusUpdateRequest,
    service: BookingService = Depends(get_booking_service),
) -> ReservationResponse:
    try:
        reservation = service.update_status(reservation_id, payload.status)
        return ReservationResponse.from_domain(reservation)
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ReservationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except RepositoryError as exc:
        logger.error(
            "Reservation status write failed | reservation_id=%s | error=%s",
            reservation_id,
            exc,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reservation status could not be saved",
        ) from exc


@router.patch(
    "/reservations/{reservation_id}/rooms/{room_id}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
async def change_reservation_room(
    reservation_id: str,
    room_id: str,
    payload: RoomChangeRequest,
    service: BookingService = Depends(get_booking_service),
) -> ReservationResponse:
    """Move the guests of `room_id` to `new_room_id` for the same stay."""
    try:
        reservation = service.change_room(reservation_id, room_id, payload.new_room_id)
        return ReservationResponse.from_domain(reservation)
    except BookingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ReservationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except RoomConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except RepositoryError as exc:
        logger.error(
            "Room change write failed | reservation_id=%s | error=%s",
            reservation_id,
            exc,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Room change could not be saved",
        ) from exc


@router.get(
    "/calendar/events",
    response_model=CalendarResponse,
    status_code=status.HTTP_200_OK,
)
async def calendar_events(
    selected_date: Optional[date] = None,
    view_mode: ViewMode = ViewMode.MONTH,
    room_type: str = ALL,
    reservation_status: str = Query(default=ALL, alias="status"),
    service: CalendarService = Depends(get_calendar_service),
) -> CalendarResponse:
    """Calendar events for the view window around `selected_date`."""
    state = CalendarState(view_mode=view_mode)
    if selected_date is not None:
        state.set_selected_date(selected_date)
    state.set_room_type_filter(room_type)
    state.set_status_filter(reservation_status)
    try:
        service.load(state)
    except RepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Calendar could not be loaded",
        ) from exc

    range_start, range_end = state.visible_range
    return CalendarResponse(
        view_mode=state.view_mode,
        range_start=range_start,
        range_end=range_end,
        room_types=state.room_types,
        status_types=state.status_types,
        events=[CalendarEventResponse.from_domain(event) for event in state.events()],
    )
