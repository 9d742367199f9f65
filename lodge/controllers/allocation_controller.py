"""HTTP controller layer for availability, allocation options and quotes."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator

from lodge.controllers.dependencies import (
    get_allocation_service,
    get_inventory_service,
    get_pricing_service,
)
from lodge.domain.models import (
    AllocationOption,
    ChargeRateType,
    Discount,
    DiscountKind,
    PaymentCalculation,
    Room,
    RoomAllocation,
    SpecialCharge,
)
from lodge.services.allocation_service import (
    AllocationService,
    AllocationValidationError,
    SolverDependencyError,
)
from lodge.services.inventory_service import (
    InventoryQueryError,
    InventoryService,
    InventoryValidationError,
)
from lodge.services.pricing_service import PricingService, PricingValidationError
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["allocation"])


class RoomResponse(BaseModel):
    room_id: str
    room_number: str
    room_type: str
    capacity: int = Field(gt=0)
    tariff: Decimal = Field(ge=0)

    @classmethod
    def from_domain(cls, room: Room) -> "RoomResponse":
        return cls(
            room_id=room.room_id,
            room_number=room.room_number,
            room_type=room.room_type,
            capacity=room.capacity,
            tariff=room.tariff,
        )


class AvailableRoomsResponse(BaseModel):
    rooms: list[RoomResponse]


class CreateRoomRequest(BaseModel):
    room_number: str = Field(min_length=1)
    room_type: str = Field(min_length=1)
    capacity: int = Field(ge=1)
    tariff: Decimal = Field(ge=0)


class AllocationItem(BaseModel):
    """Room snapshot plus the guests seated in it."""

    allocation_id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    room_number: str
    room_type: str
    capacity: int = Field(gt=0)
    tariff: Decimal = Field(ge=0)
    guest_count: int = Field(ge=1)

    @model_validator(mode="after")
    def validate_guest_count_within_capacity(self) -> "AllocationItem":
        if self.guest_count > self.capacity:
            raise ValueError("guest_count cannot exceed room capacity")
        return self

    @classmethod
    def from_domain(cls, allocation: RoomAllocation) -> "AllocationItem":
        return cls(
            allocation_id=allocation.allocation_id,
            room_id=allocation.room_id,
            room_number=allocation.room_number,
            room_type=allocation.room_type,
            capacity=allocation.capacity,
            tariff=allocation.tariff,
            guest_count=allocation.guest_count,
        )

    def to_domain(self) -> RoomAllocation:
        return RoomAllocation(
            allocation_id=self.allocation_id,
            room_id=self.room_id,
            room_number=self.room_number,
            room_type=self.room_type,
            capacity=self.capacity,
            tariff=self.tariff,
            guest_count=self.guest_count,
        )


class StayRequest(BaseModel):
    check_in_date: date
    check_out_date: date

    @model_validator(mode="after")
    def validate_stay_order(self):
        if self.check_in_date >= self.check_out_date:
            raise ValueError("check_in_date must be before check_out_date")
        return self


class AllocationOptionsRequest(StayRequest):
    guest_count: int = Field(ge=1)
    guest_type: Optional[str] = None


class AllocationOptionResponse(BaseModel):
    strategy: str
    allocations: list[AllocationItem]
    total_tariff: Decimal = Field(ge=0)
    total_guests: int = Field(ge=0)
    room_count: int = Field(ge=0)

    @classmethod
    def from_domain(cls, option: AllocationOption) -> "AllocationOptionResponse":
        return cls(
            strategy=option.strategy.value,
            allocations=[AllocationItem.from_domain(item) for item in option.allocations],
            total_tariff=option.total_tariff,
            total_guests=option.total_guests,
            room_count=option.room_count,
        )


class AllocationOptionsResponse(BaseModel):
    rooms: list[RoomResponse]
    options: list[AllocationOptionResponse]


class SpecialChargeModel(BaseModel):
    charge_id: Optional[str] = None
    name: str = Field(min_length=1)
    rate: Decimal = Field(ge=0)
    rate_type: ChargeRateType
    quantity: int = Field(default=1, ge=1)

    @classmethod
    def from_domain(cls, charge: SpecialCharge) -> "SpecialChargeModel":
        return cls(
            charge_id=charge.charge_id,
            name=charge.name,
            rate=charge.rate,
            rate_type=charge.rate_type,
            quantity=charge.quantity,
        )

    def to_domain(self) -> SpecialCharge:
        return SpecialCharge(
            charge_id=self.charge_id,
            name=self.name,
            rate=self.rate,
            rate_type=self.rate_type,
            quantity=self.quantity,
        )


class SpecialChargesResponse(BaseModel):
    special_charges: list[SpecialChargeModel]


class DiscountModel(BaseModel):
    kind: DiscountKind = DiscountKind.NONE
    value: Decimal = Field(default=Decimal("0"), ge=0)

    @model_validator(mode="after")
    def validate_percentage_range(self) -> "DiscountModel":
        if self.kind is DiscountKind.PERCENTAGE and self.value > 100:
            raise ValueError("percentage discount must be between 0 and 100")
        return self

    def to_domain(self) -> Discount:
        return Discount(kind=self.kind, value=self.value)


class QuoteRequest(StayRequest):
    allocations: list[AllocationItem] = Field(min_length=1)
    special_charges: list[SpecialChargeModel] = Field(default_factory=list)
    discount: DiscountModel = Field(default_factory=DiscountModel)
    per_person_per_night: Optional[bool] = None


class PaymentCalculationResponse(BaseModel):
    number_of_nights: int = Field(ge=1)
    room_tariff: Decimal = Field(ge=0)
    special_charges_total: Decimal = Field(ge=0)
    subtotal: Decimal = Field(ge=0)
    discount: Decimal = Field(ge=0)
    total: Decimal = Field(ge=0)

    @classmethod
    def from_domain(cls, calculation: PaymentCalculation) -> "PaymentCalculationResponse":
        return cls(
            number_of_nights=calculation.number_of_nights,
            room_tariff=calculation.room_tariff,
            special_charges_total=calculation.special_charges_total,
            subtotal=calculation.subtotal,
            discount=calculation.discount,
            total=calculation.total,
        )


@router.get(
    "/rooms/available",
    response_model=AvailableRoomsResponse,
    status_code=status.HTTP_200_OK,
)
async def available_rooms(
    check_in_date: date,
    check_out_date: date,
    guest_count: int = Query(ge=1),
    guest_type: Optional[str] = None,
    service: InventoryService = Depends(get_inventory_service),
) -> AvailableRoomsResponse:
    """List rooms free for the whole stay."""
    try:
        rooms = service.get_available_rooms(
            check_in_date,
            check_out_date,
            guest_count,
            guest_type,
        )
        return AvailableRoomsResponse(rooms=[RoomResponse.from_domain(room) for room in rooms])
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except InventoryQueryError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Room availability could not be loaded",
        ) from exc


@router.post(
    "/rooms",
    response_model=RoomResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_room(
    payload: CreateRoomRequest,
    service: InventoryService = Depends(get_inventory_service),
) -> RoomResponse:
    try:
        room = service.add_room(
            payload.room_number,
            payload.room_type,
            payload.capacity,
            payload.tariff,
        )
        return RoomResponse.from_domain(room)
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except InventoryQueryError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Room could not be saved",
        ) from exc


@router.post(
    "/allocations/options",
    response_model=AllocationOptionsResponse,
    status_code=status.HTTP_200_OK,
)
async def allocation_options(
    payload: AllocationOptionsRequest,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationOptionsResponse:
    """Run comfort, price and room-count strategies for a stay."""
    try:
        rooms, options = service.options_for_stay(
            check_in_date=payload.check_in_date,
            check_out_date=payload.check_out_date,
            guest_count=payload.guest_count,
            guest_type=payload.guest_type,
        )
        return AllocationOptionsResponse(
            rooms=[RoomResponse.from_domain(room) for room in rooms],
            options=[AllocationOptionResponse.from_domain(option) for option in options],
        )
    except (InventoryValidationError, AllocationValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except InventoryQueryError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Room availability could not be loaded",
        ) from exc
    except SolverDependencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate allocation options",
        ) from exc


@router.get(
    "/special_charges",
    response_model=SpecialChargesResponse,
    status_code=status.HTTP_200_OK,
)
async def special_charges(
    service: PricingService = Depends(get_pricing_service),
) -> SpecialChargesResponse:
    return SpecialChargesResponse(
        special_charges=[
            SpecialChargeModel.from_domain(charge) for charge in service.list_special_charges()
        ]
    )


@router.post(
    "/payments/quote",
    response_model=PaymentCalculationResponse,
    status_code=status.HTTP_200_OK,
)
async def payment_quote(
    payload: QuoteRequest,
    service: PricingService = Depends(get_pricing_service),
) -> PaymentCalculationResponse:
    """Price the active allocation; nothing is persisted."""
    try:
        calculation = service.quote(
            allocations=[item.to_domain() for item in payload.allocations],
            special_charges=[charge.to_domain() for charge in payload.special_charges],
            discount=payload.discount.to_domain(),
            check_in_date=payload.check_in_date,
            check_out_date=payload.check_out_date,
            per_person_per_night=payload.per_person_per_night,
        )
        return PaymentCalculationResponse.from_domain(calculation)
    except PricingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
