"""Room allocation strategies: comfort-first greedy and CP-SAT subset selection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Sequence

try:
    from ortools.sat.python import cp_model
except ModuleNotFoundError:  # pragma: no cover - runtime dependency guard
    cp_model = None  # type: ignore[assignment]

from lodge.domain.constraints import SolverConfig, validate_solver_config
from lodge.domain.models import (
    AllocationOption,
    AllocationStrategy,
    Room,
    RoomAllocation,
    room_number_key,
    to_minor_units,
)
from lodge.services.inventory_service import InventoryService
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

OBJECTIVE_TARIFF = "tariff"
OBJECTIVE_ROOM_COUNT = "room_count"


class AllocationValidationError(Exception):
    """Raised when allocation inputs or edits are invalid."""


class SolverDependencyError(Exception):
    """Raised when OR-Tools is unavailable in the runtime."""


@dataclass(frozen=True)
class SelectionArtifacts:
    model: Any
    variables: dict[str, Any]
    expressions: dict[str, Any]


def _ensure_solver_dependency() -> None:
    if cp_model is None:
        raise SolverDependencyError(
            "OR-Tools is not installed. Install 'ortools' to enable allocation optimization."
        )


def solver_config_from_settings(settings: Settings) -> SolverConfig:
    config = SolverConfig(
        max_time_seconds=settings.allocation_solver_max_time_seconds,
        random_seed=settings.allocation_solver_random_seed,
        workers=settings.allocation_cp_sat_workers,
    )
    validate_solver_config(config)
    return config


def _unique_rooms(rooms: Sequence[Room]) -> list[Room]:
    seen: set[str] = set()
    unique: list[Room] = []
    for room in rooms:
        if room.room_id in seen or room.capacity < 1:
            continue
        seen.add(room.room_id)
        unique.append(room)
    return unique


def _is_satisfiable(rooms: Sequence[Room], guest_count: int) -> bool:
    return guest_count >= 1 and sum(room.capacity for room in rooms) >= guest_count


def fill_in_order(
    rooms: Sequence[Room],
    guest_count: int,
    strategy: AllocationStrategy,
) -> list[RoomAllocation]:
    """Fill each room up to capacity; the last room takes the remainder."""
    allocations: list[RoomAllocation] = []
    remaining = guest_count
    for room in rooms:
        if remaining <= 0:
            break
        assigned = min(room.capacity, remaining)
        allocations.append(
            RoomAllocation.for_room(room, f"{strategy.value}:{room.room_id}", assigned)
        )
        remaining -= assigned
    return allocations


def _spread_evenly(rooms: Sequence[Room], guest_count: int) -> list[int]:
    """Seat guests one at a time in the room with the most free beds."""
    assigned = [0] * len(rooms)
    for _ in range(guest_count):
        best_index = max(
            range(len(rooms)),
            key=lambda index: (rooms[index].capacity - assigned[index], -index),
        )
        assigned[best_index] += 1
    return assigned


def generate_comfort_first(
    rooms: Sequence[Room],
    guest_count: int,
    guest_type: Optional[str] = None,
    *,
    preferences: Optional[Mapping[str, Sequence[str]]] = None,
) -> list[RoomAllocation]:
    """Largest rooms first so every guest gets the most headroom.

    Room types preferred for the guest type (if configured) are considered
    before everything else; ties fall back to cheaper tariff, then room number.
    """
    candidates = _unique_rooms(rooms)
    if not _is_satisfiable(candidates, guest_count):
        return []

    preferred: tuple[str, ...] = ()
    if guest_type and preferences:
        preferred = tuple(preferences.get(guest_type.strip().lower(), ()))

    def preference_rank(room: Room) -> int:
        if room.room_type in preferred:
            return preferred.index(room.room_type)
        return len(preferred)

    ordered = sorted(
        candidates,
        key=lambda room: (
            preference_rank(room),
            -room.capacity,
            room.tariff,
            room_number_key(room.room_number),
        ),
    )

    selected: list[Room] = []
    covered = 0
    for room in ordered:
        if covered >= guest_count:
            break
        selected.append(room)
        covered += room.capacity

    counts = _spread_evenly(selected, guest_count)
    return [
        RoomAllocation.for_room(
            room,
            f"{AllocationStrategy.COMFORT_FIRST.value}:{room.room_id}",
            count,
        )
        for room, count in zip(selected, counts)
        if count > 0
    ]


def build_selection_model(
    *,
    rooms: Sequence[Room],
    guest_count: int,
    upper_bounds: Mapping[str, int],
    fixed: Mapping[str, int],
) -> SelectionArtifacts:
    """Build a CP-SAT model choosing a room subset that seats every guest."""
    _ensure_solver_dependency()
    model = cp_model.CpModel()
    variables = {
        room.room_id: model.NewBoolVar(f"use_room_{room.room_id}") for room in rooms
    }
    model.Add(sum(room.capacity * variables[room.room_id] for room in rooms) >= guest_count)

    expressions = {
        OBJECTIVE_TARIFF: sum(
            to_minor_units(room.tariff) * variables[room.room_id] for room in rooms
        ),
        OBJECTIVE_ROOM_COUNT: sum(variables.values()),
    }
    for name, bound in upper_bounds.items():
        model.Add(expressions[name] <= bound)
    for room_id, value in fixed.items():
        model.Add(variables[room_id] == value)

    return SelectionArtifacts(model=model, variables=variables, expressions=expressions)


def _solve(
    artifacts: SelectionArtifacts,
    config: SolverConfig,
    objective: Optional[str] = None,
) -> Optional[tuple[dict[str, int], int]]:
    if objective is not None:
        artifacts.model.Minimize(artifacts.expressions[objective])

    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = float(config.max_time_seconds)
    solver.parameters.num_search_workers = config.workers
    solver.parameters.random_seed = config.random_seed

    status = solver.Solve(artifacts.model)
    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.debug("Room selection solve failed | status=%s", solver.StatusName(status))
        return None

    values = {room_id: int(solver.Value(var)) for room_id, var in artifacts.variables.items()}
    objective_value = int(round(solver.ObjectiveValue())) if objective is not None else 0
    return values, objective_value


def select_rooms(
    rooms: Sequence[Room],
    guest_count: int,
    objective_order: Sequence[str],
    config: SolverConfig,
) -> list[Room]:
    """Lexicographic optimization over `objective_order`, then room numbers.

    Each objective is minimized in turn and then capped at its optimum. The
    final pass walks rooms in natural number order and keeps a room whenever
    the capped model stays feasible with it, which yields the smallest
    room-number sequence among the optimal subsets.
    """
    _ensure_solver_dependency()
    candidates = _unique_rooms(rooms)
    if not _is_satisfiable(candidates, guest_count):
        return []

    upper_bounds: dict[str, int] = {}
    for objective in objective_order:
        artifacts = build_selection_model(
            rooms=candidates,
            guest_count=guest_count,
            upper_bounds=upper_bounds,
            fixed={},
        )
        solved = _solve(artifacts, config, objective)
        if solved is None:
            return []
        _, best = solved
        upper_bounds[objective] = best

    target_count = upper_bounds.get(OBJECTIVE_ROOM_COUNT)
    fixed: dict[str, int] = {}
    chosen = 0
    for room in sorted(candidates, key=lambda item: room_number_key(item.room_number)):
        if target_count is not None and chosen >= target_count:
            fixed[room.room_id] = 0
            continue
        trial = {**fixed, room.room_id: 1}
        artifacts = build_selection_model(
            rooms=candidates,
            guest_count=guest_count,
            upper_bounds=upper_bounds,
            fixed=trial,
        )
        if _solve(artifacts, config) is not None:
            fixed = trial
            chosen += 1
        else:
            fixed[room.room_id] = 0

    selected = [room for room in candidates if fixed.get(room.room_id) == 1]
    seated = sum(room.capacity for room in selected)
    if seated < guest_count:
        logger.warning(
            "Room selection fell short of the party | guests=%s | capacity=%s | objectives=%s",
            guest_count,
            seated,
            ",".join(objective_order),
        )
        return []
    return sorted(selected, key=lambda item: room_number_key(item.room_number))


def generate_price_optimized(
    rooms: Sequence[Room],
    guest_count: int,
    guest_type: Optional[str] = None,
    *,
    config: Optional[SolverConfig] = None,
) -> list[RoomAllocation]:
    """Cheapest subset; ties go to fewer rooms, then lower room numbers."""
    del guest_type
    resolved = config or solver_config_from_settings(get_settings())
    selected = select_rooms(
        rooms,
        guest_count,
        (OBJECTIVE_TARIFF, OBJECTIVE_ROOM_COUNT),
        resolved,
    )
    return fill_in_order(selected, guest_count, AllocationStrategy.PRICE_OPTIMIZED)


def generate_minimal_rooms(
    rooms: Sequence[Room],
    guest_count: int,
    guest_type: Optional[str] = None,
    *,
    config: Optional[SolverConfig] = None,
) -> list[RoomAllocation]:
    """Fewest rooms; ties go to the cheaper subset, then lower room numbers."""
    del guest_type
    resolved = config or solver_config_from_settings(get_settings())
    selected = select_rooms(
        rooms,
        guest_count,
        (OBJECTIVE_ROOM_COUNT, OBJECTIVE_TARIFF),
        resolved,
    )
    return fill_in_order(selected, guest_count, AllocationStrategy.MINIMAL_ROOMS)


def generate_allocation_options(
    rooms: Sequence[Room],
    guest_count: int,
    guest_type: Optional[str] = None,
    *,
    config: Optional[SolverConfig] = None,
    preferences: Optional[Mapping[str, Sequence[str]]] = None,
) -> list[AllocationOption]:
    """Run every strategy and keep the ones that produced an allocation."""
    resolved = config or solver_config_from_settings(get_settings())
    results = (
        (
            AllocationStrategy.COMFORT_FIRST,
            generate_comfort_first(rooms, guest_count, guest_type, preferences=preferences),
        ),
        (
            AllocationStrategy.PRICE_OPTIMIZED,
            generate_price_optimized(rooms, guest_count, guest_type, config=resolved),
        ),
        (
            AllocationStrategy.MINIMAL_ROOMS,
            generate_minimal_rooms(rooms, guest_count, guest_type, config=resolved),
        ),
    )
    return [
        AllocationOption(strategy=strategy, allocations=tuple(allocations))
        for strategy, allocations in results
        if allocations
    ]


class AllocationService:
    """Business logic orchestration for availability lookup + strategy runs."""

    def __init__(
        self,
        inventory_service: Optional[InventoryService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._inventory_service = inventory_service or InventoryService(settings=self._settings)
        self._config = solver_config_from_settings(self._settings)

    @property
    def inventory_service(self) -> InventoryService:
        return self._inventory_service

    def generate_options(
        self,
        rooms: Sequence[Room],
        guest_count: int,
        guest_type: Optional[str] = None,
    ) -> list[AllocationOption]:
        if guest_count < 1:
            raise AllocationValidationError("guest_count must be >= 1")
        _ensure_solver_dependency()
        options = generate_allocation_options(
            rooms,
            guest_count,
            guest_type,
            config=self._config,
            preferences=self._settings.comfort_room_type_preferences,
        )
        logger.info(
            "Allocation options generated | guests=%s | guest_type=%s | rooms=%s | options=%s",
            guest_count,
            guest_type,
            len(rooms),
            [option.strategy.value for option in options],
        )
        return options

    def options_for_stay(
        self,
        *,
        check_in_date: date,
        check_out_date: date,
        guest_count: int,
        guest_type: Optional[str] = None,
    ) -> tuple[list[Room], list[AllocationOption]]:
        rooms = self._inventory_service.get_available_rooms(
            check_in_date,
            check_out_date,
            guest_count,
            guest_type,
        )
        options = self.generate_options(rooms, guest_count, guest_type)
        if not options:
            logger.warning(
                "No room combination available | check_in=%s | check_out=%s | guests=%s",
                check_in_date,
                check_out_date,
                guest_count,
            )
        return rooms, options
