"""Environment-driven application settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_preferences(name: str) -> dict[str, tuple[str, ...]]:
    """Parse a JSON object of guest type -> preferred room types."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{name} must be a JSON object") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"{name} must be a JSON object")
    return {
        str(guest_type).strip().lower(): tuple(str(item) for item in room_types)
        for guest_type, room_types in parsed.items()
    }


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    log_format: str
    database_path: Path
    currency_code: str
    seed_demo_data: bool
    allocation_solver_max_time_seconds: float
    allocation_solver_random_seed: int
    allocation_cp_sat_workers: int
    per_person_charge_per_night: bool
    reference_prefix: str
    comfort_room_type_preferences: dict[str, tuple[str, ...]] = field(default_factory=dict)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; call `cache_clear()` to reload."""
    database_path = Path(
        _env_str("LODGE_DATABASE_PATH", str(PROJECT_ROOT / "data" / "lodge.db"))
    )
    return Settings(
        app_name=_env_str("LODGE_APP_NAME", "Lodge Allocation Service"),
        app_version=_env_str("LODGE_APP_VERSION", "1.0.0"),
        log_level=_env_str("LODGE_LOG_LEVEL", "INFO"),
        log_format=_env_str("LODGE_LOG_FORMAT", DEFAULT_LOG_FORMAT),
        database_path=database_path,
        currency_code=_env_str("LODGE_CURRENCY_CODE", "INR"),
        seed_demo_data=_env_bool("LODGE_SEED_DEMO_DATA", True),
        allocation_solver_max_time_seconds=_env_float(
            "LODGE_SOLVER_MAX_TIME_SECONDS", 5.0
        ),
        allocation_solver_random_seed=_env_int("LODGE_SOLVER_RANDOM_SEED", 42),
        allocation_cp_sat_workers=_env_int("LODGE_CP_SAT_WORKERS", 1),
        per_person_charge_per_night=_env_bool(
            "LODGE_PER_PERSON_CHARGE_PER_NIGHT", True
        ),
        reference_prefix=_env_str("LODGE_REFERENCE_PREFIX", "RES"),
        comfort_room_type_preferences=_env_preferences(
            "LODGE_COMFORT_ROOM_TYPE_PREFERENCES"
        ),
    )
