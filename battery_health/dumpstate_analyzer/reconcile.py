"""Post-scan reconciliation: design capacity, health and the final reading."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace

from .scanner import BatteryLevelChange, ExtractionState
from .timestamps import format_logfile_timestamp, logfile_timestamp_to_epoch

logger = logging.getLogger(__name__)

# Phone and tablet packs; anything outside is treated as a misparsed field.
MIN_PLAUSIBLE_CAPACITY_MAH = 2000
MAX_PLAUSIBLE_CAPACITY_MAH = 15000

DEGRADED_BELOW_PCT = 80.0
READING_LEVEL_CHANGES = 20


@dataclass(frozen=True)
class Reading:
    """Battery figures extracted from one bugreport."""

    cycle_count: int | None = None
    current_capacity_mah: int | None = None
    design_capacity_mah: int | None = None
    rated_capacity_mah: int | None = None
    full_charge_capacity_mah: int | None = None
    reported_health_pct: float | None = None
    calculated_health_pct: float | None = None
    first_use_date: str | None = None
    state_of_charge_pct: int | None = None
    logfile_timestamp: str | None = None
    logfile_timestamp_epoch: int | None = None
    device_model: str | None = None
    battery_level_changes: tuple[BatteryLevelChange, ...] = ()
    parse_errors: tuple[str, ...] = ()
    design_capacity_reliable: bool = False

    @property
    def has_data(self) -> bool:
        return (
            self.cycle_count is not None
            or self.current_capacity_mah is not None
            or self.design_capacity_mah is not None
            or self.full_charge_capacity_mah is not None
        )

    @property
    def health_pct(self) -> float | None:
        if self.reported_health_pct is not None:
            return self.reported_health_pct
        return self.calculated_health_pct

    @property
    def is_degraded(self) -> bool:
        health = self.health_pct
        return health is not None and health < DEGRADED_BELOW_PCT

    @property
    def degradation_pct(self) -> float | None:
        health = self.health_pct
        return None if health is None else 100.0 - health

    @property
    def capacity_loss_mah(self) -> int | None:
        if self.design_capacity_mah is None or self.current_capacity_mah is None:
            return None
        return self.design_capacity_mah - self.current_capacity_mah

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["has_data"] = self.has_data
        data["health_pct"] = self.health_pct
        return data


def is_plausible_capacity(value: int | None) -> bool:
    return value is not None and MIN_PLAUSIBLE_CAPACITY_MAH <= value <= MAX_PLAUSIBLE_CAPACITY_MAH


def reconcile_design_capacity(
    design: int | None,
    current: int | None,
    full_charge: int | None,
) -> tuple[int | None, bool]:
    """Pick a design capacity and say whether the device reported it.

    Only a plausible raw design value is reliable. The full-charge and
    current capacities are approximations and are never reported as reliable.
    """
    if is_plausible_capacity(design):
        return design, True
    if is_plausible_capacity(full_charge):
        return full_charge, False
    if is_plausible_capacity(current):
        return current, False
    return None, False


def calculate_health(
    current: int | None,
    full_charge: int | None,
    denominator: int | None,
) -> float | None:
    actual = current if current is not None else full_charge
    if actual is None or denominator is None or denominator <= 0:
        return None
    return actual / denominator * 100.0


def combine_device_name(brand: str | None, model: str | None) -> str | None:
    if brand is not None and model is not None:
        return f"{brand} {model}"
    return model


def build_reading(state: ExtractionState) -> Reading:
    current = state.value("current_capacity")
    full_charge = state.value("full_charge_capacity")
    rated = state.value("rated_capacity")
    design, reliable = reconcile_design_capacity(
        state.value("design_capacity"), current, full_charge
    )
    calculated = None
    if reliable:
        calculated = calculate_health(current, full_charge, rated if rated is not None else design)
    else:
        logger.debug("No device-reported design capacity; estimate was %s mAh", design)
    raw_timestamp = state.value("logfile_timestamp")
    return Reading(
        cycle_count=state.value("cycle_count"),
        current_capacity_mah=current if current is not None else full_charge,
        design_capacity_mah=design if reliable else None,
        rated_capacity_mah=rated,
        full_charge_capacity_mah=full_charge,
        reported_health_pct=state.value("reported_health"),
        calculated_health_pct=calculated,
        first_use_date=state.value("first_use_date"),
        state_of_charge_pct=state.value("state_of_charge"),
        logfile_timestamp=format_logfile_timestamp(raw_timestamp),
        logfile_timestamp_epoch=logfile_timestamp_to_epoch(raw_timestamp),
        device_model=combine_device_name(state.value("device_brand"), state.value("device_model")),
        battery_level_changes=tuple(state.level_changes)[-READING_LEVEL_CHANGES:],
        parse_errors=tuple(state.errors),
        design_capacity_reliable=reliable,
    )


def apply_manual_design_capacity(reading: Reading, capacity: int | None) -> Reading:
    """Fill in a user-supplied design capacity when the log carried none."""
    if capacity is None or reading.design_capacity_mah is not None:
        return reading
    if not is_plausible_capacity(capacity):
        raise ValueError(
            f"design capacity must be between {MIN_PLAUSIBLE_CAPACITY_MAH} and "
            f"{MAX_PLAUSIBLE_CAPACITY_MAH} mAh, got {capacity}"
        )
    if reading.current_capacity_mah is None:
        return reading
    logger.info("Using configured design capacity of %d mAh", capacity)
    return replace(
        reading,
        design_capacity_mah=capacity,
        calculated_health_pct=calculate_health(reading.current_capacity_mah, None, capacity),
    )
