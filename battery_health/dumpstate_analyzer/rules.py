"""Recognizer table mapping dumpstate lines to battery fields.

Every output field is fed by one or more :class:`Recognizer` rows. A row
pairs a pattern with the capture group to read, a converter for the captured
text and a :class:`MergePolicy` deciding whether the converted value may
replace what the field already holds. Rows are evaluated per line in the
order they are declared here, so the order of :data:`RECOGNIZERS` is the
precedence between vendor dialects.

Adding support for a new firmware means appending rows, not new code paths.
"""
from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .timestamps import format_first_use_date


class MergePolicy(Enum):
    FIRST_WINS = "first_wins"
    MAX_WINS = "max_wins"
    OVERRIDE_IF_UNSET_OR_ZERO = "override_if_unset_or_zero"
    LAST_WINS = "last_wins"


@dataclass(frozen=True)
class Slot:
    """Per-field state: ``UNSET`` or a set value."""

    value: Any = None
    is_set: bool = False


UNSET = Slot()


def merge(policy: MergePolicy, current: Slot, candidate: Any) -> tuple[Slot, bool]:
    """Apply ``policy`` to ``candidate``; return the resulting slot and whether it was accepted."""
    if policy is MergePolicy.FIRST_WINS:
        accept = not current.is_set
    elif policy is MergePolicy.MAX_WINS:
        baseline = current.value if current.is_set else -1
        accept = candidate > baseline
    elif policy is MergePolicy.OVERRIDE_IF_UNSET_OR_ZERO:
        accept = not current.is_set or current.value == 0
    elif policy is MergePolicy.LAST_WINS:
        accept = True
    else:  # pragma: no cover - exhaustive
        raise ValueError(f"unknown merge policy: {policy}")
    if not accept:
        return current, False
    return Slot(candidate, True), True


def is_final(policy: MergePolicy, current: Slot) -> bool:
    """True when no future candidate could be accepted under ``policy``."""
    if not current.is_set:
        return False
    if policy is MergePolicy.FIRST_WINS:
        return True
    if policy is MergePolicy.OVERRIDE_IF_UNSET_OR_ZERO:
        return current.value != 0
    return False


def micro_to_milli(value: str) -> int:
    return int(value) // 1000


def discharge_to_cycles(value: str) -> int:
    return int(value) // 100


def capitalize_first(value: str) -> str:
    return value[:1].upper() + value[1:]


def as_text(value: str) -> str:
    return value


@dataclass(frozen=True)
class Recognizer:
    name: str
    field: str
    pattern: re.Pattern[str]
    policy: MergePolicy
    dialect: str
    group: int = 1
    convert: Callable[[str], Any] = int
    hint: str | None = None
    # Flag the extraction as carrying a device-reported capacity once accepted.
    marks_reliable: bool = False
    # Skip once the extraction carries a device-reported capacity.
    requires_unreliable: bool = False

    def extract(self, match: re.Match[str]) -> Any:
        raw = match.group(self.group)
        if raw is None:
            return None
        try:
            return self.convert(raw)
        except ValueError:
            return None


FIELD_NAMES = (
    "logfile_timestamp",
    "cycle_count",
    "current_capacity",
    "full_charge_capacity",
    "design_capacity",
    "rated_capacity",
    "first_use_date",
    "state_of_charge",
    "reported_health",
    "device_brand",
    "device_model",
)

DUMPSTATE_TIMESTAMP_RE = re.compile(r"== dumpstate: (\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})")
CYCLE_RE = re.compile(r"Cycle\((\d+),\s*(\d+)\)")
EXTRA_CYCLE_COUNT_RE = re.compile(r"android\.os\.extra\.CYCLE_COUNT=(\d+)")
CAP_NOM_RE = re.compile(r"CAP_NOM\s+(\d+)mAh")
CHARGE_COUNTER_RE = re.compile(r"charge_counter=(\d+)")
SERVICE_CHARGE_COUNTER_RE = re.compile(r"Charge counter:\s+(\d+)")
HEALTHD_BATTERY_RE = re.compile(r"healthd: battery l=(\d+)(?:.*?fc=(\d+))?(?:.*?cc=(\d+))?")
FULL_CHARGE_RE = re.compile(r"batteryFullChargeUah:\s+(\d+)")
DESIGN_CAPACITY_RE = re.compile(r"batteryFullChargeDesignCapacityUah:\s+(\d+)")
ESTIMATED_CAPACITY_RE = re.compile(r"Estimated battery capacity:\s+(\d+)\s*mAh")
RATED_CAPACITY_RE = re.compile(r"Rated:\s+(\d+)")
LEARNED_CAPACITY_RE = re.compile(r"Last learned battery capacity:\s+(\d+)\s*mAh")
FIRST_USE_DATE_RE = re.compile(r"FirstUseDate.*?\[(\d{8})\]")
SOC_RE = re.compile(r"SoC:(\d+)\(?%?\)?")
BATTINFO_ASOC_RE = re.compile(r"\[SS\]\[BattInfo\]AsocData.*?efsValue:(\d+)")
BATTINFO_CYCLE_STR_RE = re.compile(r"cycleStr:(\d+)")
BATTINFO_MAX_DISCHARGE_RE = re.compile(r"maxDischargeLevel:(\d+)")
BATTINFO_DISCHARGE_RE = re.compile(r"\[SS\]\[BattInfo\]DischargeLevelData efsValue:(\d+)")
BATTINFO_FIRST_USE_RE = re.compile(r"\[SS\]\[BattInfo\]FirstUseDateData.*?efsValue:(\d{8})")
SOC_DEBUG_RE = re.compile(r"SOC\((\d+)%?\)")
BATTERY_LEVEL_RE = re.compile(r"^\s+level:\s+(\d+)$")
HEALTHD_LEVEL_RE = re.compile(r"healthd: battery.*?l=(\d+)")
DEVICE_BRAND_RE = re.compile(r"\[ro\.product\.brand\]:\s*\[(.+?)\]")
DEVICE_MODEL_RE = re.compile(r"\[ro\.product\.model\]:\s*\[(.+?)\]")

GENERIC_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})")
BATTERY_CHANGED_RE = re.compile(r"ACTION_BATTERY_CHANGED.*?level:(\d+)")
BATTERY_CHANGED_ACTION = "BATTERY_CHANGED"

FIRST = MergePolicy.FIRST_WINS
MAX = MergePolicy.MAX_WINS

RECOGNIZERS: tuple[Recognizer, ...] = (
    Recognizer(
        "dumpstate_header", "logfile_timestamp", DUMPSTATE_TIMESTAMP_RE, FIRST, "generic",
        convert=as_text, hint="== dumpstate:",
    ),
    Recognizer("samsung_cycle", "cycle_count", CYCLE_RE, MAX, "samsung", hint="Cycle("),
    Recognizer(
        "extra_cycle_count", "cycle_count", EXTRA_CYCLE_COUNT_RE, MAX, "generic",
        hint="CYCLE_COUNT=",
    ),
    Recognizer(
        "cap_nom", "current_capacity", CAP_NOM_RE, FIRST, "samsung",
        hint="CAP_NOM", marks_reliable=True,
    ),
    Recognizer(
        "charge_counter", "current_capacity", CHARGE_COUNTER_RE, FIRST, "generic",
        convert=micro_to_milli, hint="charge_counter=",
    ),
    Recognizer(
        "service_charge_counter", "current_capacity", SERVICE_CHARGE_COUNTER_RE, FIRST,
        "generic", convert=micro_to_milli, hint="Charge counter:",
    ),
    Recognizer(
        "healthd_level", "state_of_charge", HEALTHD_BATTERY_RE,
        MergePolicy.OVERRIDE_IF_UNSET_OR_ZERO, "healthd", hint="healthd: battery l=",
    ),
    Recognizer(
        "healthd_full_charge", "current_capacity", HEALTHD_BATTERY_RE, FIRST, "healthd",
        group=2, convert=micro_to_milli, hint="healthd: battery l=",
    ),
    Recognizer(
        "healthd_cycles", "cycle_count", HEALTHD_BATTERY_RE, MAX, "healthd",
        group=3, hint="healthd: battery l=",
    ),
    Recognizer(
        "full_charge_uah", "full_charge_capacity", FULL_CHARGE_RE, FIRST, "batterystats",
        convert=micro_to_milli, hint="batteryFullChargeUah:",
    ),
    Recognizer(
        "design_capacity_uah", "design_capacity", DESIGN_CAPACITY_RE, FIRST, "batterystats",
        convert=micro_to_milli, hint="batteryFullChargeDesignCapacityUah:",
    ),
    Recognizer(
        "estimated_capacity", "rated_capacity", ESTIMATED_CAPACITY_RE, FIRST, "batterystats",
        hint="Estimated battery capacity:",
    ),
    Recognizer(
        "rated_capacity", "rated_capacity", RATED_CAPACITY_RE, FIRST, "batterystats",
        hint="Rated:",
    ),
    Recognizer(
        "learned_full_charge", "full_charge_capacity", LEARNED_CAPACITY_RE, FIRST,
        "batterystats", hint="Last learned battery capacity:", requires_unreliable=True,
    ),
    Recognizer(
        "learned_current", "current_capacity", LEARNED_CAPACITY_RE, FIRST,
        "batterystats", hint="Last learned battery capacity:", requires_unreliable=True,
    ),
    Recognizer(
        "first_use_date", "first_use_date", FIRST_USE_DATE_RE, FIRST, "samsung",
        convert=format_first_use_date, hint="FirstUseDate",
    ),
    Recognizer("samsung_soc", "state_of_charge", SOC_RE, FIRST, "samsung", hint="SoC:"),
    Recognizer(
        "battinfo_asoc", "reported_health", BATTINFO_ASOC_RE, MergePolicy.LAST_WINS,
        "samsung_battinfo", convert=float, hint="AsocData", marks_reliable=True,
    ),
    Recognizer(
        "battinfo_cycle_str", "cycle_count", BATTINFO_CYCLE_STR_RE, MAX, "samsung_battinfo",
        hint="cycleStr:",
    ),
    Recognizer(
        "battinfo_max_discharge", "cycle_count", BATTINFO_MAX_DISCHARGE_RE, MAX,
        "samsung_battinfo", convert=discharge_to_cycles, hint="maxDischargeLevel:",
    ),
    Recognizer(
        "battinfo_discharge", "cycle_count", BATTINFO_DISCHARGE_RE, MAX, "samsung_battinfo",
        convert=discharge_to_cycles, hint="DischargeLevelData",
    ),
    Recognizer(
        "battinfo_first_use", "first_use_date", BATTINFO_FIRST_USE_RE, FIRST,
        "samsung_battinfo", convert=format_first_use_date, hint="FirstUseDateData",
    ),
    Recognizer("debug_soc", "state_of_charge", SOC_DEBUG_RE, FIRST, "generic", hint="SOC("),
    Recognizer("service_level", "state_of_charge", BATTERY_LEVEL_RE, FIRST, "generic", hint="level:"),
    Recognizer(
        "healthd_level_fallback", "state_of_charge", HEALTHD_LEVEL_RE, FIRST, "healthd",
        hint="healthd: battery",
    ),
    Recognizer(
        "device_brand", "device_brand", DEVICE_BRAND_RE, FIRST, "device",
        convert=capitalize_first, hint="[ro.product.brand]",
    ),
    Recognizer(
        "device_model", "device_model", DEVICE_MODEL_RE, FIRST, "device",
        convert=as_text, hint="[ro.product.model]",
    ),
)


def recognizers_for(field: str, rules: Iterable[Recognizer] = RECOGNIZERS) -> list[Recognizer]:
    return [rule for rule in rules if rule.field == field]
