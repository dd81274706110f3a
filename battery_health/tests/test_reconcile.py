from __future__ import annotations

from pathlib import Path

import pytest

from battery_health.dumpstate_analyzer import analyze_file, analyze_stream, reconcile
from battery_health.dumpstate_analyzer.reconcile import Reading

SAMPLES = Path(__file__).resolve().parent / "_samples"


@pytest.mark.parametrize(
    ("design", "current", "full_charge", "expected"),
    [
        (4000, 3500, 3900, (4000, True)),
        (1500, 3500, 3900, (3900, False)),
        (None, 3500, 20000, (3500, False)),
        (None, 3500, None, (3500, False)),
        (16000, 1200, 800, (None, False)),
        (None, None, None, (None, False)),
        (2000, None, None, (2000, True)),
        (15000, None, None, (15000, True)),
    ],
)
def test_reconcile_design_capacity(
    design: int | None,
    current: int | None,
    full_charge: int | None,
    expected: tuple[int | None, bool],
) -> None:
    assert reconcile.reconcile_design_capacity(design, current, full_charge) == expected


def test_reconciled_capacity_stays_in_band() -> None:
    values = [None, 0, 1999, 2000, 4500, 15000, 15001, 99999]
    for design in values:
        for current in values:
            for full_charge in values:
                capacity, reliable = reconcile.reconcile_design_capacity(design, current, full_charge)
                assert capacity is None or 2000 <= capacity <= 15000
                if reliable:
                    assert capacity == design


def test_health_uses_rated_capacity_when_reliable() -> None:
    reading = analyze_stream(
        [
            "CAP_NOM 3500mAh",
            "  Estimated battery capacity: 4000 mAh",
            "    batteryFullChargeDesignCapacityUah: 4200000",
        ]
    )
    assert reading.design_capacity_reliable
    assert reading.design_capacity_mah == 4200
    assert reading.calculated_health_pct == 87.5
    assert reading.health_pct == 87.5


def test_health_absent_without_reliable_design() -> None:
    reading = analyze_stream(["CAP_NOM 3500mAh", "  Estimated battery capacity: 4000 mAh"])
    assert not reading.design_capacity_reliable
    assert reading.design_capacity_mah is None
    assert reading.calculated_health_pct is None
    assert reading.health_pct is None
    assert not reading.is_degraded
    assert reading.degradation_pct is None
    assert reading.has_data


def test_calculate_health_edges() -> None:
    assert reconcile.calculate_health(None, 3000, 4000) == 75.0
    assert reconcile.calculate_health(None, None, 4000) is None
    assert reconcile.calculate_health(3000, None, 0) is None
    assert reconcile.calculate_health(3000, None, None) is None


def test_samsung_sample_reading() -> None:
    reading = analyze_file(SAMPLES / "samsung_bugreport.txt")
    assert reading.parse_errors == ()
    assert reading.device_model == "Samsung SM-S921B"
    assert reading.logfile_timestamp == "January 21st, 2026 at 4:06 PM"
    assert reading.logfile_timestamp_epoch is not None
    assert reading.current_capacity_mah == 3800
    assert reading.full_charge_capacity_mah == 3750
    assert reading.design_capacity_mah == 4000
    assert reading.design_capacity_reliable
    assert reading.cycle_count == 450
    assert reading.state_of_charge_pct == 76
    assert reading.first_use_date == "March 15th, 2024"
    assert reading.reported_health_pct == 93.0
    assert reading.calculated_health_pct == pytest.approx(95.0)
    assert reading.health_pct == 93.0
    assert reading.capacity_loss_mah == 200
    assert [change.level for change in reading.battery_level_changes] == [77, 76]
    assert reading.battery_level_changes[0].timestamp == "2026-01-21 15:58:01"


def test_pixel_sample_reading() -> None:
    reading = analyze_file(SAMPLES / "pixel_bugreport.txt")
    assert reading.device_model == "Google Pixel 8"
    assert reading.current_capacity_mah == 3660
    assert reading.full_charge_capacity_mah == 4100
    assert reading.rated_capacity_mah == 4575
    assert reading.cycle_count == 287
    assert reading.state_of_charge_pct == 64
    assert reading.design_capacity_mah is None
    assert not reading.design_capacity_reliable
    assert reading.health_pct is None


def test_empty_document_has_no_data() -> None:
    reading = analyze_stream(["nothing to see", "------ RADIO LOG ------", "CAP_NOM 3800mAh"])
    assert not reading.has_data
    assert reading.parse_errors == ()


def test_current_capacity_falls_back_to_full_charge() -> None:
    state_lines = ["    batteryFullChargeUah: 3900000", "    batteryFullChargeDesignCapacityUah: 4500000"]
    reading = analyze_stream(state_lines)
    assert reading.current_capacity_mah == 3900
    assert reading.calculated_health_pct == pytest.approx(86.6666, rel=1e-4)


def test_reading_keeps_latest_twenty_events() -> None:
    lines = [
        f"2026-01-21 11:{index // 60:02d}:{index % 60:02d} ACTION_BATTERY_CHANGED level:{index}"
        for index in range(30)
    ]
    reading = analyze_stream(lines + ["CAP_NOM 3800mAh"])
    assert len(reading.battery_level_changes) == reconcile.READING_LEVEL_CHANGES
    assert reading.battery_level_changes[0].level == 10
    assert reading.battery_level_changes[-1].level == 29


def test_manual_design_capacity_fills_health() -> None:
    reading = analyze_file(SAMPLES / "pixel_bugreport.txt")
    updated = reconcile.apply_manual_design_capacity(reading, 4575)
    assert updated.design_capacity_mah == 4575
    assert updated.calculated_health_pct == pytest.approx(80.0)
    assert updated.health_pct == pytest.approx(80.0)
    assert reading.design_capacity_mah is None


def test_manual_design_capacity_rules() -> None:
    reliable = Reading(current_capacity_mah=3000, design_capacity_mah=4000, calculated_health_pct=75.0)
    assert reconcile.apply_manual_design_capacity(reliable, 5000) is reliable
    missing_current = Reading(cycle_count=10)
    assert reconcile.apply_manual_design_capacity(missing_current, 4000) is missing_current
    with pytest.raises(ValueError):
        reconcile.apply_manual_design_capacity(Reading(current_capacity_mah=3000), 500)


def test_reading_properties() -> None:
    reading = Reading(current_capacity_mah=3000, design_capacity_mah=4000, calculated_health_pct=75.0)
    assert reading.is_degraded
    assert reading.degradation_pct == 25.0
    assert reading.capacity_loss_mah == 1000
    data = reading.to_dict()
    assert data["has_data"] is True
    assert data["health_pct"] == 75.0
    assert data["battery_level_changes"] == ()


def test_combine_device_name() -> None:
    assert reconcile.combine_device_name("Samsung", "SM-A546B") == "Samsung SM-A546B"
    assert reconcile.combine_device_name(None, "Pixel 7") == "Pixel 7"
    assert reconcile.combine_device_name("Google", None) is None
