"""Markdown rendering of the battery history."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from .history import HistoryEntry, ReplacementMarker, build_timeline

HEALTH_BUCKETS = (
    (95.0, "Excellent"),
    (85.0, "Good"),
    (75.0, "Fair"),
    (65.0, "Poor"),
)


def health_status(health: float | None) -> str:
    if health is None:
        return "Unknown"
    for threshold, label in HEALTH_BUCKETS:
        if health >= threshold:
            return label
    return "Replace"


def render_history(entries: Sequence[HistoryEntry], output_path: Path) -> str:
    """Write a Markdown report for newest-first ``entries`` and return it."""
    now = datetime.now(UTC).replace(microsecond=0).isoformat()
    lines = ["# Battery Health History", "", f"_Last build: {now}_", ""]
    lines.append(f"**Total readings:** {len(entries)}")
    lines.append("")
    if entries:
        latest = entries[0]
        lines.append(
            f"**Latest health:** {format_pct(latest.health_pct)} "
            f"({health_status(latest.health_pct)})"
        )
        if latest.device_model:
            lines.append(f"**Device:** {escape_cell(latest.device_model)}")
        lines.append("")
    lines.append("## Timeline")
    lines.append("")
    if not entries:
        lines.append("_No readings recorded yet._")
    else:
        lines.append(
            "| Log time | Device | Health | Status | Capacity | Design | Cycles | SoC | First use |"
        )
        lines.append("| --- | --- | --- | --- | --- | --- | --- | --- | --- |")
        for item in build_timeline(entries):
            if isinstance(item, ReplacementMarker):
                lines.append(
                    f"| **Battery replaced** | | | | | | | | {escape_cell(item.new_battery_date)} |"
                )
            else:
                lines.append(format_entry_row(item))
    lines.append("")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    content = "\n".join(lines)
    output_path.write_text(content, encoding="utf-8")
    return content


def format_entry_row(entry: HistoryEntry) -> str:
    cells = [
        entry.logfile_timestamp or entry.id,
        entry.device_model or "",
        format_pct(entry.health_pct),
        health_status(entry.health_pct),
        format_mah(entry.current_capacity_mah),
        format_mah(entry.rated_capacity_mah or entry.design_capacity_mah),
        "" if entry.cycle_count is None else str(entry.cycle_count),
        "" if entry.state_of_charge_pct is None else f"{entry.state_of_charge_pct}%",
        entry.first_use_date or "",
    ]
    return "| " + " | ".join(escape_cell(cell) for cell in cells) + " |"


def format_pct(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.1f}%"


def format_mah(value: int | None) -> str:
    return "" if value is None else f"{value} mAh"


def escape_cell(value: str) -> str:
    return value.replace("|", "\\|")
