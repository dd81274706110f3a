#!/usr/bin/env python3
"""CLI entrypoint for the bugreport battery analyzer."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from battery_health.dumpstate_analyzer import analyze_file, history, renderer, settings
from battery_health.dumpstate_analyzer.reconcile import Reading, apply_manual_design_capacity
from battery_health.dumpstate_analyzer.scanner import PROGRESS_DONE, iter_bugreport_files

logger = logging.getLogger("battery_health.dumpstate_analyzer.cli")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )


def open_store(args: argparse.Namespace) -> history.HistoryStore:
    path = settings.resolve_history_path(getattr(args, "history", None))
    limit = settings.resolve_history_limit(getattr(args, "limit", None))
    return history.HistoryStore(path, limit=limit)


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn the first Ctrl-C during a scan into a cancellation request.

    Signal handlers can only be installed from the main thread; elsewhere the
    event is yielded without one.
    """
    cancel = threading.Event()

    def _handle_interrupt(signum: int, frame: Any) -> None:
        logger.warning("Interrupt received, stopping scan")
        cancel.set()

    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return
    previous = signal.signal(signal.SIGINT, _handle_interrupt)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def log_progress(count: int) -> None:
    if count == PROGRESS_DONE:
        logger.debug("Scan finished")
    else:
        logger.debug("Scanned %d lines", count)


def read_bugreport(path: Path, design_capacity: int | None) -> Reading:
    with cancel_on_interrupt() as cancel:
        reading = analyze_file(path, log_progress, cancel)
    for message in reading.parse_errors:
        logger.warning("%s: %s", path.name, message)
    return apply_manual_design_capacity(reading, design_capacity)


def format_reading(reading: Reading) -> list[str]:
    rows: list[tuple[str, Any]] = [
        ("Device", reading.device_model),
        ("Log time", reading.logfile_timestamp),
        ("Health", renderer.format_pct(reading.health_pct)),
        ("Status", renderer.health_status(reading.health_pct)),
        ("Current capacity", renderer.format_mah(reading.current_capacity_mah)),
        ("Design capacity", renderer.format_mah(reading.design_capacity_mah)),
        ("Rated capacity", renderer.format_mah(reading.rated_capacity_mah)),
        ("Cycle count", reading.cycle_count),
        ("State of charge", reading.state_of_charge_pct),
        ("First use", reading.first_use_date),
    ]
    if reading.reported_health_pct is not None and reading.calculated_health_pct is not None:
        rows.append(("Calculated health", renderer.format_pct(reading.calculated_health_pct)))
    if reading.design_capacity_mah is None:
        rows.append(("Note", "design capacity not reported; pass --design-capacity"))
    return [f"{label.ljust(18)} {value}" for label, value in rows if value not in (None, "")]


def command_analyze(args: argparse.Namespace) -> None:
    path = Path(args.file).expanduser()
    if not path.is_file():
        raise SystemExit(f"File not found: {path}")
    try:
        design_capacity = settings.resolve_design_capacity(args.design_capacity)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    logger.info("Analyzing %s", path)
    reading = read_bugreport(path, design_capacity)
    if not reading.has_data:
        raise SystemExit(f"No battery data found in {path}")
    if args.json:
        print(json.dumps(reading.to_dict(), indent=2))
    else:
        print("\n".join(format_reading(reading)))
    if args.save:
        store = open_store(args)
        if store.save_result(reading):
            logger.info("Reading saved to %s", store.path)
        else:
            logger.info("Reading already in history")


def command_scan(args: argparse.Namespace) -> None:
    root = Path(args.directory).expanduser()
    if not root.is_dir():
        raise SystemExit(f"Directory not found: {root}")
    design_capacity = settings.resolve_design_capacity(None)
    store = open_store(args) if args.save else None
    print("File".ljust(50), "Health".ljust(10), "Cycles".ljust(8), "Saved")
    print("-" * 80)
    found = 0
    for path in iter_bugreport_files(root):
        reading = read_bugreport(path, design_capacity)
        if not reading.has_data:
            print(str(path.relative_to(root)).ljust(50), "no data")
            continue
        found += 1
        saved = "-"
        if store is not None:
            saved = "yes" if store.save_result(reading) else "duplicate"
        cycles = "" if reading.cycle_count is None else str(reading.cycle_count)
        print(
            str(path.relative_to(root)).ljust(50),
            renderer.format_pct(reading.health_pct).ljust(10),
            cycles.ljust(8),
            saved,
        )
    logger.info("Found battery data in %d files", found)


def command_history(args: argparse.Namespace) -> None:
    store = open_store(args)
    timeline = store.timeline()
    if not timeline:
        print("No readings recorded yet.")
        return
    for item in timeline:
        if isinstance(item, history.ReplacementMarker):
            print(f"--- Battery replaced (first use {item.new_battery_date}) ---")
            continue
        print(
            item.id.ljust(15),
            (item.logfile_timestamp or "").ljust(36),
            renderer.format_pct(item.health_pct).ljust(8),
            "" if item.cycle_count is None else f"{item.cycle_count} cycles",
        )


def command_render(args: argparse.Namespace) -> None:
    store = open_store(args)
    output = Path(args.output).expanduser()
    content = renderer.render_history(store.entries(), output)
    logger.info("Report written to %s (%d characters)", output, len(content))


def command_export(args: argparse.Namespace) -> None:
    store = open_store(args)
    output = Path(args.output).expanduser()
    entries = store.entries()
    document = history.build_backup_document(
        entries, design_capacity=settings.resolve_design_capacity(None)
    )
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(document, fh, indent=2)
    logger.info("Exported %d entries to %s", len(entries), output)


def command_import(args: argparse.Namespace) -> None:
    source = Path(args.input).expanduser()
    if not source.is_file():
        raise SystemExit(f"File not found: {source}")
    try:
        entries, design_capacity = history.load_backup_document(source)
    except (ValueError, TypeError) as exc:
        raise SystemExit(f"Invalid backup file {source}: {exc}") from exc
    store = open_store(args)
    imported, skipped = store.import_entries(entries)
    print(f"Imported {imported} entries, skipped {skipped} duplicates")
    if design_capacity is not None:
        logger.info(
            "Backup carries a design capacity of %d mAh; set %s to use it",
            design_capacity,
            settings.DESIGN_CAPACITY_ENV,
        )


def command_delete(args: argparse.Namespace) -> None:
    store = open_store(args)
    if not store.delete_entry(args.entry_id):
        raise SystemExit(f"No history entry with id {args.entry_id}")
    logger.info("Deleted entry %s", args.entry_id)


def command_clear(args: argparse.Namespace) -> None:
    store = open_store(args)
    store.clear()
    logger.info("History cleared")


def build_parser() -> argparse.ArgumentParser:
    parser_obj = argparse.ArgumentParser(description="Battery health from Android bugreports")
    parser_obj.add_argument(
        "--history", help="History file (overrides BATTERY_HISTORY_PATH)"
    )
    parser_obj.add_argument(
        "--limit", type=int, help="Maximum stored readings (overrides BATTERY_HISTORY_LIMIT)"
    )
    parser_obj.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser_obj.add_subparsers(dest="command")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze one bugreport")
    analyze_parser.add_argument("file", help="Bugreport .txt, .log or .zip")
    analyze_parser.add_argument("--save", action="store_true", help="Add the reading to history")
    analyze_parser.add_argument("--json", action="store_true", help="Print the reading as JSON")
    analyze_parser.add_argument(
        "--design-capacity",
        type=int,
        help="Design capacity in mAh when the log lacks one (overrides BATTERY_DESIGN_CAPACITY)",
    )
    analyze_parser.set_defaults(func=command_analyze)

    scan_parser = subparsers.add_parser("scan", help="Analyze every bugreport under a directory")
    scan_parser.add_argument("directory")
    scan_parser.add_argument("--save", action="store_true", help="Add readings to history")
    scan_parser.set_defaults(func=command_scan)

    history_parser = subparsers.add_parser("history", help="Show stored readings")
    history_parser.set_defaults(func=command_history)

    render_parser = subparsers.add_parser("render", help="Render Markdown history report")
    render_parser.add_argument("output")
    render_parser.set_defaults(func=command_render)

    export_parser = subparsers.add_parser("export", help="Write a JSON backup")
    export_parser.add_argument("output")
    export_parser.set_defaults(func=command_export)

    import_parser = subparsers.add_parser("import", help="Merge a JSON backup into history")
    import_parser.add_argument("input")
    import_parser.set_defaults(func=command_import)

    delete_parser = subparsers.add_parser("delete", help="Delete one stored reading")
    delete_parser.add_argument("entry_id")
    delete_parser.set_defaults(func=command_delete)

    clear_parser = subparsers.add_parser("clear", help="Delete all stored readings")
    clear_parser.set_defaults(func=command_clear)

    return parser_obj


def main(argv: list[str] | None = None) -> None:
    parser_obj = build_parser()
    args = parser_obj.parse_args(argv)
    if not getattr(args, "command", None):
        parser_obj.print_help()
        return
    configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
