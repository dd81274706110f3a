from __future__ import annotations

import json
import shutil
import threading
import zipfile
from pathlib import Path

import pytest

from battery_health.dumpstate_analyzer import analyze_file, archive, settings
from battery_health.dumpstate_analyzer.history import HistoryStore
from battery_health.scripts import analyze_bugreports

SAMPLES = Path(__file__).resolve().parent / "_samples"


@pytest.fixture()
def sandbox(tmp_path: Path) -> Path:
    reports = tmp_path / "reports"
    reports.mkdir()
    for sample_file in SAMPLES.glob("*.txt"):
        shutil.copy(sample_file, reports / sample_file.name)
    return tmp_path


@pytest.fixture()
def samsung_zip(tmp_path: Path) -> Path:
    path = tmp_path / "bugreport-e1sxeea-UP1A.zip"
    main_text = (SAMPLES / "samsung_bugreport.txt").read_text(encoding="utf-8")
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("version.txt", "2.0")
        zf.writestr("FS/data/log/dumpstate_full.txt", main_text * 3)
        zf.writestr("bugreport-e1sxeea-UP1A.txt", main_text)
        zf.writestr("screenshot.png", b"\x89PNG" + b"0" * 10_000)
    return path


def run_cli(history_path: Path, *argv: str) -> None:
    analyze_bugreports.main(["--history", str(history_path), *argv])


def test_select_archive_entry_picks_largest_top_level(samsung_zip: Path) -> None:
    with zipfile.ZipFile(samsung_zip) as zf:
        entry = archive.select_archive_entry(zf)
    assert entry is not None
    assert entry.filename == "bugreport-e1sxeea-UP1A.txt"


def test_zip_and_text_give_same_reading(samsung_zip: Path) -> None:
    assert analyze_file(samsung_zip) == analyze_file(SAMPLES / "samsung_bugreport.txt")


def test_zip_without_text_entry(tmp_path: Path) -> None:
    path = tmp_path / "photos.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("image.png", b"0" * 100)
        zf.writestr("nested/log.txt", "CAP_NOM 3800mAh")
    reading = analyze_file(path)
    assert not reading.has_data
    assert reading.parse_errors[0].startswith("Error reading file:")


def test_open_bugreport_ignores_bad_bytes(tmp_path: Path) -> None:
    path = tmp_path / "report.txt"
    path.write_bytes(b"CAP_NOM 3800mAh\n\xff\xfe garbage\nCycle(12, 0)\n")
    with archive.open_bugreport(path) as stream:
        lines = list(stream)
    assert len(lines) == 3
    reading = analyze_file(path)
    assert reading.current_capacity_mah == 3800
    assert reading.cycle_count == 12


def test_resolve_history_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(settings.HISTORY_PATH_ENV, raising=False)
    monkeypatch.delenv(settings.HISTORY_LIMIT_ENV, raising=False)
    assert settings.resolve_history_limit(None) == settings.DEFAULT_HISTORY_LIMIT
    assert settings.resolve_history_path(None).name == "history.json"
    monkeypatch.setenv(settings.HISTORY_PATH_ENV, str(tmp_path / "h.json"))
    monkeypatch.setenv(settings.HISTORY_LIMIT_ENV, "25")
    assert settings.resolve_history_path(None) == (tmp_path / "h.json").resolve()
    assert settings.resolve_history_limit(None) == 25
    assert settings.resolve_history_limit(7) == 7
    monkeypatch.setenv(settings.HISTORY_LIMIT_ENV, "lots")
    assert settings.resolve_history_limit(None) == settings.DEFAULT_HISTORY_LIMIT


def test_resolve_design_capacity(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(settings.DESIGN_CAPACITY_ENV, raising=False)
    assert settings.resolve_design_capacity(None) is None
    assert settings.resolve_design_capacity(4500) == 4500
    with pytest.raises(ValueError):
        settings.resolve_design_capacity(100)
    monkeypatch.setenv(settings.DESIGN_CAPACITY_ENV, "4575")
    assert settings.resolve_design_capacity(None) == 4575
    monkeypatch.setenv(settings.DESIGN_CAPACITY_ENV, "99999")
    assert settings.resolve_design_capacity(None) is None
    monkeypatch.setenv(settings.DESIGN_CAPACITY_ENV, "unknown")
    assert settings.resolve_design_capacity(None) is None


def test_cli_analyze_json_and_save(sandbox: Path, capsys: pytest.CaptureFixture[str]) -> None:
    history_path = sandbox / "history.json"
    run_cli(history_path, "analyze", str(sandbox / "reports" / "samsung_bugreport.txt"), "--json", "--save")
    data = json.loads(capsys.readouterr().out)
    assert data["current_capacity_mah"] == 3800
    assert data["health_pct"] == 93.0
    assert data["has_data"] is True
    assert len(HistoryStore(history_path).entries()) == 1
    # saving the same report again keeps one entry
    run_cli(history_path, "analyze", str(sandbox / "reports" / "samsung_bugreport.txt"), "--save")
    assert len(HistoryStore(history_path).entries()) == 1


def test_cli_analyze_with_design_capacity(
    sandbox: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv(settings.DESIGN_CAPACITY_ENV, raising=False)
    report = sandbox / "reports" / "pixel_bugreport.txt"
    run_cli(sandbox / "history.json", "analyze", str(report))
    assert "pass --design-capacity" in capsys.readouterr().out
    run_cli(sandbox / "history.json", "analyze", str(report), "--design-capacity", "4575")
    out = capsys.readouterr().out
    assert "80.0%" in out
    assert "Fair" in out
    with pytest.raises(SystemExit):
        run_cli(sandbox / "history.json", "analyze", str(report), "--design-capacity", "100")


def test_cli_analyze_errors(sandbox: Path) -> None:
    with pytest.raises(SystemExit, match="File not found"):
        run_cli(sandbox / "history.json", "analyze", str(sandbox / "missing.txt"))
    empty = sandbox / "empty.log"
    empty.write_text("nothing here\n", encoding="utf-8")
    with pytest.raises(SystemExit, match="No battery data found"):
        run_cli(sandbox / "history.json", "analyze", str(empty))


def test_cli_scan_history_and_render(sandbox: Path, capsys: pytest.CaptureFixture[str]) -> None:
    history_path = sandbox / "history.json"
    run_cli(history_path, "scan", str(sandbox / "reports"), "--save")
    out = capsys.readouterr().out
    assert "pixel_bugreport.txt" in out
    assert "samsung_bugreport.txt" in out
    assert HistoryStore(history_path).count() == 2
    run_cli(history_path, "history")
    lines = capsys.readouterr().out.splitlines()
    assert "January 21st, 2026" in lines[0]
    assert "November 2nd, 2025" in lines[1]
    report = sandbox / "HISTORY.md"
    run_cli(history_path, "render", str(report))
    assert "**Total readings:** 2" in report.read_text(encoding="utf-8")


def test_cli_export_import(sandbox: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source_history = sandbox / "source.json"
    run_cli(source_history, "scan", str(sandbox / "reports"), "--save")
    backup = sandbox / "backup" / "battery_backup.json"
    run_cli(source_history, "export", str(backup))
    document = json.loads(backup.read_text(encoding="utf-8"))
    assert set(document) == {"version", "exportDate", "settings", "history"}
    assert len(document["history"]) == 2
    capsys.readouterr()
    target_history = sandbox / "target.json"
    run_cli(target_history, "import", str(backup))
    assert "Imported 2 entries, skipped 0 duplicates" in capsys.readouterr().out
    run_cli(target_history, "import", str(backup))
    assert "Imported 0 entries, skipped 2 duplicates" in capsys.readouterr().out
    assert HistoryStore(target_history).entries() == HistoryStore(source_history).entries()


def test_cli_import_rejects_invalid_document(sandbox: Path) -> None:
    bad = sandbox / "bad.json"
    bad.write_text(json.dumps({"history": [{"timestamp": 1}]}), encoding="utf-8")
    with pytest.raises(SystemExit, match="Invalid backup file"):
        run_cli(sandbox / "history.json", "import", str(bad))


def test_cli_delete_and_clear(sandbox: Path) -> None:
    history_path = sandbox / "history.json"
    run_cli(history_path, "analyze", str(sandbox / "reports" / "samsung_bugreport.txt"), "--save")
    entry_id = HistoryStore(history_path).entries()[0].id
    with pytest.raises(SystemExit, match="No history entry"):
        run_cli(history_path, "delete", "12345")
    run_cli(history_path, "delete", entry_id)
    assert HistoryStore(history_path).count() == 0
    run_cli(history_path, "analyze", str(sandbox / "reports" / "pixel_bugreport.txt"), "--save")
    run_cli(history_path, "clear")
    assert not history_path.exists()


def test_cli_without_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    analyze_bugreports.main([])
    assert "usage" in capsys.readouterr().out


def test_cli_analyze_from_worker_thread(sandbox: Path) -> None:
    history_path = sandbox / "history.json"
    report = sandbox / "reports" / "samsung_bugreport.txt"
    errors: list[BaseException] = []

    def run() -> None:
        try:
            run_cli(history_path, "analyze", str(report), "--save")
        except BaseException as exc:
            errors.append(exc)

    worker = threading.Thread(target=run)
    worker.start()
    worker.join()
    assert errors == []
    assert HistoryStore(history_path).count() == 1
