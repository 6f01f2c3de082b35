"""Tests for the capture engine's per-file processing."""

import json
import threading
import time
from unittest.mock import patch

from cc_backup.config import Config
from cc_backup.engine import CaptureEngine, is_log_file
from cc_backup.models import ExportFormat


def test_is_log_file(temp_dir):
    assert is_log_file(temp_dir / "p" / "abc.jsonl")
    assert not is_log_file(temp_dir / "p" / "agent-abc.jsonl")
    assert not is_log_file(temp_dir / "p" / "abc.json")
    assert not is_log_file(temp_dir / "p" / "abc.jsonl.bak")


def test_process_file_scenario_a(engine, source_root, output_root, scenario_a_lines, jsonl):
    log = jsonl(source_root / "my-project" / "s-123.jsonl", scenario_a_lines)

    assert engine.process_file(log) is True

    project_dir = output_root / "my-project"
    markdown = (project_dir / "2024-01-01_s-123.md").read_text(encoding="utf-8")
    assert markdown.index("Hello") < markdown.index("Hi there")
    assert markdown.count("## 👤 Kullanıcı") == 1
    assert markdown.count("## 🤖 Claude") == 1

    snapshot = json.loads((project_dir / "2024-01-01_s-123.json").read_text(encoding="utf-8"))
    assert snapshot["session"]["messageCount"] == 2
    assert snapshot["session"]["id"] == "s-123"

    index = (project_dir / "_index.md").read_text(encoding="utf-8")
    assert "**Toplam Konuşma:** 1" in index
    assert engine.progress[log] == log.stat().st_size


def test_unchanged_file_is_not_exported_twice(engine, source_root, scenario_a_lines, jsonl):
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)

    with patch.object(engine, "export_session", wraps=engine.export_session) as export:
        assert engine.process_file(log) is True
        assert engine.process_file(log) is False

    assert export.call_count == 1


def test_growth_triggers_reexport_to_same_name(engine, source_root, output_root, scenario_a_lines, record, jsonl):
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    engine.process_file(log)

    jsonl(log, [record("user", "And another thing", uuid="a3", timestamp="2024-01-01T10:01:00Z")], mode="a")
    assert engine.process_file(log) is True

    files = sorted(p.name for p in (output_root / "proj").iterdir())
    assert files == ["2024-01-01_s-123.json", "2024-01-01_s-123.md", "_index.md"]
    snapshot = json.loads((output_root / "proj" / "2024-01-01_s-123.json").read_text(encoding="utf-8"))
    assert snapshot["session"]["messageCount"] == 3


def test_reexport_is_byte_identical(engine, source_root, output_root, scenario_a_lines, jsonl):
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    artifacts = [output_root / "proj" / "2024-01-01_s-123.md", output_root / "proj" / "2024-01-01_s-123.json"]

    engine.process_file(log)
    first = [p.read_bytes() for p in artifacts]

    for _ in range(3):
        engine.reset_progress()
        assert engine.process_file(log) is True
        assert [p.read_bytes() for p in artifacts] == first


def test_skips_agent_and_non_log_files(engine, source_root, output_root, scenario_a_lines, jsonl):
    agent = jsonl(source_root / "proj" / "agent-1234.jsonl", scenario_a_lines)
    other = jsonl(source_root / "proj" / "notes.txt", scenario_a_lines)

    assert engine.process_file(agent) is False
    assert engine.process_file(other) is False
    assert not output_root.exists()


def test_file_without_messages_is_retried(engine, source_root, output_root, record, jsonl):
    log = jsonl(source_root / "proj" / "s-1.jsonl", [{"type": "system", "content": "boot"}])

    assert engine.process_file(log) is False
    assert log not in engine.progress

    jsonl(log, [record("user", "Now there is content", uuid="u1")], mode="a")
    assert engine.process_file(log) is True


def test_only_enabled_formats_are_written(source_root, output_root, scenario_a_lines, jsonl):
    config = Config(source_root=source_root, output_root=output_root, formats=frozenset({ExportFormat.JSON}))
    engine = CaptureEngine(config)
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)

    engine.process_file(log)

    assert (output_root / "proj" / "2024-01-01_s-123.json").exists()
    assert not (output_root / "proj" / "2024-01-01_s-123.md").exists()


def test_write_failure_does_not_advance_progress(engine, source_root, output_root, scenario_a_lines, jsonl):
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    output_root.mkdir(parents=True)
    # A plain file where the project directory should go
    (output_root / "proj").write_text("in the way", encoding="utf-8")

    assert engine.process_file(log) is False
    assert log not in engine.progress
    assert engine.errors == 1

    (output_root / "proj").unlink()
    assert engine.process_file(log) is True


def test_scan_isolates_bad_files(engine, source_root, output_root, scenario_a_lines, jsonl):
    jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    # A directory with a log file name cannot be read as text
    broken = source_root / "proj" / "broken.jsonl"
    broken.mkdir()
    (broken / "child.txt").write_text("x", encoding="utf-8")
    (source_root / "stray.jsonl").write_text("not in a project dir\n", encoding="utf-8")

    assert engine.scan() == 1
    assert engine.errors == 1
    assert (output_root / "proj" / "2024-01-01_s-123.md").exists()


def test_scan_missing_source_root(temp_dir):
    engine = CaptureEngine(Config(source_root=temp_dir / "nope", output_root=temp_dir / "out"))
    assert engine.scan() == 0


def test_start_without_source_root(temp_dir):
    engine = CaptureEngine(Config(source_root=temp_dir / "nope", output_root=temp_dir / "out"))

    assert engine.start() is False
    assert engine.is_running is False
    assert (temp_dir / "out").is_dir()


def test_update_config_hot_swaps_output(engine, source_root, temp_dir, scenario_a_lines, jsonl):
    new_output = temp_dir / "elsewhere"
    engine.update_config(Config(source_root=source_root, output_root=new_output))
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)

    engine.process_file(log)

    assert engine.config.output_root == new_output
    assert (new_output / "proj" / "2024-01-01_s-123.md").exists()


def test_status(engine, source_root, scenario_a_lines, jsonl):
    jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    engine.scan()

    status = engine.status()

    assert status["running"] is False
    assert status["tracked_files"] == 1
    assert status["exports"] == 1
    assert status["errors"] == 0


def test_lone_surrogate_is_still_exported(engine, source_root, output_root, record, jsonl):
    """Split emoji escapes are written as replacement characters."""
    # json.dumps escapes the lone surrogate as \ud83d, as Claude Code does
    log = jsonl(source_root / "proj" / "s-123.jsonl", [record("user", "broken emoji \ud83d here", uuid="u1")])

    assert engine.process_file(log) is True
    assert engine.errors == 0

    project_dir = output_root / "proj"
    markdown = (project_dir / "2024-01-01_s-123.md").read_text(encoding="utf-8")
    assert "broken emoji ? here" in markdown
    snapshot = json.loads((project_dir / "2024-01-01_s-123.json").read_text(encoding="utf-8"))
    assert snapshot["messages"][0]["content"] == "broken emoji ? here"
    assert engine.progress[log] == log.stat().st_size


def test_shrunk_file_waits_until_it_passes_old_size(engine, source_root, scenario_a_lines, record, jsonl):
    """A truncated log is left alone until it grows past its recorded size."""
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    assert engine.process_file(log) is True
    recorded = engine.progress[log]

    jsonl(log, scenario_a_lines[:1])
    assert log.stat().st_size < recorded
    assert engine.process_file(log) is False
    assert engine.progress[log] == recorded

    while log.stat().st_size <= recorded:
        jsonl(log, [record("assistant", "Growing again", uuid=f"g{log.stat().st_size}")], mode="a")
    assert engine.process_file(log) is True
    assert engine.progress[log] == log.stat().st_size


def test_concurrent_calls_for_one_file_export_once(engine, source_root, scenario_a_lines, jsonl):
    """Overlapping calls for the same path are serialized by its lock."""
    log = jsonl(source_root / "proj" / "s-123.jsonl", scenario_a_lines)
    original_export = engine.export_session
    started = threading.Event()

    def slow_export(*args, **kwargs):
        started.set()
        time.sleep(0.3)
        return original_export(*args, **kwargs)

    results = []
    with patch.object(engine, "export_session", side_effect=slow_export) as export:
        first = threading.Thread(target=lambda: results.append(engine.process_file(log)))
        first.start()
        assert started.wait(timeout=5)
        second = threading.Thread(target=lambda: results.append(engine.process_file(log)))
        second.start()
        first.join(timeout=10)
        second.join(timeout=10)

    assert export.call_count == 1
    assert sorted(results) == [False, True]
