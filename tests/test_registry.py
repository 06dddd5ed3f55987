"""Tests for the registry adapter and the psutil resource sampler."""

import json
import os
import subprocess
import sys
from datetime import datetime
from pathlib import Path

import pytest

from procdash.models import LogAnchor, ResourceUsage
from procdash.registry import (
    DumpFileRegistry,
    RegistryError,
    ResourceSampler,
    process_from_dict,
)


def dump_entry(**overrides) -> dict:
    entry = {
        "id": 3,
        "pid": 4242,
        "name": "api",
        "running": True,
        "crashed": False,
        "script": "node server.js",
        "path": "/srv/api",
        "started": "2026-10-19T10:00:00+00:00",
        "restarts": 2,
        "logs": {"out": "/var/log/api-out.log", "error": "/var/log/api-error.log"},
        "initial_logs": {"start_pos_out": 128, "start_pos_error": 64},
    }
    entry.update(overrides)
    return entry


def write_dump(path: Path, entries: list) -> Path:
    path.write_text(json.dumps({"processes": entries}))
    return path


def recording_command(record: Path) -> list[str]:
    """A supervisor stand-in that writes its arguments to `record`."""
    script = "import sys, pathlib; pathlib.Path(sys.argv[1]).write_text(' '.join(sys.argv[2:]))"
    return [sys.executable, "-c", script, str(record)]


class TestProcessFromDict:
    """Tests for converting dump entries."""

    def test_full_entry(self):
        proc = process_from_dict(dump_entry())

        assert proc.id == 3
        assert proc.pid == 4242
        assert proc.status == "online"
        assert proc.working_dir == Path("/srv/api")
        assert proc.started_at == datetime.fromisoformat("2026-10-19T10:00:00+00:00")
        assert proc.restarts == 2
        assert proc.logs.stdout == Path("/var/log/api-out.log")
        assert proc.initial_logs == LogAnchor(stdout_offset=128, stderr_offset=64)

    def test_optional_fields_default(self):
        entry = {"id": 1, "name": "job", "logs": {"out": "o.log", "error": "e.log"}}
        proc = process_from_dict(entry)

        assert proc.pid == 0
        assert proc.status == "stopped"
        assert proc.started_at is None
        assert proc.initial_logs == LogAnchor()

    def test_epoch_start_time(self):
        proc = process_from_dict(dump_entry(started=0))
        assert proc.started_at is not None
        assert proc.started_at.timestamp() == 0

    def test_missing_logs_raises(self):
        entry = dump_entry()
        del entry["logs"]
        with pytest.raises(KeyError):
            process_from_dict(entry)

    def test_non_object_entry_raises_type_error(self):
        with pytest.raises(TypeError):
            process_from_dict([1, 2])

    def test_non_object_initial_logs_raises_type_error(self):
        with pytest.raises(TypeError):
            process_from_dict(dump_entry(initial_logs=[1]))


class TestDumpFileRegistry:
    """Tests for DumpFileRegistry."""

    def test_lists_processes(self, tmp_path):
        dump = write_dump(tmp_path / "dump.json", [dump_entry(), dump_entry(id=4, name="web")])
        registry = DumpFileRegistry(dump, ["pmc"])

        assert [proc.name for proc in registry.list_processes()] == ["api", "web"]

    def test_missing_dump_gives_empty_list(self, tmp_path):
        assert DumpFileRegistry(tmp_path / "missing.json", ["pmc"]).list_processes() == []

    def test_invalid_json_gives_empty_list(self, tmp_path):
        dump = tmp_path / "dump.json"
        dump.write_text("{not json")
        assert DumpFileRegistry(dump, ["pmc"]).list_processes() == []

    def test_malformed_entries_are_skipped(self, tmp_path):
        dump = write_dump(tmp_path / "dump.json", [{"id": "x"}, dump_entry(), "junk"])
        assert [proc.id for proc in DumpFileRegistry(dump, ["pmc"]).list_processes()] == [3]

    def test_entries_with_wrong_shapes_are_skipped(self, tmp_path):
        dump = write_dump(
            tmp_path / "dump.json",
            [[1], dump_entry(initial_logs=[1]), dump_entry(id=5, logs="out.log"), dump_entry()],
        )
        assert [proc.id for proc in DumpFileRegistry(dump, ["pmc"]).list_processes()] == [3]

    @pytest.mark.parametrize("document", [{"processes": None}, {"processes": {"id": 1}}, [1, 2], "text"])
    def test_dump_without_process_list_gives_empty_list(self, tmp_path, document):
        dump = tmp_path / "dump.json"
        dump.write_text(json.dumps(document))
        assert DumpFileRegistry(dump, ["pmc"]).list_processes() == []

    def test_restart_runs_supervisor(self, tmp_path):
        record = tmp_path / "args.txt"
        registry = DumpFileRegistry(tmp_path / "dump.json", recording_command(record))

        registry.restart(3, reset_env=False)
        assert record.read_text() == "restart 3"

        registry.restart(3, reset_env=True)
        assert record.read_text() == "restart 3 --reset-env"

    def test_stop_and_flush_run_supervisor(self, tmp_path):
        record = tmp_path / "args.txt"
        registry = DumpFileRegistry(tmp_path / "dump.json", recording_command(record))

        registry.stop(5)
        assert record.read_text() == "stop 5"
        registry.flush(5)
        assert record.read_text() == "flush 5"

    def test_failing_command_raises_registry_error(self, tmp_path):
        command = [sys.executable, "-c", "import sys; sys.stderr.write('no such process'); sys.exit(2)"]
        registry = DumpFileRegistry(tmp_path / "dump.json", command)

        with pytest.raises(RegistryError, match="status 2: no such process"):
            registry.stop(9)

    def test_missing_supervisor_raises_registry_error(self, tmp_path):
        registry = DumpFileRegistry(tmp_path / "dump.json", ["procdash-no-such-supervisor"])
        with pytest.raises(RegistryError, match="cannot run"):
            registry.flush(1)

    def test_timeout_raises_registry_error(self, tmp_path):
        command = [sys.executable, "-c", "import time; time.sleep(5)"]
        registry = DumpFileRegistry(tmp_path / "dump.json", command, timeout=0.2)
        with pytest.raises(RegistryError, match="timed out"):
            registry.restart(1, reset_env=False)


class TestResourceSampler:
    """Tests for the psutil-backed usage query."""

    def test_own_process_has_memory(self):
        sampler = ResourceSampler()
        usage = sampler.query(os.getpid())

        assert usage.memory_rss > 0
        assert usage.cpu_percent >= 0.0

    def test_dead_process_reports_zero(self):
        child = subprocess.Popen([sys.executable, "-c", "pass"])
        child.wait()

        assert ResourceSampler().query(child.pid) == ResourceUsage()

    def test_invalid_pid_reports_zero(self):
        assert ResourceSampler().query(-5) == ResourceUsage()

    def test_forget_missing(self):
        sampler = ResourceSampler()
        sampler.query(os.getpid())
        sampler.forget_missing([])
        assert sampler._handles == {}
