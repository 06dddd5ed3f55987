"""Shared fixtures for procdash tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from procdash.models import LogAnchor, LogPaths, ProcessView, ResourceUsage
from procdash.ports import PortTable
from procdash.registry import RegistryError


def make_process(
    log_dir: Path,
    id: int = 0,
    pid: int = 1000,
    name: str = "web",
    running: bool = True,
    crashed: bool = False,
    anchor: LogAnchor | None = None,
) -> ProcessView:
    """Build a ProcessView whose log files live under log_dir."""
    return ProcessView(
        id=id,
        pid=pid,
        name=name,
        running=running,
        crashed=crashed,
        script=f"node {name}.js",
        working_dir=log_dir,
        started_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        restarts=0,
        logs=LogPaths(
            stdout=log_dir / f"{name}-out.log",
            stderr=log_dir / f"{name}-error.log",
        ),
        initial_logs=anchor or LogAnchor(),
    )


class FakeRegistry:
    """In-memory registry recording every lifecycle call."""

    def __init__(self, processes=None, usage=None) -> None:
        self.processes: list[ProcessView] = list(processes or [])
        self.usage: dict[int, ResourceUsage] = dict(usage or {})
        self.calls: list[tuple] = []
        self.usage_queries: list[int] = []
        self.error: RegistryError | None = None

    def list_processes(self) -> list[ProcessView]:
        return list(self.processes)

    def query_resource_usage(self, pid: int) -> ResourceUsage:
        self.usage_queries.append(pid)
        return self.usage.get(pid, ResourceUsage())

    def restart(self, process_id: int, reset_env: bool) -> None:
        self._record("restart", process_id, reset_env)

    def stop(self, process_id: int) -> None:
        self._record("stop", process_id)

    def flush(self, process_id: int) -> None:
        self._record("flush", process_id)

    def _record(self, *call) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append(call)


class FakeRunner:
    """Stands in for run_tool: canned output per executable, None when absent."""

    def __init__(self, outputs: dict[str, str | None] | None = None) -> None:
        self.outputs = dict(outputs or {})
        self.commands: list[tuple[str, ...]] = []

    def __call__(self, command, timeout):
        self.commands.append(tuple(command))
        return self.outputs.get(command[0])


@pytest.fixture
def registry(tmp_path: Path) -> FakeRegistry:
    return FakeRegistry(
        [
            make_process(tmp_path, id=0, pid=1000, name="web"),
            make_process(tmp_path, id=1, pid=1001, name="worker"),
            make_process(tmp_path, id=2, pid=1002, name="cron", running=False),
        ]
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(
        {"lsof": "node 1000 user 23u IPv6 0x0 0t0 TCP *:3000 (LISTEN)\n"}
    )


@pytest.fixture
def port_table(runner: FakeRunner) -> PortTable:
    return PortTable(runner=runner, platform="linux")
