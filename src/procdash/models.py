"""Data models for procdash."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class Tab(Enum):
    """Tabs of the right-hand panel."""

    OVERVIEW = "overview"
    LOGS = "logs"
    INITIAL_LOGS = "initial-logs"

    def next(self) -> "Tab":
        """Return the tab that follows this one, wrapping around."""
        tabs = list(Tab)
        return tabs[(tabs.index(self) + 1) % len(tabs)]


class LogStream(Enum):
    """Log stream shown on the logs tab."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(slots=True, frozen=True)
class LogPaths:
    """Locations of a process's stdout and stderr log files."""

    stdout: Path
    stderr: Path

    def for_stream(self, stream: LogStream) -> Path:
        return self.stdout if stream is LogStream.STDOUT else self.stderr


@dataclass(slots=True, frozen=True)
class LogAnchor:
    """Byte offsets into the log files recorded when the process last started."""

    stdout_offset: int = 0
    stderr_offset: int = 0

    def for_stream(self, stream: LogStream) -> int:
        return self.stdout_offset if stream is LogStream.STDOUT else self.stderr_offset


@dataclass(slots=True, frozen=True)
class ProcessView:
    """Immutable snapshot of a supervised process, as reported by the registry."""

    id: int
    pid: int
    name: str
    running: bool
    crashed: bool
    script: str
    working_dir: Path
    started_at: datetime | None
    restarts: int
    logs: LogPaths
    initial_logs: LogAnchor

    @property
    def status(self) -> str:
        if self.running:
            return "online"
        if self.crashed:
            return "crashed"
        return "stopped"


@dataclass(slots=True, frozen=True)
class MetricSample:
    """One CPU/memory sample. CPU is percent * 100, truncated."""

    cpu_percent_scaled: int
    memory_kb: int

    @classmethod
    def from_percent(cls, cpu_percent: float, memory_kb: int) -> "MetricSample":
        return cls(int(cpu_percent * 100), memory_kb)


@dataclass(slots=True, frozen=True)
class ResourceUsage:
    """Resource usage of a single process at one point in time."""

    cpu_percent: float = 0.0
    memory_rss: int = 0  # Bytes
