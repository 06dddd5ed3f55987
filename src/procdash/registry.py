"""Interface to the process supervisor whose processes the dashboard shows."""

import json
import logging
import subprocess
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import psutil

from procdash.models import LogAnchor, LogPaths, ProcessView, ResourceUsage

log = logging.getLogger(__name__)

COMMAND_TIMEOUT = 30.0


class RegistryError(Exception):
    """A lifecycle command could not be carried out by the supervisor."""


class ProcessRegistry(Protocol):
    """What the dashboard needs from a process supervisor."""

    def list_processes(self) -> list[ProcessView]: ...

    def query_resource_usage(self, pid: int) -> ResourceUsage: ...

    def restart(self, process_id: int, reset_env: bool) -> None: ...

    def stop(self, process_id: int) -> None: ...

    def flush(self, process_id: int) -> None: ...


class ResourceSampler:
    """
    Per-process CPU and memory usage via psutil.

    psutil measures CPU between two cpu_percent() calls on the same Process
    object, so handles are kept across samples. The first sample of a PID
    reports 0.0 CPU.
    """

    def __init__(self) -> None:
        self._handles: dict[int, psutil.Process] = {}

    def query(self, pid: int) -> ResourceUsage:
        try:
            handle = self._handles.get(pid)
            if handle is None:
                handle = self._handles[pid] = psutil.Process(pid)
            with handle.oneshot():
                cpu = handle.cpu_percent(interval=None)
                rss = handle.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            # Process died, belongs to someone else, or is a zombie
            self._handles.pop(pid, None)
            return ResourceUsage()
        except ValueError:
            # Negative or otherwise invalid PID
            return ResourceUsage()
        return ResourceUsage(cpu_percent=cpu, memory_rss=rss)

    def forget_missing(self, pids: Iterable[int]) -> None:
        """Drop handles for PIDs that are no longer supervised."""
        keep = set(pids)
        for pid in list(self._handles):
            if pid not in keep:
                del self._handles[pid]


def _parse_started(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value).astimezone()
    return datetime.fromisoformat(str(value))


def process_from_dict(entry: dict[str, Any]) -> ProcessView:
    """
    Build a ProcessView from one entry of the supervisor's process dump.

    Raises KeyError, TypeError or ValueError when the entry is malformed.
    """
    if not isinstance(entry, dict):
        raise TypeError(f"expected an object, got {type(entry).__name__}")
    logs = entry["logs"]
    anchor = entry.get("initial_logs") or {}
    if not isinstance(anchor, dict):
        raise TypeError(f"initial_logs: expected an object, got {type(anchor).__name__}")
    return ProcessView(
        id=int(entry["id"]),
        pid=int(entry.get("pid") or 0),
        name=str(entry["name"]),
        running=bool(entry.get("running", False)),
        crashed=bool(entry.get("crashed", False)),
        script=str(entry.get("script", "")),
        working_dir=Path(entry.get("path", ".")),
        started_at=_parse_started(entry.get("started")),
        restarts=int(entry.get("restarts", 0)),
        logs=LogPaths(stdout=Path(logs["out"]), stderr=Path(logs["error"])),
        initial_logs=LogAnchor(
            stdout_offset=int(anchor.get("start_pos_out", 0)),
            stderr_offset=int(anchor.get("start_pos_error", 0)),
        ),
    )


class DumpFileRegistry:
    """
    Registry backed by an external supervisor.

    The process list is read from the JSON dump the supervisor keeps up to
    date; lifecycle commands are delegated to its command line, e.g.
    `pmc restart 3`.
    """

    def __init__(
        self,
        dump_file: Path,
        command: Sequence[str],
        sampler: ResourceSampler | None = None,
        timeout: float = COMMAND_TIMEOUT,
    ) -> None:
        self._dump_file = dump_file
        self._command = tuple(command)
        self._sampler = sampler or ResourceSampler()
        self._timeout = timeout

    def list_processes(self) -> list[ProcessView]:
        try:
            document = json.loads(self._dump_file.read_text(encoding="utf-8"))
        except OSError as exc:
            log.debug("cannot read process dump %s: %s", self._dump_file, exc)
            return []
        except ValueError as exc:
            log.warning("process dump %s is not valid JSON: %s", self._dump_file, exc)
            return []

        entries = document.get("processes", []) if isinstance(document, dict) else None
        if not isinstance(entries, list):
            log.warning("process dump %s has no process list", self._dump_file)
            return []

        processes: list[ProcessView] = []
        for entry in entries:
            try:
                processes.append(process_from_dict(entry))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("skipping malformed process entry %r: %s", entry, exc)

        self._sampler.forget_missing(proc.pid for proc in processes if proc.running)
        return processes

    def query_resource_usage(self, pid: int) -> ResourceUsage:
        return self._sampler.query(pid)

    def restart(self, process_id: int, reset_env: bool) -> None:
        args = ["restart", str(process_id)]
        if reset_env:
            args.append("--reset-env")
        self._run(args)

    def stop(self, process_id: int) -> None:
        self._run(["stop", str(process_id)])

    def flush(self, process_id: int) -> None:
        self._run(["flush", str(process_id)])

    def _run(self, args: list[str]) -> None:
        command = [*self._command, *args]
        log.info("running %s", " ".join(command))
        try:
            subprocess.run(
                command,
                capture_output=True,
                timeout=self._timeout,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            detail = exc.stderr.decode("utf-8", errors="replace").strip() if exc.stderr else ""
            raise RegistryError(
                f"{args[0]} {args[1]} failed with status {exc.returncode}"
                + (f": {detail}" if detail else "")
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RegistryError(f"{args[0]} {args[1]} timed out after {self._timeout:g}s") from exc
        except OSError as exc:
            raise RegistryError(f"cannot run {self._command[0]}: {exc}") from exc
