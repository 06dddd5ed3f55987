"""Listening port discovery for supervised processes."""

import logging
import socket
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

log = logging.getLogger(__name__)

PortMap = dict[int, list[int]]
Runner = Callable[[Sequence[str], float], str | None]

PROBE_HOST = "127.0.0.1"
PROBE_TIMEOUT = 0.15
TOOL_TIMEOUT = 5.0
SUPPORTED_PLATFORMS = ("linux", "darwin")


def _parse_port(text: str) -> int | None:
    """Port after the last colon of an address:port field."""
    port_text = text.rsplit(":", 1)[-1]
    if not port_text.isascii() or not port_text.isdigit():
        return None
    port = int(port_text)
    return port if port <= 0xFFFF else None


def _add_port(ports: PortMap, pid: int, port: int) -> None:
    entry = ports.setdefault(pid, [])
    if port not in entry:
        entry.append(port)


def parse_lsof_output(output: str) -> PortMap:
    """
    Parse `lsof -iTCP -sTCP:LISTEN -P -n` output.

        COMMAND   PID USER   FD   TYPE  DEVICE SIZE/OFF NODE NAME
        node    12345 user   23u  IPv6  0x...  0t0      TCP  *:3000 (LISTEN)
    """
    ports: PortMap = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 9:
            continue
        try:
            pid = int(parts[1])
        except ValueError:
            continue
        port = _parse_port(parts[8])
        if port is not None:
            _add_port(ports, pid, port)
    return ports


def _extract_ss_pid(field: str) -> int | None:
    """PID from a process field like users:(("node",pid=12345,fd=23))."""
    marker = field.find("pid=")
    if marker < 0:
        return None
    digits = []
    for char in field[marker + 4 :]:
        if not ("0" <= char <= "9"):
            break
        digits.append(char)
    return int("".join(digits)) if digits else None


def parse_ss_output(output: str) -> PortMap:
    """
    Parse `ss -tlnp` output.

        State  Recv-Q Send-Q Local Address:Port  Peer Address:Port  Process
        LISTEN 0      128    0.0.0.0:3000        0.0.0.0:*          users:(("node",pid=12345,fd=23))
    """
    ports: PortMap = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 5:
            continue
        port = _parse_port(parts[3])
        if port is None:
            continue
        pid = _extract_ss_pid(parts[-1])
        if pid is not None:
            _add_port(ports, pid, port)
    return ports


@dataclass(slots=True, frozen=True)
class ListingTool:
    """An OS command that lists listening sockets, and the parser for its output."""

    command: tuple[str, ...]
    parse: Callable[[str], PortMap]


LSOF = ListingTool(("lsof", "-iTCP", "-sTCP:LISTEN", "-P", "-n"), parse_lsof_output)
SS = ListingTool(("ss", "-tlnp"), parse_ss_output)


def run_tool(command: Sequence[str], timeout: float = TOOL_TIMEOUT) -> str | None:
    """Run a listing command. None if it cannot start, times out or exits nonzero."""
    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        log.debug("%s failed: %s", command[0], exc)
        return None
    if result.returncode != 0:
        log.debug("%s exited with status %d", command[0], result.returncode)
        return None
    return result.stdout.decode("utf-8", errors="replace")


class PortTable:
    """
    Maps process PIDs to the TCP ports they listen on.

    The first tool that runs successfully wins; if none does, the table is
    empty. Port display is best-effort, so resolve() never raises.
    """

    def __init__(
        self,
        tools: Sequence[ListingTool] = (LSOF, SS),
        runner: Runner = run_tool,
        timeout: float = TOOL_TIMEOUT,
        platform: str | None = None,
    ) -> None:
        self._tools = tuple(tools)
        self._runner = runner
        self._timeout = timeout
        self._platform = sys.platform if platform is None else platform
        self.ports: PortMap = {}

    def resolve(self) -> PortMap:
        if not self._platform.startswith(SUPPORTED_PLATFORMS):
            return {}
        for tool in self._tools:
            output = self._runner(tool.command, self._timeout)
            if output is not None:
                return tool.parse(output)
        return {}

    def refresh(self) -> PortMap:
        self.ports = self.resolve()
        return self.ports

    def ports_for(self, pid: int) -> list[int]:
        return list(self.ports.get(pid, ()))


def is_port_open(port: int, host: str = PROBE_HOST, timeout: float = PROBE_TIMEOUT) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class PortProbe:
    """
    Caches is_port_open results for `ttl` seconds.

    The process list and overview probe every shown port on every redraw;
    with the cache a port is connected to at most once per tick.
    """

    def __init__(
        self,
        ttl: float = 1.0,
        probe: Callable[[int], bool] = is_port_open,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._probe = probe
        self._clock = clock
        self._results: dict[int, tuple[float, bool]] = {}

    def is_open(self, port: int) -> bool:
        now = self._clock()
        cached = self._results.get(port)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]
        result = self._probe(port)
        self._results[port] = (now, result)
        return result

    def clear(self) -> None:
        self._results.clear()


def display_ports(ports: Sequence[int]) -> list[int]:
    """Ports in display order: ascending, without duplicates."""
    return sorted(set(ports))

