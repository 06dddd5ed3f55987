"""Dashboard state and the transitions that drive it."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from procdash.config import DashboardConfig
from procdash.history import MetricHistory
from procdash.logs import InitialLogCapture, LogTailBuffer
from procdash.models import LogStream, ProcessView, Tab
from procdash.ports import PortTable
from procdash.registry import ProcessRegistry, RegistryError

log = logging.getLogger(__name__)


@dataclass(slots=True)
class DashboardState:
    """Everything the dashboard renders. Rendering never mutates it."""

    history: MetricHistory
    ports: PortTable
    tail: LogTailBuffer
    initial: InitialLogCapture
    processes: list[ProcessView] = field(default_factory=list)
    selected: int = 0
    tab: Tab = Tab.OVERVIEW
    log_stream: LogStream = LogStream.STDOUT
    scroll: int = 0
    should_quit: bool = False
    status_message: str = ""

    @property
    def selected_process(self) -> ProcessView | None:
        if 0 <= self.selected < len(self.processes):
            return self.processes[self.selected]
        return None


class DashboardController:
    """
    Owns the DashboardState and applies ticks and key presses to it.

    All refresh work runs synchronously in the caller's thread: the registry,
    the port listing tool and the log files are all read in line.
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        config: DashboardConfig | None = None,
        port_table: PortTable | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or DashboardConfig()
        self.state = DashboardState(
            history=MetricHistory(self._config.history_len),
            ports=port_table or PortTable(timeout=self._config.tool_timeout),
            tail=LogTailBuffer(self._config.max_log_lines),
            initial=InitialLogCapture(self._config.initial_log_lines),
        )

    @property
    def config(self) -> DashboardConfig:
        return self._config

    def load(self) -> None:
        """Initial full refresh."""
        self.refresh_processes()
        self.refresh_logs()

    def tick(self) -> None:
        """Periodic refresh. Log files are only read for the visible log tab."""
        self.refresh_processes()
        self.refresh_active_view()

    # Refresh

    def refresh_processes(self) -> None:
        state = self.state
        state.processes = list(self._registry.list_processes())

        if state.selected >= len(state.processes) and state.processes:
            state.selected = len(state.processes) - 1

        state.ports.refresh()

        for proc in state.processes:
            cpu, memory_kb = 0.0, 0
            if proc.running:
                usage = self._registry.query_resource_usage(proc.pid)
                cpu, memory_kb = usage.cpu_percent, usage.memory_rss // 1024
            state.history.sample(proc.id, cpu, memory_kb)

    def refresh_logs(self) -> None:
        proc = self.state.selected_process
        if proc is None:
            self.state.tail.clear()
            return
        self.state.tail.refresh(proc.logs.for_stream(self.state.log_stream))

    def refresh_initial_logs(self) -> None:
        proc = self.state.selected_process
        if proc is None:
            self.state.initial.clear()
            return
        self.state.initial.refresh(proc.logs, proc.initial_logs)

    def refresh_active_view(self) -> None:
        if self.state.tab is Tab.LOGS:
            self.refresh_logs()
        elif self.state.tab is Tab.INITIAL_LOGS:
            self.refresh_initial_logs()

    # Navigation

    def select_previous(self) -> None:
        if self.state.selected > 0:
            self._select(self.state.selected - 1)

    def select_next(self) -> None:
        if self.state.selected + 1 < len(self.state.processes):
            self._select(self.state.selected + 1)

    def _select(self, index: int) -> None:
        self.state.selected = index
        self.state.scroll = 0
        self.refresh_active_view()

    def cycle_tab(self) -> Tab:
        self.state.tab = self.state.tab.next()
        self.state.scroll = 0
        self.refresh_active_view()
        return self.state.tab

    def set_stream(self, stream: LogStream) -> None:
        """Switch the logs tab to another stream. Ignored on the other tabs."""
        if self.state.tab is not Tab.LOGS:
            return
        self.state.log_stream = stream
        self.state.scroll = 0
        self.refresh_logs()

    def scroll_older(self) -> None:
        # No upper clamp here; scroll_window bounds it when rendering
        self.state.scroll += self._config.scroll_step

    def scroll_newer(self) -> None:
        self.state.scroll = max(0, self.state.scroll - self._config.scroll_step)

    def quit(self) -> None:
        self.state.should_quit = True

    # Lifecycle commands

    def restart(self) -> None:
        self._command("restart", lambda process_id: self._registry.restart(process_id, False))

    def start(self) -> None:
        # The supervisor starts a stopped process through restart
        self._command("start", lambda process_id: self._registry.restart(process_id, False))

    def stop(self) -> None:
        self._command("stop", self._registry.stop)

    def flush(self) -> None:
        if self._command("flush", self._registry.flush):
            self.state.tail.clear()
            self.state.scroll = 0

    def _command(self, action: str, call: Callable[[int], None]) -> bool:
        proc = self.state.selected_process
        if proc is None:
            return False
        try:
            call(proc.id)
        except RegistryError as exc:
            log.warning("%s of process %d failed: %s", action, proc.id, exc)
            self.state.status_message = f"{action} [{proc.id}] {proc.name}: {exc}"
            return False
        self.state.status_message = ""
        return True
