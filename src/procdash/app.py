"""procdash - Main Textual application."""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from functools import partial

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.logging import TextualHandler
from textual.widget import Widget
from textual.widgets import ContentSwitcher, Static

from procdash.config import DashboardConfig
from procdash.controller import DashboardController, DashboardState
from procdash.logs import InitialLogCapture, scroll_window
from procdash.models import LogStream, ProcessView, Tab
from procdash.ports import PortProbe, PortTable, display_ports, is_port_open
from procdash.registry import DumpFileRegistry, ProcessRegistry

BAR_SYMBOLS = " ▁▂▃▄▅▆▇█"
CPU_SCALE_MAX = 100 * 100  # 100% in MetricSample units
MEMORY_FLOOR_KB = 1024
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

StyledLine = tuple[str, str]


def format_memory(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["b", "kb", "mb", "gb", "tb"]:
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "b" else f"{size:.1f}{unit}"
        size = size / 1024
    return f"{size:.1f}pb"


def format_duration(seconds: float) -> str:
    """Format an uptime as its largest whole unit, e.g. 42s, 5m, 3h, 2d."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[: max(0, limit - 3)] + "..."
    return text


def sparkline(values: Sequence[int], maximum: int, width: int, height: int = 1) -> list[str]:
    """
    Render values as rows of block characters, top row first.

    Each row holds eight levels; values at or above `maximum` fill every row.
    Only the newest `width` values are drawn.
    """
    if width <= 0 or height <= 0:
        return []
    data = list(values)[-width:]
    maximum = max(1, maximum)
    levels = [min(max(0, value) * height * 8 // maximum, height * 8) for value in data]
    rows = []
    for row in reversed(range(height)):
        rows.append("".join(BAR_SYMBOLS[min(max(level - row * 8, 0), 8)] for level in levels))
    return rows


def _append_ports(text: Text, ports: list[int], is_open: Callable[[int], bool], separator: str) -> None:
    for index, port in enumerate(ports):
        if index:
            text.append(separator, style="bright_black")
        text.append(str(port), style="green" if is_open(port) else "red")


def render_process_list(state: DashboardState, is_open: Callable[[int], bool]) -> Text:
    """One line per process: marker, id, name, status and listening ports."""
    text = Text(no_wrap=True, overflow="ellipsis")
    for index, proc in enumerate(state.processes):
        selected = index == state.selected
        style = "bold yellow" if selected else ""
        if index:
            text.append("\n")
        text.append(f"{'> ' if selected else '  '}[{proc.id}] ", style=style)
        text.append(f"{truncate(proc.name, 15):<15} ", style=style)
        text.append(f"{proc.status:<7}", style="green" if proc.running else "red")

        ports = display_ports(state.ports.ports_for(proc.pid))
        if proc.running and ports:
            text.append(" :", style="bright_black")
            _append_ports(text, ports, is_open, ",")
    return text


def render_info(
    proc: ProcessView,
    state: DashboardState,
    is_open: Callable[[int], bool],
    now: datetime | None = None,
) -> Text:
    """Status, PID, uptime, latest usage, restarts, ports, script and path."""
    latest = state.history.latest(proc.id)
    cpu_value = "0.00%"
    memory_value = "0b"
    if proc.running and latest is not None:
        cpu_value = f"{latest.cpu_percent_scaled / 100:.2f}%"
        memory_value = format_memory(latest.memory_kb * 1024)

    uptime = "none"
    if proc.running and proc.started_at is not None:
        current = now or datetime.now(proc.started_at.tzinfo)
        uptime = format_duration((current - proc.started_at).total_seconds())

    text = Text()
    text.append("Status: ", style="cyan")
    text.append(proc.status, style="green" if proc.running else "red")
    text.append("  PID: ", style="cyan")
    text.append(str(proc.pid) if proc.running else "n/a")
    text.append("  Uptime: ", style="cyan")
    text.append(uptime)

    text.append("\nCPU: ", style="cyan")
    text.append(cpu_value)
    text.append("  Memory: ", style="cyan")
    text.append(memory_value)
    text.append("  Restarts: ", style="cyan")
    text.append(str(proc.restarts))

    text.append("\nPorts: ", style="cyan")
    ports = display_ports(state.ports.ports_for(proc.pid))
    if proc.running and ports:
        _append_ports(text, ports, is_open, ", ")
    else:
        text.append("-", style="bright_black")

    text.append("\nScript: ", style="cyan")
    text.append(truncate(proc.script, 60))
    text.append("\nPath: ", style="cyan")
    text.append(truncate(str(proc.working_dir), 60))
    return text


def initial_log_lines(capture: InitialLogCapture) -> list[StyledLine]:
    """The since-start capture as styled lines, stdout block first."""
    lines: list[StyledLine] = []
    if capture.stdout:
        lines.append((f"─── stdout ({len(capture.stdout)} lines):", "bright_black"))
        lines.extend((line, "green") for line in capture.stdout)
    if capture.stderr:
        if capture.stdout:
            lines.append(("", ""))
        lines.append((f"─── stderr ({len(capture.stderr)} lines):", "bright_black"))
        lines.extend((line, "bright_red") for line in capture.stderr)
    return lines


def render_window(lines: Sequence[StyledLine], scroll: int, height: int) -> Text:
    """The slice of `lines` visible at this scroll offset, newest at the bottom."""
    start, end = scroll_window(len(lines), height, scroll)
    text = Text(no_wrap=True, overflow="ellipsis")
    for index, (line, style) in enumerate(lines[start:end]):
        if index:
            text.append("\n")
        text.append(line, style=style)
    return text


HINTS: dict[Tab, list[tuple[str, str, str]]] = {
    Tab.OVERVIEW: [
        ("[r]", "estart ", "yellow"),
        ("[s]", "top ", "yellow"),
        ("[S]", "tart ", "yellow"),
        ("[f]", "lush ", "yellow"),
        ("[Tab]", " logs ", "cyan"),
        ("[q]", "uit", "red"),
    ],
    Tab.LOGS: [
        ("[1]", " stdout ", "yellow"),
        ("[2]", " stderr ", "yellow"),
        ("[PgUp/PgDn]", " scroll ", "cyan"),
        ("[r]", "estart ", "yellow"),
        ("[s]", "top ", "yellow"),
        ("[f]", "lush ", "yellow"),
        ("[Tab]", " initial-logs ", "cyan"),
        ("[q]", "uit", "red"),
    ],
    Tab.INITIAL_LOGS: [
        ("[PgUp/PgDn]", " scroll ", "cyan"),
        ("[r]", "estart ", "yellow"),
        ("[s]", "top ", "yellow"),
        ("[S]", "tart ", "yellow"),
        ("[f]", "lush ", "yellow"),
        ("[Tab]", " overview ", "cyan"),
        ("[q]", "uit", "red"),
    ],
}


def render_status(tab: Tab, message: str = "") -> Text:
    """Key hints for the active tab, preceded by the last command error if any."""
    text = Text(" ", no_wrap=True, overflow="ellipsis")
    if message:
        text.append(message, style="bold red")
        text.append("  ")
    for key, label, color in HINTS[tab]:
        text.append(key, style=f"bold {color}")
        text.append(label)
    return text


class DashboardView(Widget):
    """Base for widgets that render straight from the controller's state."""

    def __init__(self, controller: DashboardController, **kwargs) -> None:
        """Initialize the view."""
        super().__init__(**kwargs)
        self._controller = controller

    @property
    def dashboard_state(self) -> DashboardState:
        return self._controller.state

    def refresh_view(self) -> None:
        """Update titles from the state and schedule a repaint."""
        self.refresh()


class PortsView(DashboardView):
    """A view that colors ports by whether they accept connections."""

    def __init__(self, controller: DashboardController, probe: PortProbe, **kwargs) -> None:
        super().__init__(controller, **kwargs)
        self._probe = probe


class ProcessList(PortsView):
    """Left column: every supervised process."""

    DEFAULT_CSS = """
    ProcessList {
        width: 35%;
        height: 1fr;
        border: round $primary;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "Processes"

    def render(self) -> Text:
        return render_process_list(self.dashboard_state, self._probe.is_open)


class MetricGraph(DashboardView):
    """Sparkline of the selected process's CPU or memory history."""

    DEFAULT_CSS = """
    MetricGraph {
        height: 5;
        border: round $success;
    }
    """

    def __init__(self, controller: DashboardController, metric: str, **kwargs) -> None:
        """Initialize a graph for `metric`, either "cpu" or "memory"."""
        super().__init__(controller, **kwargs)
        self._metric = metric

    def refresh_view(self) -> None:
        label = "CPU %" if self._metric == "cpu" else "Memory"
        proc = self.dashboard_state.selected_process
        self.border_title = f"{label} - {proc.name}" if proc else label
        self.refresh()

    def render(self) -> Text:
        proc = self.dashboard_state.selected_process
        if proc is None:
            return Text("")
        history = self.dashboard_state.history
        if self._metric == "cpu":
            data = history.cpu_series(proc.id)
            maximum = CPU_SCALE_MAX
        else:
            data = history.memory_series(proc.id)
            peak = max(max(data, default=MEMORY_FLOOR_KB), MEMORY_FLOOR_KB)
            maximum = peak + peak // 4
        size = self.content_size
        return Text("\n".join(sparkline(data, maximum, size.width, size.height)))


class InfoPanel(PortsView):
    """Details of the selected process."""

    DEFAULT_CSS = """
    InfoPanel {
        height: 1fr;
        min-height: 4;
        border: round $warning;
    }
    """

    def refresh_view(self) -> None:
        proc = self.dashboard_state.selected_process
        self.border_title = f"Info - [{proc.id}] {proc.name}" if proc else "Overview"
        self.refresh()

    def render(self) -> Text:
        proc = self.dashboard_state.selected_process
        if proc is None:
            return Text("No processes found")
        return render_info(proc, self.dashboard_state, self._probe.is_open)


class LogView(DashboardView):
    """Tail of the selected process's stdout or stderr."""

    DEFAULT_CSS = """
    LogView {
        height: 1fr;
        border: round $success;
    }
    """

    def refresh_view(self) -> None:
        stream = self.dashboard_state.log_stream
        proc = self.dashboard_state.selected_process
        title = f"Logs ({stream.value})"
        self.border_title = f"{title} - [{proc.id}] {proc.name}" if proc else title
        self.styles.border = ("round", "green" if stream is LogStream.STDOUT else "red")
        self.refresh()

    def render(self) -> Text:
        lines = self.dashboard_state.tail.lines
        if not lines:
            return Text("No logs available")
        style = "white" if self.dashboard_state.log_stream is LogStream.STDOUT else "bright_red"
        return render_window(
            [(line, style) for line in lines],
            self.dashboard_state.scroll,
            self.content_size.height,
        )


class InitialLogView(DashboardView):
    """Output produced since the selected process last started."""

    DEFAULT_CSS = """
    InitialLogView {
        height: 1fr;
        border: round $warning;
    }
    """

    def refresh_view(self) -> None:
        proc = self.dashboard_state.selected_process
        self.border_title = f"Initial Logs - [{proc.id}] {proc.name}" if proc else "Initial Logs"
        self.refresh()

    def render(self) -> Text:
        if self.dashboard_state.selected_process is None:
            return Text("No processes found")
        if self.dashboard_state.initial.is_empty:
            return Text("No initial logs captured yet")
        return render_window(
            initial_log_lines(self.dashboard_state.initial),
            self.dashboard_state.scroll,
            self.content_size.height,
        )


class StatusBar(Static):
    """Bottom line with key hints for the active tab."""

    DEFAULT_CSS = """
    StatusBar {
        dock: bottom;
        height: 1;
        background: $panel;
    }
    """


class DashboardApp(App):
    """Main procdash application."""

    TITLE = "procdash"
    SUB_TITLE = "Process Dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #body {
        height: 1fr;
    }

    #detail {
        width: 65%;
        height: 1fr;
    }

    #overview {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("escape", "quit", "Quit", show=False),
        Binding("ctrl+c", "quit", "Quit", show=False, priority=True),
        Binding("up,k", "select_previous", "Up", show=False),
        Binding("down,j", "select_next", "Down", show=False),
        Binding("tab", "cycle_tab", "Tab", priority=True),
        Binding("1", "stream('stdout')", "stdout"),
        Binding("2", "stream('stderr')", "stderr"),
        Binding("pageup", "scroll_older", "Scroll up", show=False),
        Binding("pagedown", "scroll_newer", "Scroll down", show=False),
        Binding("r", "restart", "Restart"),
        Binding("s", "stop", "Stop"),
        Binding("S", "start", "Start"),
        Binding("f", "flush", "Flush"),
    ]

    def __init__(
        self,
        registry: ProcessRegistry,
        config: DashboardConfig | None = None,
        port_table: PortTable | None = None,
        probe: PortProbe | None = None,
    ) -> None:
        """Initialize the DashboardApp."""
        super().__init__()
        self._config = config or DashboardConfig()
        self.controller = DashboardController(registry, self._config, port_table)
        self._probe = probe or PortProbe(
            ttl=self._config.tick_interval,
            probe=partial(is_port_open, timeout=self._config.probe_timeout),
        )

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        controller, probe = self.controller, self._probe
        with Horizontal(id="body"):
            yield ProcessList(controller, probe, id="process-list")
            with ContentSwitcher(initial=Tab.OVERVIEW.value, id="detail"):
                with Vertical(id=Tab.OVERVIEW.value):
                    yield MetricGraph(controller, "cpu", id="cpu-graph")
                    yield MetricGraph(controller, "memory", id="memory-graph")
                    yield InfoPanel(controller, probe, id="info")
                yield LogView(controller, id=Tab.LOGS.value)
                yield InitialLogView(controller, id=Tab.INITIAL_LOGS.value)
        yield StatusBar(id="status-bar")

    def on_mount(self) -> None:
        """Load the initial state and start the refresh tick."""
        self.controller.load()
        self._redraw()
        self.set_interval(self._config.tick_interval, self._on_tick)

    def _on_tick(self) -> None:
        self.controller.tick()
        self._redraw()

    def _redraw(self) -> None:
        """Bring every widget in line with the controller's state."""
        state = self.controller.state
        if state.should_quit:
            self.exit()
            return
        self.query_one("#detail", ContentSwitcher).current = state.tab.value
        for view in self.query(DashboardView):
            view.refresh_view()
        self.query_one("#status-bar", StatusBar).update(
            render_status(state.tab, state.status_message)
        )

    def action_select_previous(self) -> None:
        self.controller.select_previous()
        self._redraw()

    def action_select_next(self) -> None:
        self.controller.select_next()
        self._redraw()

    def action_cycle_tab(self) -> None:
        self.controller.cycle_tab()
        self._redraw()

    def action_stream(self, name: str) -> None:
        self.controller.set_stream(LogStream(name))
        self._redraw()

    def action_scroll_older(self) -> None:
        self.controller.scroll_older()
        self._redraw()

    def action_scroll_newer(self) -> None:
        self.controller.scroll_newer()
        self._redraw()

    def action_restart(self) -> None:
        self.controller.restart()
        self._redraw()

    def action_stop(self) -> None:
        self.controller.stop()
        self._redraw()

    def action_start(self) -> None:
        self.controller.start()
        self._redraw()

    def action_flush(self) -> None:
        self.controller.flush()
        self._redraw()

    def action_quit(self) -> None:
        """Handle quit action."""
        self.controller.quit()
        self._redraw()


def configure_logging(config: DashboardConfig) -> logging.Handler:
    """
    Send log records to a file when one is configured.

    The terminal belongs to the UI, so without a log file records only go to
    the textual devtools console.
    """
    handler: logging.Handler
    if config.log_file is not None:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler = TextualHandler()
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(config.log_level)
    return handler


def main() -> None:
    """Entry point for procdash application."""
    config = DashboardConfig.from_env()
    configure_logging(config)
    registry = DumpFileRegistry(
        config.dump_file,
        config.supervisor_command,
        timeout=config.command_timeout,
    )
    app = DashboardApp(registry, config)
    app.run()


if __name__ == "__main__":
    main()
