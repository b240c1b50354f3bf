"""TUI dashboard showing one panel per host."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .executor import SessionAttempt, SessionStatus
from .fleet import Fleet
from .sink import LineBuffer, StreamKind

STATUS_ICONS = {
    SessionStatus.PENDING: ("·", "dim"),
    SessionStatus.CONNECTING: ("…", "yellow"),
    SessionStatus.SESSION_OPEN: ("…", "yellow"),
    SessionStatus.RUNNING: ("▶", "yellow"),
    SessionStatus.RECONNECTING: ("↻", "magenta"),
    SessionStatus.SUCCESS: ("✔", "green"),
    SessionStatus.FAILED: ("✘", "red"),
    SessionStatus.CANCELLED: ("■", "dim"),
}


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[SessionStatus] = reactive(SessionStatus.PENDING)

    def __init__(self, label: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host_label = label
        self._header = Label(self._get_header())
        self._log = RichLog(highlight=True, markup=True, wrap=True, auto_scroll=True)

    def compose(self) -> ComposeResult:
        yield self._header
        yield self._log

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return f"[{color}]{icon}[/] [{color}][bold]{escape(self.host_label)}[/bold] {self.status.value}[/]"

    def watch_status(self, status: SessionStatus) -> None:
        """Update header when status changes."""
        self._header.update(self._get_header())

    def append_output(self, stream: StreamKind, line: str) -> None:
        """Append a line of output to this panel."""
        if stream is StreamKind.STDERR:
            self._log.write(f"[red]{escape(line)}[/red]")
        else:
            self._log.write(escape(line))


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts done | {status} | Press 'q' to quit"


class HostOutput(Message):
    """Message for a line of host output."""

    def __init__(self, label: str, stream: StreamKind, line: str) -> None:
        super().__init__()
        self.label = label
        self.stream = stream
        self.line = line


class HostStatusChange(Message):
    """Message for a host status change."""

    def __init__(self, label: str, index: int, status: SessionStatus) -> None:
        super().__init__()
        self.label = label
        self.index = index
        self.status = status


class DashboardSink:
    """OutputSink that forwards complete lines to a Dashboard.

    Safe to call from the worker thread running the fleet.
    """

    def __init__(self, app: App):
        self.app = app
        self._lock = threading.Lock()
        self._buffers: dict[tuple[str, StreamKind], LineBuffer] = {}

    def write(self, label: str, stream: StreamKind, data: bytes) -> None:
        with self._lock:
            buf = self._buffers.setdefault((label, stream), LineBuffer())
            lines = buf.feed(data)
        for line in lines:
            self.app.post_message(HostOutput(label, stream, line))

    def close(self, label: str, stream: StreamKind) -> None:
        with self._lock:
            self._buffers.pop((label, stream), None)

    def on_status(self, attempt: SessionAttempt, status: SessionStatus) -> None:
        self.app.post_message(HostStatusChange(attempt.label, attempt.index, status))


# Runs the fleet against the dashboard's sink; it must hand its Fleet to attach_fleet()
FleetRunner = Callable[["Dashboard"], Awaitable[object]]


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    #host-container {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
        height: 1fr;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, total: int, runner: FleetRunner, **kwargs) -> None:
        super().__init__(**kwargs)
        self.total = total
        self.runner = runner
        self.sink = DashboardSink(self)
        self.panels: dict[str, HostPanel] = {}
        self.fleet_result: object = None
        self._worker: Worker | None = None
        self._finished: set[int] = set()
        self._fleet_lock = threading.Lock()
        self._fleet: Fleet | None = None
        self._fleet_loop: asyncio.AbstractEventLoop | None = None
        self._fleet_done = threading.Event()
        self._quit_requested = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Container(id="host-container")
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the fleet when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = self.total
        self._worker = self.run_worker(self._run_fleet(), exclusive=True, thread=True)

    async def _run_fleet(self) -> None:
        try:
            self.fleet_result = await self.runner(self)
        finally:
            self._fleet_done.set()

    def attach_fleet(self, fleet: Fleet) -> None:
        """Register the running fleet so quitting can stop it.

        Called from the worker thread, inside the fleet's event loop.
        """
        with self._fleet_lock:
            self._fleet = fleet
            self._fleet_loop = asyncio.get_running_loop()
            quitting = self._quit_requested
        if quitting:
            fleet.stop()

    def wait_for_fleet(self, timeout: float | None = None) -> bool:
        """Block until the fleet attached to this dashboard has finished."""
        with self._fleet_lock:
            if self._fleet is None:
                return True
        return self._fleet_done.wait(timeout)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _panel(self, label: str) -> HostPanel:
        if label not in self.panels:
            panel = HostPanel(label)
            self.panels[label] = panel
            self.query_one("#host-container", Container).mount(panel)
        return self.panels[label]

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        self._panel(message.label).append_output(message.stream, message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        self._panel(message.label).status = message.status
        if message.status.done and message.index not in self._finished:
            self._finished.add(message.index)
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Stop the fleet and quit the application."""
        with self._fleet_lock:
            self._quit_requested = True
            fleet, loop = self._fleet, self._fleet_loop
        if fleet and loop and not self._fleet_done.is_set():
            try:
                loop.call_soon_threadsafe(fleet.stop)
            except RuntimeError:
                # Loop already closed, the fleet has finished
                pass
        self.exit()
