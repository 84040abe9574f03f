"""Live TUI dashboard for polling checks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static
from textual.worker import Worker

from .checks import Check
from .config import Node
from .executor import Executor, LivePoller, NodeStatus
from .render import row_cells, status_text
from .results import ResultSet
from .transport import Transport

PENDING_CELL = "..."


class StatusBar(Static):
    """Bottom status bar showing poll progress."""

    ticks: reactive[int] = reactive(0)
    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    last_update: reactive[str] = reactive("never")

    def render(self) -> str:
        return (
            f"Tick {self.ticks} | {self.completed}/{self.total} nodes probed"
            f" | Last update: {self.last_update} | Press 'q' to quit"
        )


@dataclass
class TickComplete(Message):
    """Message for a finished poll tick."""
    result_set: ResultSet


@dataclass
class NodeStatusChange(Message):
    """Message for node status change."""
    node_name: str
    status: NodeStatus


class LiveDashboard(App):
    """Redraws a check's results on every poll tick until the user quits."""

    CSS = """
    DataTable {
        height: 1fr;
        border: solid $primary;
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

    def __init__(
        self,
        transport: Transport,
        check: Check,
        nodes: Sequence[Node],
        interval: float = 2.0,
        timeout: float = 10.0,
        concurrency: int | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.check = check
        self.nodes = list(nodes)
        self.executor = Executor(
            transport,
            concurrency=concurrency,
            timeout=timeout,
            on_status=self._on_status,
        )
        self.poller = LivePoller(self.executor, check, self.nodes, interval=interval)
        self.result_set: ResultSet | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield DataTable(id="results", zebra_stripes=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Draw placeholder rows and start polling."""
        self.title = f"beeg check {self.check.name}"
        table = self.query_one("#results", DataTable)
        table.add_columns("Node", "Host", "Status", *self.check.columns)
        for node in self.nodes:
            table.add_row(
                node.name,
                node.host,
                PENDING_CELL,
                *([PENDING_CELL] * len(self.check.columns)),
                key=node.name,
            )

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.nodes)

        self._worker = self.run_worker(self._poll(), exclusive=True)

    async def _poll(self) -> None:
        await self.poller.run(self._on_tick)

    def _on_tick(self, result_set: ResultSet) -> None:
        self.post_message(TickComplete(result_set))

    def _on_status(self, node: Node, status: NodeStatus) -> None:
        self.post_message(NodeStatusChange(node.name, status))

    def on_tick_complete(self, message: TickComplete) -> None:
        """Replace the displayed results with the latest tick."""
        self.result_set = message.result_set
        table = self.query_one("#results", DataTable)
        table.clear()
        for result in message.result_set:
            table.add_row(
                result.node.name,
                result.node.host,
                status_text(result.status),
                *row_cells(self.check, result),
                key=result.node.name,
            )

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.ticks = self.poller.ticks
        status_bar.last_update = datetime.now().strftime("%H:%M:%S")

    def on_node_status_change(self, message: NodeStatusChange) -> None:
        status_bar = self.query_one("#status-bar", StatusBar)
        if message.status == NodeStatus.PENDING:
            status_bar.completed = 0
        elif message.status == NodeStatus.DONE:
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Stop polling, wait for in-flight probes to wind down, then quit."""
        self.poller.stop()
        if self._worker and self._worker.is_running:
            try:
                await asyncio.wait_for(self._worker.wait(), self.executor.grace + 1.0)
            except asyncio.TimeoutError:
                self._worker.cancel()
        self.exit()
