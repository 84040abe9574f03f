"""Batch rendering of result sets as tables or JSON."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .checks import Check
from .results import Result, ResultSet, Status

STATUS_STYLES = {
    Status.OK: "green",
    Status.NOT_FOUND: "yellow",
}


def status_text(status: Status) -> Text:
    return Text(status.label, style=STATUS_STYLES.get(status, "bold red"))


def row_cells(check: Check, result: Result) -> tuple[str, ...]:
    """Cells for the check's columns; failures put their detail in the first."""
    if result.ok:
        return check.cells(result.value)
    blanks = ("",) * (len(check.columns) - 1)
    return (result.detail,) + blanks


def build_table(result_set: ResultSet, check: Check) -> Table:
    table = Table(title=f"beeg check {result_set.check}")
    table.add_column("Node", style="bold")
    table.add_column("Host")
    table.add_column("Status")
    for column in check.columns:
        table.add_column(column)

    for result in result_set:
        table.add_row(
            result.node.name,
            result.node.host,
            status_text(result.status),
            *row_cells(check, result),
        )
    return table


def render_table(result_set: ResultSet, check: Check, console: Console) -> None:
    console.print(build_table(result_set, check))


def render_json(result_set: ResultSet) -> str:
    return json.dumps(result_set.to_list(), indent=2)


def render_warnings(result_set: ResultSet, check: Check, console: Console) -> None:
    """Print cross-node warnings; the console should write to stderr."""
    for line in check.warnings(result_set):
        if line.startswith("  "):
            console.print(Text(line))
        else:
            console.print(Text.assemble(("WARNING: ", "yellow"), line))
