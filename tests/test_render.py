"""Tests for result rendering and exit policy."""

import json

import pytest
from rich.console import Console

from beeg.checks import NVIDIA_DRIVER, StorageTargetCheck, StorageTargetReport, TargetState
from beeg.config import Node
from beeg.render import build_table, render_json, render_table, render_warnings, row_cells
from beeg.results import Result, ResultSet, Status, exit_code

NODES = [Node(f"node-{c}", f"10.0.0.{i}") for i, c in enumerate("abcde", start=1)]


@pytest.fixture
def result_set():
    return ResultSet(
        "nvidia-driver",
        [
            Result(NODES[0], Status.OK, value="535.104.05", duration=0.25),
            Result(NODES[1], Status.NOT_FOUND, detail="NVIDIA driver not found"),
            Result(NODES[2], Status.CONNECTION_FAILED, detail="Connection refused"),
            Result(NODES[3], Status.TIMEOUT, detail="timed out after 10s"),
            Result(
                NODES[4],
                Status.PARSE_ERROR,
                detail="no version number in output",
                raw_output="No devices were found\n",
            ),
        ],
    )


def render_to_text(result_set, check) -> str:
    console = Console(width=200, record=True, color_system=None)
    render_table(result_set, check, console)
    return console.export_text()


class TestJson:
    def test_stable_fields(self, result_set):
        doc = json.loads(render_json(result_set))
        assert doc[0] == {
            "node": "node-a",
            "host": "10.0.0.1",
            "status": "ok",
            "duration": 0.25,
            "value": "535.104.05",
        }
        assert doc[1]["detail"] == "NVIDIA driver not found"
        assert doc[2]["error"] == "Connection refused"
        assert doc[4]["raw_output"] == "No devices were found\n"
        assert "value" not in doc[2]

    def test_dataclass_facts(self):
        report = StorageTargetReport(True, (TargetState(101, "ok", "Online/Good"),))
        result_set = ResultSet("storage-target", [Result(NODES[0], Status.OK, value=report)])
        doc = json.loads(render_json(result_set))
        assert doc[0]["value"] == {
            "service_active": True,
            "targets": [{"target": 101, "status": "ok", "state": "Online/Good"}],
        }

    def test_empty(self):
        assert json.loads(render_json(ResultSet("cuda"))) == []


class TestTable:
    def test_every_node_is_listed(self, result_set):
        text = render_to_text(result_set, NVIDIA_DRIVER)
        for node in NODES:
            assert node.name in text
        assert "NOT FOUND" in text
        assert "CONNECTION FAILED" in text
        assert "PARSE ERROR" in text

    def test_table_and_json_agree_on_status(self, result_set):
        table = build_table(result_set, NVIDIA_DRIVER)
        status_column = [str(cell) for cell in table.columns[2].cells]
        doc = json.loads(render_json(result_set))
        assert status_column == [Status(entry["status"]).label for entry in doc]

    def test_failure_detail_in_first_column(self):
        check = StorageTargetCheck()
        result = Result(NODES[0], Status.TIMEOUT, detail="timed out after 5s")
        assert row_cells(check, result) == ("timed out after 5s", "")


def test_warnings_are_printed(result_set):
    console = Console(width=200, record=True, color_system=None)
    render_warnings(result_set, NVIDIA_DRIVER, console)
    assert "WARNING: NVIDIA driver missing on 1 node(s): node-b" in console.export_text()


class TestExitCode:
    def test_always_zero(self, result_set):
        assert exit_code(result_set, "always-zero") == 0

    def test_strict_fails_on_errors(self, result_set):
        assert exit_code(result_set, "strict") == 1

    def test_strict_ignores_not_found(self):
        result_set = ResultSet(
            "cuda",
            [
                Result(NODES[0], Status.OK, value="12.2"),
                Result(NODES[1], Status.NOT_FOUND, detail="CUDA not found"),
            ],
        )
        assert exit_code(result_set, "strict") == 0
