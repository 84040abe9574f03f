"""Tests for the command line entry point."""

import json

import pytest

from beeg.runner import build_parser, main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "transport": "local",
                "nodes": [
                    {"name": "node-a", "host": "127.0.0.1"},
                    {"name": "node-b", "host": "localhost", "labels": ["gpu"]},
                ],
            }
        )
    )
    return path


class TestParser:
    def test_check_nvidia(self):
        args = build_parser().parse_args(["check", "nvidia-driver", "-s", "all"])
        assert args.command == "check"
        assert args.check == "nvidia-driver"
        assert args.output == "table"

    def test_output_json(self):
        args = build_parser().parse_args(["--output", "json", "check", "cuda", "-s", "gpu"])
        assert args.output == "json"
        assert args.selector == "gpu"

    def test_client_mount(self):
        args = build_parser().parse_args(
            ["check", "client-mount", "--mount", "/mnt/beegfs", "-s", "all", "--interval", "5"]
        )
        assert args.mount == "/mnt/beegfs"
        assert args.interval == 5.0
        assert not args.once

    def test_storage_target(self):
        args = build_parser().parse_args(
            ["check", "storage-target", "--node", "node-a", "--targets", "101,102"]
        )
        assert args.selector == "node-a"
        assert args.targets == "101,102"

    def test_storage_target_requires_selector(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["check", "storage-target"])

    @pytest.mark.parametrize(
        "option, value",
        [
            ("--concurrency", "-1"),
            ("--concurrency", "0"),
            ("--timeout", "0"),
            ("--deadline", "-5"),
            ("--timeout", "soon"),
        ],
    )
    def test_rejects_non_positive_run_options(self, option, value):
        with pytest.raises(SystemExit) as excinfo:
            build_parser().parse_args(["check", "cuda", option, value])
        assert excinfo.value.code == 2

    def test_rejects_zero_interval(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["check", "client-mount", "--mount", "/mnt/beegfs", "--interval", "0"]
            )

    def test_node_exec(self):
        args = build_parser().parse_args(["node", "exec", "--", "echo", "hi"])
        assert args.node_command == "exec"
        assert args.cmd[-2:] == ["echo", "hi"]


class TestMain:
    def test_node_list_json(self, config_file, capsys):
        assert main(["-c", str(config_file), "-o", "json", "node", "list"]) == 0
        nodes = json.loads(capsys.readouterr().out)
        assert nodes == [
            {"name": "node-a", "host": "127.0.0.1", "labels": []},
            {"name": "node-b", "host": "localhost", "labels": ["gpu"]},
        ]

    def test_node_exec_json(self, config_file, capsys):
        code = main(["-c", str(config_file), "-o", "json", "node", "exec", "--", "echo", "hi"])
        assert code == 0
        doc = json.loads(capsys.readouterr().out)
        assert [entry["node"] for entry in doc] == ["node-a", "node-b"]
        assert all(entry["status"] == "ok" for entry in doc)
        assert all(entry["value"].splitlines()[-1] == "hi" for entry in doc)

    def test_strict_exit_policy(self, config_file, capsys):
        args = ["-c", str(config_file), "-o", "json", "--exit-policy", "strict"]
        assert main(args + ["node", "exec", "-s", "gpu", "--", "exit", "4"]) == 1
        doc = json.loads(capsys.readouterr().out)
        assert doc[0]["status"] == "command_failed"

    def test_failures_exit_zero_by_default(self, config_file, capsys):
        code = main(["-c", str(config_file), "-o", "json", "node", "exec", "--", "exit", "4"])
        assert code == 0

    def test_empty_selection_warns(self, config_file, capsys):
        code = main(["-c", str(config_file), "-o", "json", "check", "cuda", "-s", "none-such"])
        captured = capsys.readouterr()
        assert code == 0
        assert json.loads(captured.out) == []
        assert "matched no nodes" in captured.err

    def test_storage_target_needs_one_node(self, config_file, capsys):
        code = main(["-c", str(config_file), "check", "storage-target", "-s", "all"])
        assert code == 2
        assert "exactly one node" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert main(["-c", str(path), "node", "list"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_negative_concurrency_is_a_usage_error(self, config_file, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["-c", str(config_file), "node", "exec", "--concurrency", "-1", "--", "true"])
        assert excinfo.value.code == 2
        assert "must be at least 1" in capsys.readouterr().err

    def test_config_not_utf8(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_bytes(b"\xff\xfe{}")
        assert main(["-c", str(path), "node", "list"]) == 2
        assert "Configuration error" in capsys.readouterr().err

