"""Tests for the command-line surface."""

import argparse
import json

import pytest

from stack_deployer import cli
from stack_deployer.config import AppConfig
from stack_deployer.orchestrator import PipelineRun, RunStatus

from conftest import FakeInvoker


class TestParser:
    def test_help_exits_zero(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(["deploy", "--help"])
        assert exc_info.value.code == 0
        assert "--skip-infrastructure" in capsys.readouterr().out

    def test_unknown_flag_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(["deploy", "--skip-everything"])
        assert exc_info.value.code == 2

    def test_deploy_flags(self):
        args = cli.build_parser().parse_args(
            ["deploy", "--skip-infrastructure", "--skip-image-build", "--image-tag", "v3", "--report"]
        )
        assert args.skip_infrastructure and args.skip_image_build
        assert not args.skip_monitoring
        assert args.image_tag == "v3"
        assert args.report

    def test_missing_config_returns_usage_code(self, tmp_path):
        code = cli.run_cli(["--config", str(tmp_path / "absent.json"), "deploy"])
        assert code == cli.EXIT_USAGE


class TestDeployCommand:
    def _args(self, **overrides):
        values = dict(
            skip_infrastructure=True, skip_monitoring=True, skip_image_build=True,
            monitoring_check=False, security_check=False, backup_check=False, report=False,
        )
        values.update(overrides)
        return argparse.Namespace(**values)

    def test_failed_run_exits_one(self, monkeypatch):
        run = PipelineRun(status=RunStatus.FAILED)
        monkeypatch.setattr(cli, "run_pipeline", lambda *a: run)
        context = cli.CLIContext(config=AppConfig(), invoker=FakeInvoker())

        assert cli.handle_deploy_command(self._args(), context) == cli.EXIT_FAILED

    def test_partial_skip_exits_zero(self, monkeypatch, capsys):
        run = PipelineRun(status=RunStatus.PARTIAL_SKIP)
        monkeypatch.setattr(cli, "run_pipeline", lambda *a: run)
        context = cli.CLIContext(config=AppConfig(), invoker=FakeInvoker())

        assert cli.handle_deploy_command(self._args(), context) == cli.EXIT_OK
        assert "devops-app.example.com" in capsys.readouterr().out

    def test_preflight_runs_before_pipeline(self, monkeypatch):
        called = []
        monkeypatch.setattr(cli, "run_pipeline", lambda *a: called.append(True))
        invoker = FakeInvoker()
        invoker.missing.add("kubectl")
        context = cli.CLIContext(config=AppConfig(), invoker=invoker)

        with pytest.raises(cli.ConfigurationError):
            cli.handle_deploy_command(self._args(), context)
        assert called == []


class TestLogsCommand:
    def _write_log(self, log_dir, name, status="success"):
        log_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "status": status,
            "start_time": "2024-05-01T12:00:00",
            "flags": {"skip_infrastructure": True},
            "stages": [
                {
                    "name": "application-release",
                    "ordinal": 6,
                    "status": "failed",
                    "reason": "invocation_failed",
                    "error": "Command helm upgrade failed with code 1",
                    "warnings": [],
                    "commands": [{"command": "helm upgrade", "exit_code": 1, "stdout": "Error: timed out"}],
                }
            ],
        }
        (log_dir / name).write_text(json.dumps(data), encoding="utf-8")

    def _args(self, **overrides):
        values = dict(list_logs=False, latest=False, file=None, summary=False)
        values.update(overrides)
        return argparse.Namespace(**values)

    def test_no_logs(self, tmp_path, capsys):
        assert cli.handle_logs_command(self._args(), tmp_path / "missing") == cli.EXIT_OK
        assert "No run logs found" in capsys.readouterr().out

    def test_list(self, tmp_path, capsys):
        self._write_log(tmp_path, "deploy_20240501_120000_000000.json")
        self._write_log(tmp_path, "deploy_20240502_120000_000000.json", status="failed")

        assert cli.handle_logs_command(self._args(list_logs=True), tmp_path) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert out.index("deploy_20240502") < out.index("deploy_20240501")

    def test_show_latest(self, tmp_path, capsys):
        self._write_log(tmp_path, "deploy_20240501_120000_000000.json", status="failed")

        assert cli.handle_logs_command(self._args(latest=True), tmp_path) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "application-release (invocation_failed)" in out
        assert "Error: timed out" in out

    def test_summary_hides_output(self, tmp_path, capsys):
        self._write_log(tmp_path, "deploy_20240501_120000_000000.json")

        cli.handle_logs_command(self._args(summary=True), tmp_path)
        assert "Error: timed out" not in capsys.readouterr().out

    def test_unknown_file(self, tmp_path):
        self._write_log(tmp_path, "deploy_20240501_120000_000000.json")
        assert cli.handle_logs_command(self._args(file="nope.json"), tmp_path) == cli.EXIT_FAILED
