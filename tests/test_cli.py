"""CLI verbs and exit codes."""

import pytest
from click.testing import CliRunner

from stackup.base.workflow_command import WorkflowCommand
from stackup.exceptions import LockBusy, RunCancelled
from stackup.main import cli
from stackup.models.results import RunReport, StageOutcome
from stackup.models.stage import StageState

from conftest import STAGE_OUTPUTS


class StubOrchestrator:
    def __init__(self, error=None, warnings=()):
        self.error = error
        self.warnings = list(warnings)
        self.calls = []
        self.completed = {}
        self.aborted = False

    def _run(self, operation, outcome):
        self.calls.append(operation)
        if self.error:
            raise self.error
        report = RunReport(operation=operation)
        for name in ("state-backend", "network-compute"):
            report.record(name, outcome)
            self.completed[name] = StageState(stage=name, outputs=STAGE_OUTPUTS[name])
        for warning in self.warnings:
            report.add_warning(warning)
        return report

    def deploy(self):
        return self._run("deploy", StageOutcome.APPLIED)

    def cleanup(self):
        return self._run("cleanup", StageOutcome.DESTROYED)

    def abort(self):
        self.aborted = True


@pytest.fixture
def stub(monkeypatch, workspace):
    monkeypatch.setenv("STACKUP_ROOT", str(workspace))
    orchestrator = StubOrchestrator()
    monkeypatch.setattr(
        WorkflowCommand, "build_orchestrator", lambda self, config, logger: orchestrator
    )
    return orchestrator


def test_deploy_prints_connection_info(stub):
    result = CliRunner().invoke(cli, ["deploy"])

    assert result.exit_code == 0, result.output
    assert stub.calls == ["deploy"]
    assert "http://54.1.2.3:8080" in result.output
    assert "ec2-user@54.1.2.3" in result.output


def test_deploy_with_handoff_warning_still_succeeds(stub):
    stub.warnings = ["Configuration management did not complete"]

    result = CliRunner().invoke(cli, ["deploy"])

    assert result.exit_code == 0
    assert "ansible-playbook" in result.output


def test_fatal_error_reports_stage(stub):
    stub.error = LockBusy("network-compute", "someone@elsewhere")

    result = CliRunner().invoke(cli, ["deploy"])

    assert result.exit_code == 1
    assert "LockBusy" in result.output
    assert "network-compute" in result.output


def test_cancelled_run_exits_130(stub):
    stub.error = RunCancelled("Stopped waiting for 54.1.2.3:22")

    result = CliRunner().invoke(cli, ["deploy"])

    assert result.exit_code == 130


@pytest.mark.parametrize("verb", ["cleanup", "destroy"])
def test_cleanup_and_alias(stub, verb):
    result = CliRunner().invoke(cli, [verb])

    assert result.exit_code == 0, result.output
    assert stub.calls == ["cleanup"]


def test_run_writes_a_log_file(stub, workspace):
    CliRunner().invoke(cli, ["cleanup"])

    logs = list((workspace / "logs").rglob("*_cleanup.log"))
    assert len(logs) == 1


def test_bad_config_exits_1(stub, workspace):
    (workspace / "stackup.yml").write_text("project: [unclosed\n")

    result = CliRunner().invoke(cli, ["deploy"])

    assert result.exit_code == 1
    assert stub.calls == []


def test_unknown_verb():
    result = CliRunner().invoke(cli, ["provision"])
    assert result.exit_code != 0


def test_no_verb_prints_usage_and_exits_1():
    result = CliRunner().invoke(cli, [])

    assert result.exit_code == 1
    assert "cleanup" in result.output
