"""SSH key material and reachability polling."""

import threading
from datetime import datetime

import pytest

from stackup.base.workflow_command import WorkflowCommand
from stackup.exceptions import HandoffTimeout, RunCancelled
from stackup.models.results import ExecutionResult
from stackup.models.ssh import SSHConfig, SSHConnection
from stackup.services.ssh_service import SSHService


@pytest.fixture
def ssh_service(config):
    return SSHService(config.ssh)


def test_existing_key_is_never_regenerated(ssh_service, config):
    before = config.ssh.key_path_expanded.read_text()

    assert ssh_service.ensure_key_pair() is False
    assert config.ssh.key_path_expanded.read_text() == before
    assert config.ssh.read_public_key() == "ssh-rsa AAAATEST stackup-test"


def test_public_key_path_sits_next_to_private_key(tmp_path):
    ssh = SSHConfig(key_path=str(tmp_path / "id"), user="ec2-user")
    assert ssh.public_key_path_expanded == tmp_path / "id.pub"
    assert not ssh.key_exists


def test_connection_summary_command(config):
    connection = SSHConnection(host="54.1.2.3", config=config.ssh)
    assert connection.connection_string == "ec2-user@54.1.2.3"
    assert connection.ssh_command.endswith("jenkins-key ec2-user@54.1.2.3")


def test_wait_returns_once_reachable(ssh_service):
    answers = iter([False, False, True])
    attempts = ssh_service.wait_until_reachable(
        "54.1.2.3", timeout=5, interval=0.01, probe=lambda host, port: next(answers)
    )
    assert attempts == 3


def test_wait_probes_ssh_port(ssh_service):
    seen = []

    def probe(host, port):
        seen.append((host, port))
        return True

    ssh_service.wait_until_reachable("54.1.2.3", timeout=5, interval=0.01, probe=probe)
    assert seen == [("54.1.2.3", 22)]


def test_wait_times_out(ssh_service):
    ticks = iter([0.0, 0.5, 1.0, 1.5, 2.0, 2.5])

    with pytest.raises(HandoffTimeout) as exc_info:
        ssh_service.wait_until_reachable(
            "54.1.2.3",
            timeout=1,
            interval=0.01,
            probe=lambda host, port: False,
            clock=lambda: next(ticks),
        )

    assert "not reachable after 1s" in exc_info.value.message
    assert exc_info.value.fatal is False


def test_wait_is_cancellable(ssh_service):
    cancel = threading.Event()

    def probe(host, port):
        cancel.set()
        return False

    with pytest.raises(RunCancelled):
        ssh_service.wait_until_reachable(
            "54.1.2.3", timeout=60, interval=30, cancel_event=cancel, probe=probe
        )


def test_unroutable_host_is_not_reachable():
    assert SSHService.is_reachable("127.0.0.1", port=1, timeout=0.5) is False


def test_new_key_pair_is_labelled_with_project_and_date(tmp_path, monkeypatch):
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        key = tmp_path / "keys" / "id"
        key.write_text("PRIVATE KEY\n")
        key.with_name("id.pub").write_text("ssh-rsa AAAANEW\n")
        return ExecutionResult(returncode=0)

    monkeypatch.setattr("stackup.services.ssh_service.run_command", fake_run)
    ssh = SSHConfig(key_path=str(tmp_path / "keys" / "id"), user="ec2-user")
    service = SSHService(ssh)

    assert service.ensure_key_pair() is True

    comment = commands[0][commands[0].index("-C") + 1]
    assert comment == f"jenkins-step3-{datetime.now().strftime('%Y%m%d')}"
    assert commands[0][:5] == ["ssh-keygen", "-t", "rsa", "-b", "4096"]


def test_workflow_labels_keys_with_the_project_name(workspace, config):
    config.project_name = "ci-sandbox"
    command = WorkflowCommand(root=workspace)

    orchestrator = command.build_orchestrator(config, logger=None)

    assert orchestrator.ssh_service.comment_prefix == "ci-sandbox"
