"""Configuration-management handoff."""

import pytest

from stackup.core.handoff import ConfigManagementHandoff
from stackup.exceptions import HandoffError, HandoffTimeout
from stackup.models.results import ExecutionResult
from stackup.models.stage import ProvisionRequest


class FakeSSH:
    def __init__(self, error=None):
        self.error = error
        self.waited = []

    def wait_until_reachable(self, host, timeout, interval, cancel_event=None):
        self.waited.append((host, timeout, interval))
        if self.error:
            raise self.error
        return 1


class FakeAnsible:
    def __init__(self, ping_code=0, playbook_code=0):
        self.ping_code = ping_code
        self.playbook_code = playbook_code
        self.calls = []

    def ping(self, inventory, group):
        self.calls.append(("ping", group))
        return ExecutionResult(returncode=self.ping_code, stderr="UNREACHABLE!")

    def run_playbook(self, inventory, playbook, extra_args=None):
        self.calls.append(("playbook", playbook))
        return ExecutionResult(returncode=self.playbook_code, stdout="failed=1")


@pytest.fixture
def request_with_inventory():
    return ProvisionRequest(
        stage="config-management",
        files={"inventory": {"master_public_ip": "54.1.2.3", "ssh_user": "ec2-user"}},
    )


@pytest.fixture
def playbook(config):
    path = config.ansible_path / config.handoff.playbook
    path.write_text("- hosts: jenkins_master\n")
    return path


def test_runs_playbook_after_host_is_reachable(config, playbook, request_with_inventory):
    ssh, ansible = FakeSSH(), FakeAnsible()

    ConfigManagementHandoff(config, ssh, ansible).run(request_with_inventory)

    assert ssh.waited == [("54.1.2.3", 1, 1)]
    assert ansible.calls == [("ping", "jenkins_master"), ("playbook", "jenkins-setup.yml")]


def test_timeout_propagates_before_ansible(config, playbook, request_with_inventory):
    ansible = FakeAnsible()
    handoff = ConfigManagementHandoff(config, FakeSSH(error=HandoffTimeout("late")), ansible)

    with pytest.raises(HandoffTimeout):
        handoff.run(request_with_inventory)

    assert ansible.calls == []


def test_missing_playbook(config, request_with_inventory):
    with pytest.raises(HandoffError) as exc_info:
        ConfigManagementHandoff(config, FakeSSH(), FakeAnsible()).run(request_with_inventory)
    assert "Playbook not found" in exc_info.value.message


def test_unreachable_group(config, playbook, request_with_inventory):
    ansible = FakeAnsible(ping_code=4)

    with pytest.raises(HandoffError) as exc_info:
        ConfigManagementHandoff(config, FakeSSH(), ansible).run(request_with_inventory)

    assert "UNREACHABLE" in exc_info.value.context
    assert ("playbook", "jenkins-setup.yml") not in ansible.calls


def test_failed_playbook(config, playbook, request_with_inventory):
    with pytest.raises(HandoffError) as exc_info:
        ConfigManagementHandoff(config, FakeSSH(), FakeAnsible(playbook_code=2)).run(
            request_with_inventory
        )
    assert "exit code 2" in exc_info.value.message


def test_missing_control_plane_address(config, playbook):
    request = ProvisionRequest(stage="config-management", files={"inventory": {}})

    with pytest.raises(HandoffError):
        ConfigManagementHandoff(config, FakeSSH(), FakeAnsible()).run(request)


def test_inventory_path(config):
    handoff = ConfigManagementHandoff(config, FakeSSH(), FakeAnsible())
    assert handoff.inventory_path == config.ansible_path / "inventory"
