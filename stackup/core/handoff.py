"""Configuration-management handoff: wait for the hosts, then run Ansible."""

import threading
from typing import Optional

from stackup.ansible_runner import AnsibleRunner
from stackup.constants import ANSIBLE_INVENTORY_FILE, ANSIBLE_MASTER_GROUP
from stackup.core.config_loader import WorkflowConfig
from stackup.exceptions import HandoffError
from stackup.models.stage import ProvisionRequest
from stackup.services.ssh_service import SSHService


class ConfigManagementHandoff:
    """
    Best-effort final step of a deploy.

    Infrastructure is already provisioned when this runs; every failure here
    surfaces as a HandoffError so the operator can re-run the playbook by hand.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        ssh_service: SSHService,
        ansible_runner: AnsibleRunner,
        logger=None,
    ):
        self.config = config
        self.ssh_service = ssh_service
        self.ansible_runner = ansible_runner
        self.logger = logger

    @property
    def inventory_path(self):
        return self.config.ansible_path / ANSIBLE_INVENTORY_FILE

    def run(
        self,
        request: ProvisionRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Raises:
            HandoffTimeout: If the control plane never becomes reachable
            HandoffError: If Ansible fails
            RunCancelled: If the operator aborts the wait
        """
        inventory_values = request.files.get(ANSIBLE_INVENTORY_FILE, {})
        master_ip = inventory_values.get("master_public_ip")
        if not master_ip:
            raise HandoffError("Control-plane address missing from inventory inputs")

        if self.logger:
            self.logger.log(
                f"Waiting up to {self.config.handoff.timeout}s for {master_ip} to accept SSH"
            )
        self.ssh_service.wait_until_reachable(
            master_ip,
            timeout=self.config.handoff.timeout,
            interval=self.config.handoff.poll_interval,
            cancel_event=cancel_event,
        )
        if self.logger:
            self.logger.success(f"Control plane reachable ({master_ip})")

        playbook = self.config.ansible_path / self.config.handoff.playbook
        if not playbook.exists():
            raise HandoffError(f"Playbook not found: {playbook}")

        ping = self.ansible_runner.ping(self.inventory_path, ANSIBLE_MASTER_GROUP)
        if ping.is_failure:
            raise HandoffError(
                f"Ansible cannot reach group '{ANSIBLE_MASTER_GROUP}'",
                context=ping.output[-2000:],
            )

        result = self.ansible_runner.run_playbook(
            self.inventory_path, self.config.handoff.playbook
        )
        if result.is_failure:
            raise HandoffError(
                f"Playbook {self.config.handoff.playbook} failed "
                f"(exit code {result.returncode})",
                context=result.output[-2000:],
            )

        if self.logger:
            self.logger.success("Jenkins configured successfully")
