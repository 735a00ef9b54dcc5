"""
Ansible Runner

Executes Ansible against the generated inventory with logging.
"""

from pathlib import Path
from typing import Optional

from stackup.logger import run_with_progress
from stackup.models.results import ExecutionResult
from stackup.utils import run_command

ANSIBLE_ENV = {
    "ANSIBLE_HOST_KEY_CHECKING": "False",
    "ANSIBLE_RETRY_FILES_ENABLED": "False",
}


class AnsibleRunner:
    """
    Run Ansible commands in the ansible working directory.

    Responsibilities:
    - Connectivity check against one inventory group
    - Playbook execution
    - Logging to the run log
    """

    def __init__(self, ansible_dir: Path, logger=None):
        """
        Initialize Ansible runner.

        Args:
            ansible_dir: Directory holding the inventory and playbooks
            logger: Optional DeployLogger
        """
        self.ansible_dir = Path(ansible_dir)
        self.logger = logger

    def _run(self, cmd: list[str], description: str) -> ExecutionResult:
        if self.logger:
            return run_with_progress(
                self.logger, cmd, description, cwd=self.ansible_dir, env=ANSIBLE_ENV
            )
        return run_command(cmd, cwd=self.ansible_dir, env=ANSIBLE_ENV)

    def ping(self, inventory: Path, group: str) -> ExecutionResult:
        """ansible <group> -m ping -i <inventory>"""
        return self._run(
            ["ansible", group, "-m", "ping", "-i", str(inventory)],
            f"Testing connectivity to {group}",
        )

    def run_playbook(
        self, inventory: Path, playbook: str, extra_args: Optional[list[str]] = None
    ) -> ExecutionResult:
        """ansible-playbook -i <inventory> <playbook>"""
        cmd = ["ansible-playbook", "-i", str(inventory), playbook]
        if extra_args:
            cmd += extra_args
        return self._run(cmd, f"Running {playbook}")
