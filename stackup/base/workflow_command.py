"""
Workflow Command Base Class

Base class for commands that drive the orchestrator.
Provides configuration loading and service wiring.
"""

from typing import Callable, Optional

from stackup.ansible_runner import AnsibleRunner
from stackup.core.config_loader import ConfigLoader, WorkflowConfig
from stackup.core.handoff import ConfigManagementHandoff
from stackup.core.materializer import ConfigMaterializer
from stackup.core.orchestrator import Orchestrator
from stackup.logger import DeployLogger
from stackup.models.results import RunReport
from stackup.services.preflight_service import PreflightService
from stackup.services.ssh_service import SSHService
from stackup.services.state_service import StateStoreClient
from stackup.terraform_utils import TerraformEngine
from stackup.ui_components import show_stage_table

from .base_command import BaseCommand


class WorkflowCommand(BaseCommand):
    """
    Base class for deploy and cleanup.

    Provides:
    - Workspace configuration
    - Orchestrator with every collaborator wired to one logger
    - Cancellation on Ctrl+C
    """

    def __init__(self, verbose: bool = False, root=None):
        super().__init__(verbose=verbose, root=root)
        self.config: Optional[WorkflowConfig] = None
        self.orchestrator: Optional[Orchestrator] = None

    def load_config(self) -> WorkflowConfig:
        self.config = ConfigLoader(self.project_root).load()
        return self.config

    def build_orchestrator(
        self, config: WorkflowConfig, logger: DeployLogger
    ) -> Orchestrator:
        """Wire the state store, engine, materializer and handoff."""
        ssh_service = SSHService(
            config.ssh, logger=logger, comment_prefix=config.project_name
        )
        handoff = ConfigManagementHandoff(
            config,
            ssh_service,
            AnsibleRunner(config.ansible_path, logger=logger),
            logger=logger,
        )
        return Orchestrator(
            config=config,
            store=StateStoreClient(
                config.state_db_url, lease_seconds=config.lock_lease_seconds
            ),
            engine=TerraformEngine(logger=logger),
            materializer=ConfigMaterializer(logger=logger),
            handoff=handoff,
            preflight=PreflightService(logger=logger),
            ssh_service=ssh_service,
            logger=logger,
        )

    def run_workflow(self, operation: Callable[[], RunReport]) -> RunReport:
        """Run an orchestrator operation, cancelling waits on Ctrl+C."""
        try:
            return operation()
        except KeyboardInterrupt:
            if self.orchestrator:
                self.orchestrator.abort()
            raise

    def show_report(self, report: RunReport) -> None:
        if self.verbose:
            return
        self.console.print()
        show_stage_table(
            {name: outcome.value for name, outcome in report.stages.items()},
            console=self.console,
        )
        for warning in report.warnings:
            self.print_warning(warning)
