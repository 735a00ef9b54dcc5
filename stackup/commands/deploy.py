"""Deploy command: provision every stage, then configure Jenkins."""

import rich_click as click

from stackup.base import WorkflowCommand
from stackup.constants import NETWORK_COMPUTE_STAGE
from stackup.models.results import RunReport
from stackup.models.ssh import SSHConnection


class DeployCommand(WorkflowCommand):
    """Provision the state backend and the network + compute stage."""

    def execute(self) -> None:
        config = self.load_config()

        self.show_header(
            title="Deploy Infrastructure",
            subtitle="state backend → network + compute → Jenkins",
            project=config.project_name,
            details={"Region": config.aws_region, "Environment": config.environment},
        )

        logger = self.init_logger(config.project_name, "deploy")
        self.orchestrator = self.build_orchestrator(config, logger)

        report = self.run_workflow(self.orchestrator.deploy)
        self.show_report(report)
        self._show_connection_info(report)

        if not self.verbose:
            self.console.print(f"\n[dim]Logs saved to:[/dim] {logger.log_path}\n")

    def _show_connection_info(self, report: RunReport) -> None:
        state = self.orchestrator.completed.get(NETWORK_COMPUTE_STAGE)
        if state is None:
            return

        master_ip = state.outputs.get("jenkins_master_public_ip")
        worker_ip = state.outputs.get("jenkins_worker_private_ip")
        connection = SSHConnection(host=master_ip, config=self.config.ssh)

        if report.warnings:
            self.console.print(
                "\n[yellow]Infrastructure is up but Jenkins is not configured yet.[/yellow]"
            )
        else:
            self.console.print()
            self.print_success("Deployment completed successfully!")

        self.console.print("\n[bold]Jenkins Access Information:[/bold]")
        self.console.print(f"  Web Interface:  [cyan]http://{master_ip}[/cyan]")
        self.console.print(f"  Direct Jenkins: [cyan]http://{master_ip}:8080[/cyan]")
        self.console.print(f"  SSH to Master:  [cyan]{connection.ssh_command}[/cyan]")
        if worker_ip:
            self.console.print(f"  Worker (private): [cyan]{worker_ip}[/cyan]")

        self.console.print("\n[bold]Next Steps:[/bold]")
        if report.warnings:
            self.console.print(
                f"  0. Re-run: cd {self.config.ansible_dir} && "
                f"ansible-playbook -i inventory {self.config.handoff.playbook}"
            )
        self.console.print("  1. Access Jenkins web interface")
        self.console.print("  2. Complete initial setup wizard")
        self.console.print("  3. Add Jenkins worker node")
        self.console.print("  4. Create and run your pipeline")


@click.command(name="deploy")
@click.option("--verbose", "-v", is_flag=True, envvar="VERBOSE", help="Show all command output")
def deploy(verbose):
    """Deploy the complete infrastructure"""
    cmd = DeployCommand(verbose=verbose)
    cmd.run()
