"""Cleanup command: destroy every stage in reverse order."""

import rich_click as click

from stackup.base import WorkflowCommand


class CleanupCommand(WorkflowCommand):
    """Destroy network + compute, then the state backend."""

    def execute(self) -> None:
        config = self.load_config()

        self.show_header(
            title="Destroy Infrastructure",
            subtitle="[bold red]All provisioned resources will be destroyed[/bold red]",
            project=config.project_name,
            details={"Region": config.aws_region},
        )

        logger = self.init_logger(config.project_name, "cleanup")
        self.orchestrator = self.build_orchestrator(config, logger)

        report = self.run_workflow(self.orchestrator.cleanup)
        self.show_report(report)

        if not self.verbose:
            self.console.print("\n[color(248)]Cleanup completed.[/color(248)]")
            self.console.print(f"[dim]Logs saved to:[/dim] {logger.log_path}\n")


@click.command(name="cleanup")
@click.option("--verbose", "-v", is_flag=True, envvar="VERBOSE", help="Show all command output")
def cleanup(verbose):
    """Destroy all resources"""
    cmd = CleanupCommand(verbose=verbose)
    cmd.run()


@click.command(name="destroy")
@click.option("--verbose", "-v", is_flag=True, envvar="VERBOSE", help="Show all command output")
def destroy(verbose):
    """Alias for cleanup"""
    cmd = CleanupCommand(verbose=verbose)
    cmd.run()
