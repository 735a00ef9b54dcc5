"""
Terraform Utilities

Terraform operations for one stage working directory, plus the engine
adapter the orchestrator drives. Terraform itself is the provisioning
engine; nothing here models individual cloud resources.
"""

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from stackup.constants import (
    TERRAFORM_PLAN_FILE,
    TERRAFORM_TIMEOUT,
    TRANSIENT_ERROR_PATTERNS,
)
from stackup.exceptions import ProviderTransient, TerraformError
from stackup.logger import run_with_progress
from stackup.models.results import ExecutionResult
from stackup.models.stage import ProvisionRequest, Stage, StageState
from stackup.utils import run_command

# terraform plan -detailed-exitcode
PLAN_NO_CHANGES = 0
PLAN_HAS_CHANGES = 2


@dataclass
class TerraformOutputs:
    """Terraform outputs with type-safe access."""

    raw_outputs: Dict[str, Any]

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get output value by key."""
        output = self.raw_outputs.get(key, {})
        return output.get("value", default)

    def values(self) -> Dict[str, Any]:
        """Flatten {name: {"value": v, ...}} into {name: v}."""
        return {
            key: output.get("value")
            for key, output in self.raw_outputs.items()
            if isinstance(output, dict)
        }


def is_transient(stderr: str) -> bool:
    """True if Terraform diagnostics describe a retryable provider failure."""
    return any(pattern in stderr for pattern in TRANSIENT_ERROR_PATTERNS)


class TerraformManager:
    """
    Manages Terraform operations in one working directory.

    Responsibilities:
    - Initialize Terraform (optionally with a rendered backend config)
    - Plan/apply/destroy operations
    - Output and state queries
    """

    def __init__(
        self,
        working_dir: Path,
        logger=None,
        stage: Optional[str] = None,
        timeout: int = TERRAFORM_TIMEOUT,
    ):
        """
        Initialize Terraform manager.

        Args:
            working_dir: Directory holding the stage's *.tf files
            logger: Optional DeployLogger (progress spinner + log file)
            stage: Stage name for error reporting
            timeout: Per-command timeout in seconds
        """
        self.working_dir = Path(working_dir)
        self.logger = logger
        self.stage = stage
        self.timeout = timeout

    def _run_command(
        self,
        args: List[str],
        description: Optional[str] = None,
        check: bool = True,
        ok_codes: tuple = (0,),
    ) -> ExecutionResult:
        """
        Run Terraform command.

        Args:
            args: Command arguments (e.g., ['output', '-json'])
            description: Progress text (shows a spinner when a logger is set)
            check: Whether to raise on failure
            ok_codes: Exit codes that count as success

        Returns:
            ExecutionResult object

        Raises:
            ProviderTransient: If the failure looks retryable
            TerraformError: If command fails and check=True
        """
        cmd = ["terraform"] + args
        cmd_string = " ".join(cmd)

        try:
            if self.logger and description:
                result = run_with_progress(
                    self.logger, cmd, description, cwd=self.working_dir,
                    timeout=self.timeout,
                )
            else:
                if self.logger:
                    self.logger.log_command(cmd_string)
                result = run_command(cmd, cwd=self.working_dir, timeout=self.timeout)
                if self.logger:
                    self.logger.log_output(result.stdout, "stdout")
                    self.logger.log_output(result.stderr, "stderr")
        except subprocess.TimeoutExpired:
            raise ProviderTransient(
                f"Terraform command timed out: {cmd_string}",
                context=f"Timeout: {self.timeout}s",
                stage=self.stage,
            )
        except OSError as e:
            raise TerraformError(
                "Failed to execute Terraform command",
                context=f"Command: {cmd_string}, Error: {e}",
                stage=self.stage,
            )

        if check and result.returncode not in ok_codes:
            error_cls = ProviderTransient if is_transient(result.stderr) else TerraformError
            raise error_cls(
                f"Terraform command failed: {cmd_string}",
                context=f"Exit code: {result.returncode}\nError: {result.stderr.strip()}",
                stage=self.stage,
            )

        return result

    def init(self, backend_config: Optional[Path] = None) -> ExecutionResult:
        """
        Initialize Terraform.

        Args:
            backend_config: Rendered backend config file (-backend-config)
        """
        args = ["init", "-input=false", "-no-color"]
        if backend_config is not None:
            args += [f"-backend-config={backend_config}", "-reconfigure"]
        return self._run_command(args, description="Initializing Terraform")

    def plan(self, var_file: Optional[Path] = None, out: Optional[str] = None) -> bool:
        """
        Plan changes.

        Returns:
            True if the plan has changes
        """
        args = ["plan", "-input=false", "-no-color", "-detailed-exitcode"]
        if var_file is not None:
            args.append(f"-var-file={var_file}")
        if out:
            args.append(f"-out={out}")
        result = self._run_command(
            args,
            description="Planning changes",
            ok_codes=(PLAN_NO_CHANGES, PLAN_HAS_CHANGES),
        )
        return result.returncode == PLAN_HAS_CHANGES

    def apply(self, plan_file: str = TERRAFORM_PLAN_FILE) -> ExecutionResult:
        """Apply a saved plan."""
        return self._run_command(
            ["apply", "-input=false", "-no-color", "-compact-warnings", plan_file],
            description="Provisioning infrastructure (this may take a few minutes)",
        )

    def destroy(self, var_file: Optional[Path] = None) -> ExecutionResult:
        """Destroy Terraform-managed infrastructure."""
        args = ["destroy", "-input=false", "-no-color", "-auto-approve"]
        if var_file is not None:
            args.append(f"-var-file={var_file}")
        return self._run_command(args, description="Destroying infrastructure")

    def get_outputs(self) -> TerraformOutputs:
        """Get Terraform outputs as JSON."""
        result = self._run_command(["output", "-json", "-no-color"])
        if result.stdout.strip():
            try:
                return TerraformOutputs(raw_outputs=json.loads(result.stdout))
            except json.JSONDecodeError as e:
                raise TerraformError(
                    "Could not parse terraform outputs", context=str(e), stage=self.stage
                )
        return TerraformOutputs(raw_outputs={})

    def state_list(self) -> List[str]:
        """Addresses of every resource in state."""
        result = self._run_command(["state", "list", "-no-color"], check=False)
        if result.is_failure:
            # An empty workspace has no state to list
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class TerraformEngine:
    """Provisioning engine adapter: one Terraform working directory per stage."""

    def __init__(self, logger=None, timeout: int = TERRAFORM_TIMEOUT):
        self.logger = logger
        self.timeout = timeout

    def _manager(self, stage: Stage) -> TerraformManager:
        if not stage.working_directory.is_dir():
            raise TerraformError(
                f"Working directory not found: {stage.working_directory}",
                stage=stage.name,
            )
        return TerraformManager(
            stage.working_directory,
            logger=self.logger,
            stage=stage.name,
            timeout=self.timeout,
        )

    def _init(self, manager: TerraformManager, stage: Stage) -> None:
        backend = (
            stage.input_path(stage.backend_config_file)
            if stage.backend_config_file
            else None
        )
        manager.init(backend_config=backend)

    def _var_file(self, stage: Stage) -> Optional[Path]:
        return stage.input_path(stage.var_file) if stage.var_file else None

    def has_changes(self, stage: Stage, request: ProvisionRequest) -> bool:
        """Run a plan; True if applying would change anything."""
        manager = self._manager(stage)
        self._init(manager, stage)
        return manager.plan(var_file=self._var_file(stage))

    def apply(self, stage: Stage, request: ProvisionRequest) -> StageState:
        """init -> plan -out -> apply -> output -json."""
        manager = self._manager(stage)
        self._init(manager, stage)
        manager.plan(var_file=self._var_file(stage), out=TERRAFORM_PLAN_FILE)
        manager.apply(TERRAFORM_PLAN_FILE)

        return StageState(
            stage=stage.name,
            inputs=request.fingerprint(),
            outputs=manager.get_outputs().values(),
            resources=manager.state_list(),
        )

    def destroy(self, stage: Stage, request: ProvisionRequest) -> None:
        manager = self._manager(stage)
        self._init(manager, stage)
        manager.destroy(var_file=self._var_file(stage))
