"""Pre-flight checks: required tools and cloud credentials."""

from typing import Callable, Dict, Sequence

from stackup.exceptions import CredentialInvalid, PrereqMissing
from stackup.models.results import ExecutionResult
from stackup.utils import find_missing_tools, run_command


class PreflightService:
    """Verifies the local environment before any stage runs."""

    def __init__(
        self,
        logger=None,
        runner: Callable[[Sequence[str]], ExecutionResult] = run_command,
        tool_finder: Callable[[Dict[str, str]], list] = find_missing_tools,
    ):
        self.logger = logger
        self.runner = runner
        self.tool_finder = tool_finder

    def check_tools(self, tools: Dict[str, str]) -> None:
        """
        Raises:
            PrereqMissing: If any tool is not on PATH
        """
        missing = self.tool_finder(tools)
        if missing:
            raise PrereqMissing(missing)
        if self.logger:
            self.logger.success("All prerequisites are installed")

    def check_aws_credentials(self) -> str:
        """
        Ask STS who we are.

        Returns:
            AWS account id

        Raises:
            CredentialInvalid: If the call fails
        """
        try:
            result = self.runner(
                [
                    "aws", "sts", "get-caller-identity",
                    "--output", "text", "--query", "Account",
                ]
            )
        except OSError as e:
            raise CredentialInvalid("Could not run aws-cli", context=str(e))

        account = result.stdout.strip()
        if result.is_failure or not account:
            raise CredentialInvalid(
                "AWS credentials not configured properly",
                context=(
                    result.stderr.strip()
                    or "Configure credentials with 'aws configure' or environment variables"
                ),
            )

        if self.logger:
            self.logger.success(f"AWS credentials configured (Account: {account})")
        return account
