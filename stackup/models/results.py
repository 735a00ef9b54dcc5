"""
Result Models

Dataclass models for operation results and command outputs.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum


class ResultStatus(Enum):
    """Status of an operation result."""

    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"
    PARTIAL = "partial"


class StageOutcome(Enum):
    """What happened to a single stage during a run."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    DESTROYED = "destroyed"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    """Result of a command execution (subprocess, SSH, etc.)."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: str = ""

    @property
    def is_success(self) -> bool:
        """Check if execution succeeded."""
        return self.returncode == 0

    @property
    def is_failure(self) -> bool:
        """Check if execution failed."""
        return self.returncode != 0

    @property
    def output(self) -> str:
        """Get combined output (stdout + stderr)."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def __repr__(self) -> str:
        return f"ExecutionResult(returncode={self.returncode}, command='{self.command[:50]}...')"


@dataclass
class RunReport:
    """Summary of one orchestrator run (deploy or cleanup)."""

    operation: str
    status: ResultStatus = ResultStatus.SUCCESS
    stages: Dict[str, StageOutcome] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    failed_stage: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """A run with warnings still counts as a success."""
        return self.status in (ResultStatus.SUCCESS, ResultStatus.WARNING)

    def record(self, stage: str, outcome: StageOutcome) -> None:
        self.stages[stage] = outcome

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)
        if self.status == ResultStatus.SUCCESS:
            self.status = ResultStatus.WARNING

    def fail(self, stage: Optional[str]) -> None:
        self.status = ResultStatus.FAILURE
        self.failed_stage = stage
        if stage:
            self.stages[stage] = StageOutcome.FAILED

    def __repr__(self) -> str:
        return f"RunReport(operation={self.operation}, status={self.status.value}, stages={len(self.stages)})"
