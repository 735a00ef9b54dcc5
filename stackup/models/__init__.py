"""
stackup Domain Models

Clean dataclass-based models for type-safe data handling.
"""

from .results import (
    ExecutionResult,
    ResultStatus,
    RunReport,
    StageOutcome,
)
from .stage import (
    InputFile,
    OutputBinding,
    ProvisionRequest,
    Stage,
    StageState,
)
from .ssh import (
    SSHConfig,
    SSHConnection,
)

__all__ = [
    # Results
    "ExecutionResult",
    "ResultStatus",
    "RunReport",
    "StageOutcome",
    # Stages
    "InputFile",
    "OutputBinding",
    "ProvisionRequest",
    "Stage",
    "StageState",
    # SSH
    "SSHConfig",
    "SSHConnection",
]
