"""
Stage Models

Dataclass models describing provisioning stages, the bindings between them,
and the durable state each stage leaves behind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class InputFile:
    """A file rendered from a template as input for a consumer."""

    name: str
    template: str
    values: Dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class OutputBinding:
    """Projects one stage output into a placeholder of a consumer's input file."""

    source_stage: str
    output_name: str
    target_stage: str
    target_file: str
    target_key: str

    def __repr__(self) -> str:
        return (
            f"OutputBinding({self.source_stage}.{self.output_name} -> "
            f"{self.target_stage}:{self.target_file}:{self.target_key})"
        )


@dataclass
class Stage:
    """Static declaration of a provisioning stage."""

    name: str
    working_directory: Path
    input_variables: Dict[str, Any]
    declared_resources: FrozenSet[str]
    output_names: Tuple[str, ...]
    input_files: Tuple[InputFile, ...] = ()
    var_file: Optional[str] = None
    backend_config_file: Optional[str] = None

    def input_file(self, name: str) -> InputFile:
        for input_file in self.input_files:
            if input_file.name == name:
                return input_file
        raise KeyError(name)

    def input_path(self, name: str) -> Path:
        return self.working_directory / name

    def __repr__(self) -> str:
        return f"Stage(name={self.name}, dir={self.working_directory})"


@dataclass
class ProvisionRequest:
    """Resolved inputs for one stage apply."""

    stage: str
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    var_file: Optional[str] = None

    @property
    def variables(self) -> Dict[str, Any]:
        """Values of the stage's variable file."""
        if self.var_file is None:
            return {}
        return self.files.get(self.var_file, {})

    def fingerprint(self) -> Dict[str, Dict[str, Any]]:
        """Comparable snapshot recorded in StageState.inputs."""
        return {name: dict(values) for name, values in sorted(self.files.items())}


@dataclass
class StageState:
    """Durable record of what a stage last provisioned."""

    stage: str
    inputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    resources: List[str] = field(default_factory=list)
    version: int = 0
    applied_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"StageState(stage={self.stage}, version={self.version}, outputs={sorted(self.outputs)})"
