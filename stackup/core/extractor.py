"""Reads named outputs out of a recorded stage state"""

from typing import Any, Dict, Iterable

from stackup.exceptions import MissingOutput
from stackup.models.stage import StageState


def extract(state: StageState, output_name: str) -> Any:
    """
    Get one output value from a stage state.

    Raises:
        MissingOutput: If the state does not record the output
    """
    if output_name not in state.outputs:
        raise MissingOutput(state.stage, output_name, sorted(state.outputs))
    return state.outputs[output_name]


def extract_all(state: StageState, output_names: Iterable[str]) -> Dict[str, Any]:
    """Extract every named output, failing on the first one missing."""
    return {name: extract(state, name) for name in output_names}
