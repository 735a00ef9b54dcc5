"""
CLI Utilities

Core utility functions for stackup.
"""

import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

from stackup.models.results import ExecutionResult

T = TypeVar("T")


def get_project_root() -> Path:
    """
    Get the workspace root (directory holding the stage working directories).

    Returns:
        STACKUP_ROOT if set, otherwise the current working directory
    """
    root = os.environ.get("STACKUP_ROOT")
    if root:
        return Path(root).expanduser().resolve()
    return Path.cwd()


def find_missing_tools(tools: Dict[str, str]) -> List[str]:
    """
    Check which required executables are absent from PATH.

    Args:
        tools: Mapping of executable name -> display name

    Returns:
        Display names of missing tools, in declaration order
    """
    return [label for binary, label in tools.items() if shutil.which(binary) is None]


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    env: Optional[Dict[str, str]] = None,
) -> ExecutionResult:
    """
    Run a command and capture its output.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Timeout in seconds
        env: Extra environment variables

    Returns:
        ExecutionResult (never raises on non-zero exit)
    """
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    result = subprocess.run(
        list(cmd),
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=full_env,
        check=False,
    )
    return ExecutionResult(
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        command=" ".join(cmd),
    )


def backoff_delays(
    attempts: int, base: float, maximum: float
) -> Iterator[float]:
    """Yield the delay before each retry (attempts - 1 values, doubling)."""
    delay = base
    for _ in range(max(attempts - 1, 0)):
        yield min(delay, maximum)
        delay *= 2


def retry_with_backoff(
    operation: Callable[[], T],
    retry_on: tuple,
    attempts: int,
    base_delay: float,
    max_delay: float,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call operation, retrying retryable errors with exponential backoff.

    The last error is re-raised once attempts are exhausted.
    """
    delays = backoff_delays(attempts, base_delay, max_delay)
    attempt = 1
    while True:
        try:
            return operation()
        except retry_on as e:
            delay = next(delays, None)
            if delay is None:
                raise
            if on_retry:
                on_retry(attempt, e, delay)
            sleep(delay)
            attempt += 1
