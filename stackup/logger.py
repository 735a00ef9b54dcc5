"""
Logging system for stackup
Provides real-time logging to files with clean console output
"""

import os
import re
import subprocess
import threading
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional, Sequence, TextIO
from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.text import Text
from rich.padding import Padding

from stackup.constants import LOG_DATE_FORMAT
from stackup.models.results import ExecutionResult

console = Console()

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class DeployLogger:
    """
    Manages logging for provisioning operations
    - Writes all output to log files in real-time
    - Shows clean progress UI in console (unless verbose)
    - Captures errors with context
    """

    def __init__(
        self,
        scope: str,
        operation: str,
        verbose: bool = False,
        logs_root: Optional[Path] = None,
    ):
        """
        Initialize logger

        Args:
            scope: Log scope (workspace name or stage name)
            operation: Operation name (e.g., 'deploy', 'cleanup')
            verbose: If True, show all output in console
            logs_root: Base directory for logs (defaults to <workspace>/logs)
        """
        self.scope = scope
        self.operation = operation
        self.verbose = verbose
        self.log_file: Optional[TextIO] = None
        self.log_path: Optional[Path] = None
        self.current_step = ""
        self.has_errors = False

        if logs_root is None:
            from stackup.utils import get_project_root

            logs_root = get_project_root() / "logs"

        # Structure: logs/{scope}/{date}/{time}_{operation}.log
        now = datetime.now()
        logs_dir = Path(logs_root) / scope / now.strftime(LOG_DATE_FORMAT)
        logs_dir.mkdir(parents=True, exist_ok=True)

        self.log_path = logs_dir / f"{now.strftime('%H-%M-%S')}_{operation}.log"

        # Line buffered for real-time tailing
        self.log_file = open(self.log_path, "w", buffering=1)

        self._write_log_header()

    def _write_log_header(self):
        """Write log file header"""
        header = f"""
{"=" * 80}
stackup Provisioning Log
{"=" * 80}
Scope: {self.scope}
Operation: {self.operation}
Started: {datetime.now().isoformat()}
{"=" * 80}

"""
        self.log_file.write(header)
        self.log_file.flush()

    def log(self, message: str, level: str = "INFO"):
        """
        Log a message to file and optionally console

        Args:
            message: Message to log
            level: Log level (INFO, WARNING, ERROR, DEBUG)
        """
        timestamp = datetime.now().strftime("%H:%M:%S")
        log_line = f"[{timestamp}] [{level}] {message}\n"

        if self.log_file:
            self.log_file.write(log_line)
            self.log_file.flush()

        if self.verbose:
            if level == "ERROR":
                console.print(f"[red]{message}[/red]")
            elif level == "WARNING":
                console.print(f"[yellow]{message}[/yellow]")
            elif level == "DEBUG":
                console.print(f"[dim]{message}[/dim]")
            else:
                console.print(message)

    def log_command(self, command: str):
        """Log a command being executed"""
        self.log(f"Executing: {command}", "DEBUG")

    def log_output(self, output: str, stream: str = "stdout"):
        """
        Log command output

        Always written to the log file, shown in console only if verbose.

        Args:
            output: Command output (single line or multiline)
            stream: Stream name (stdout, stderr)
        """
        if not output:
            return

        clean_output = ANSI_ESCAPE.sub("", output)

        if self.log_file:
            try:
                for line in clean_output.splitlines():
                    self.log_file.write(f"  [{stream}] {line}\n")
                self.log_file.flush()
            except OSError:
                # Console responsiveness wins over a lost log line
                pass

        if self.verbose:
            console.print(output, markup=False)

    def log_error(self, error: str, context: Optional[str] = None):
        """
        Log an error with context

        Args:
            error: Error message
            context: Additional context (e.g., command that failed)
        """
        self.has_errors = True

        error_block = f"""
{"!" * 80}
ERROR OCCURRED
{"!" * 80}
{error}
"""
        if context:
            error_block += f"\nContext: {context}\n"

        error_block += f"{'!' * 80}\n\n"

        if self.log_file:
            self.log_file.write(error_block)
            self.log_file.flush()

        if not self.verbose:
            console.print()

        console.print(f"[bold red]✗ {error}[/bold red]")
        if context:
            console.print(f"  [color(208)]{context}[/color(208)]")

    def step(self, step_name: str):
        """
        Start a new step

        Args:
            step_name: Name of the step
        """
        if self.current_step and not self.verbose:
            console.print()

        self.current_step = step_name
        self.log(f"Step: {step_name}", "INFO")

        if not self.verbose:
            console.print(f"[color(214)]▶[/color(214)] [white]{step_name}[/white]")

    def success(self, message: str):
        """Log a success message"""
        self.log(message, "INFO")

        if not self.verbose:
            console.print(f"  [dim]✓ {message}[/dim]")

    def warning(self, message: str):
        """Log a warning message"""
        self.log(message, "WARNING")

        if not self.verbose:
            console.print(f"  [yellow]⚠[/yellow] [dim]{message}[/dim]")

    def close(self):
        """Close log file"""
        if self.log_file:
            footer = f"""
{"=" * 80}
Completed: {datetime.now().isoformat()}
Status: {"FAILED" if self.has_errors else "SUCCESS"}
{"=" * 80}
"""
            self.log_file.write(footer)
            self.log_file.close()
            self.log_file = None

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, _exc_tb):
        """Context manager exit"""
        if exc_type is not None and exc_type not in (SystemExit, KeyboardInterrupt):
            self.log_error(
                str(exc_val) if exc_val else "Operation failed",
                context=f"{exc_type.__name__}",
            )
        self.close()
        return False


def run_with_progress(
    logger: DeployLogger,
    cmd: Sequence[str],
    description: str,
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    env: Optional[Dict[str, str]] = None,
) -> ExecutionResult:
    """
    Run a command with progress indicator

    Args:
        logger: DeployLogger instance
        cmd: Command and arguments
        description: Description for progress indicator
        cwd: Working directory
        timeout: Timeout in seconds
        env: Extra environment variables

    Returns:
        ExecutionResult
    """
    command = " ".join(cmd)
    logger.log_command(command)

    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    if logger.verbose:
        # Stream output to console and log as it arrives
        process = subprocess.Popen(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
            env=full_env,
        )

        stdout_lines = []
        stderr_chunks = []
        stderr_reader = threading.Thread(
            target=lambda: stderr_chunks.extend(process.stderr), daemon=True
        )
        stderr_reader.start()

        timed_out = threading.Event()
        watchdog = None
        if timeout:

            def expire():
                timed_out.set()
                process.kill()

            watchdog = threading.Timer(timeout, expire)
            watchdog.start()

        try:
            for line in process.stdout:
                line_stripped = line.rstrip()
                stdout_lines.append(line_stripped)
                logger.log_output(line_stripped, "stdout")
            process.wait()
        finally:
            if watchdog:
                watchdog.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()
            stderr_reader.join()

        stderr_content = "".join(stderr_chunks)
        if timed_out.is_set():
            logger.log_output(stderr_content, "stderr")
            raise subprocess.TimeoutExpired(
                list(cmd), timeout, output="\n".join(stdout_lines), stderr=stderr_content
            )
        if stderr_content:
            logger.log_output(stderr_content, "stderr")

        return ExecutionResult(
            returncode=process.returncode,
            stdout="\n".join(stdout_lines),
            stderr=stderr_content,
            command=command,
        )

    spinner = Spinner("dots", text=f"[cyan]{description}...[/cyan]")
    padded_spinner = Padding(spinner, (0, 0, 0, 2))

    with Live(padded_spinner, console=console, refresh_per_second=10) as live:
        result = subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=full_env,
        )

        if result.stdout:
            logger.log_output(result.stdout, "stdout")
        if result.stderr:
            logger.log_output(result.stderr, "stderr")

        if result.returncode == 0:
            checkmark = Text("  ✓ ", style="dim")
            checkmark.append(description, style="dim")
            live.update(checkmark)
        else:
            x_mark = Text("  ✗ ", style="red")
            x_mark.append(description, style="dim")
            live.update(x_mark)

    return ExecutionResult(
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        command=command,
    )
