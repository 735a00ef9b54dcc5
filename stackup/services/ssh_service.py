"""SSH service: key material and host reachability."""

import os
import socket
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from stackup.constants import (
    DEFAULT_PROJECT_NAME,
    SSH_CONNECTION_TIMEOUT,
    SSH_KEY_BITS,
    SSH_KEY_TYPE,
    SSH_PORT,
)
from stackup.exceptions import HandoffTimeout, RunCancelled, SSHError
from stackup.models.ssh import SSHConfig
from stackup.utils import run_command


class SSHService:
    """Service for SSH operations."""

    def __init__(
        self, config: SSHConfig, logger=None, comment_prefix: str = DEFAULT_PROJECT_NAME
    ):
        """
        Initialize SSH service.

        Args:
            config: SSH configuration
            logger: Optional DeployLogger
            comment_prefix: Key comment prefix (date is appended)
        """
        self.config = config
        self.logger = logger
        self.comment_prefix = comment_prefix

    def ensure_key_pair(self) -> bool:
        """
        Generate the key pair if absent. An existing private key is never
        regenerated; a missing public half is derived from it.

        Returns:
            True if a new key pair was generated

        Raises:
            SSHError: If ssh-keygen fails
        """
        private_key = self.config.key_path_expanded
        public_key = self.config.public_key_path_expanded

        if private_key.exists():
            if not public_key.exists():
                result = run_command(["ssh-keygen", "-y", "-f", str(private_key)])
                if result.is_failure:
                    raise SSHError(
                        f"Could not derive public key from {private_key}",
                        context=result.stderr.strip(),
                    )
                public_key.write_text(result.stdout.strip() + "\n")
            if self.logger:
                self.logger.log(f"SSH key already exists: {private_key}")
            return False

        private_key.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        comment = f"{self.comment_prefix}-{datetime.now().strftime('%Y%m%d')}"
        result = run_command(
            [
                "ssh-keygen",
                "-t", SSH_KEY_TYPE,
                "-b", str(SSH_KEY_BITS),
                "-f", str(private_key),
                "-N", "",
                "-C", comment,
            ]
        )
        if result.is_failure:
            raise SSHError(
                f"Failed to generate SSH key pair at {private_key}",
                context=result.stderr.strip(),
            )
        os.chmod(private_key, 0o600)

        if self.logger:
            self.logger.success(f"SSH key pair generated: {private_key}")
        return True

    @staticmethod
    def is_reachable(
        host: str, port: int = SSH_PORT, timeout: float = SSH_CONNECTION_TIMEOUT
    ) -> bool:
        """True if a TCP connection to host:port succeeds."""
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    def wait_until_reachable(
        self,
        host: str,
        timeout: float,
        interval: float,
        cancel_event: Optional[threading.Event] = None,
        port: int = SSH_PORT,
        probe: Optional[Callable[[str, int], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> int:
        """
        Poll host:port until it accepts connections.

        Args:
            host: Host to probe
            timeout: Give up after this many seconds
            interval: Seconds between probes
            cancel_event: Set by the operator to abort the wait
            port: TCP port
            probe: Reachability check (defaults to is_reachable)
            clock: Monotonic clock

        Returns:
            Number of attempts it took

        Raises:
            HandoffTimeout: If the host stays unreachable
            RunCancelled: If cancel_event is set
        """
        probe = probe or (lambda h, p: self.is_reachable(h, p))
        cancel_event = cancel_event or threading.Event()
        deadline = clock() + timeout
        attempt = 0

        while True:
            if cancel_event.is_set():
                raise RunCancelled(f"Stopped waiting for {host}:{port}")

            attempt += 1
            if probe(host, port):
                if self.logger:
                    self.logger.log(f"{host}:{port} reachable after {attempt} attempt(s)")
                return attempt

            remaining = deadline - clock()
            if remaining <= 0:
                raise HandoffTimeout(
                    f"{host}:{port} not reachable after {timeout:g}s",
                    context=f"{attempt} attempt(s)",
                )
            if self.logger:
                self.logger.log(f"Waiting for {host}:{port} (attempt {attempt})", "DEBUG")
            if cancel_event.wait(min(interval, remaining)):
                raise RunCancelled(f"Stopped waiting for {host}:{port}")
