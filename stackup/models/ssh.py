"""
SSH Configuration Models

Dataclass models for SSH operations.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class SSHConfig:
    """SSH key pair and login user for the provisioned hosts."""

    key_path: str
    user: str

    @property
    def key_path_expanded(self) -> Path:
        """Get expanded key path (resolves ~)."""
        return Path(self.key_path).expanduser()

    @property
    def public_key_path_expanded(self) -> Path:
        """Public key lives next to the private key with a .pub suffix."""
        private = self.key_path_expanded
        return private.with_name(private.name + ".pub")

    @property
    def key_exists(self) -> bool:
        """Check if private key file exists."""
        return self.key_path_expanded.exists()

    @property
    def public_key_exists(self) -> bool:
        """Check if public key file exists."""
        return self.public_key_path_expanded.exists()

    def read_public_key(self) -> str:
        return self.public_key_path_expanded.read_text().strip()

    def __repr__(self) -> str:
        return f"SSHConfig(user={self.user}, key={self.key_path})"


@dataclass
class SSHConnection:
    """SSH connection details for a specific host."""

    host: str
    config: SSHConfig
    port: int = 22

    @property
    def connection_string(self) -> str:
        """Get SSH connection string (user@host)."""
        return f"{self.config.user}@{self.host}"

    @property
    def ssh_command(self) -> str:
        """Human-readable command for the connection summary."""
        return f"ssh -i {self.config.key_path_expanded} {self.connection_string}"

    def __repr__(self) -> str:
        return f"SSHConnection(host={self.host}, user={self.config.user})"
