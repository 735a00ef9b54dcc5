"""Configuration management for stackup workspaces"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values

from stackup import constants
from stackup.exceptions import ConfigurationError
from stackup.models.ssh import SSHConfig

CONFIG_FILENAME = "stackup.yml"

# Environment variable -> (section, key, converter)
ENV_OVERRIDES = {
    "STACKUP_PROJECT_NAME": ("project", "name", str),
    "STACKUP_ENVIRONMENT": ("project", "environment", str),
    "STACKUP_AWS_REGION": ("aws", "region", str),
    "STACKUP_SSH_KEY_PATH": ("ssh", "key_path", str),
    "STACKUP_DB_URL": ("state", "db_url", str),
    "STACKUP_LOCK_LEASE_SECONDS": ("state", "lock_lease_seconds", int),
    "STACKUP_HANDOFF_TIMEOUT": ("handoff", "timeout", int),
}


@dataclass
class NetworkConfig:
    """VPC layout for the network-compute stage"""

    vpc_cidr: str = constants.DEFAULT_VPC_CIDR
    public_subnet_cidr: str = constants.DEFAULT_PUBLIC_SUBNET_CIDR
    private_subnet_cidr: str = constants.DEFAULT_PRIVATE_SUBNET_CIDR


@dataclass
class InstanceConfig:
    """Control-plane and spot worker sizing"""

    master_type: str = constants.DEFAULT_MASTER_INSTANCE_TYPE
    worker_type: str = constants.DEFAULT_WORKER_INSTANCE_TYPE
    spot_price: str = constants.DEFAULT_SPOT_PRICE


@dataclass
class RetryConfig:
    """Bounded backoff for transient provider errors and lock contention"""

    apply_attempts: int = constants.APPLY_MAX_ATTEMPTS
    lock_attempts: int = constants.LOCK_MAX_ATTEMPTS
    backoff_base: float = constants.BACKOFF_BASE_SECONDS
    backoff_max: float = constants.BACKOFF_MAX_SECONDS


@dataclass
class HandoffConfig:
    """Reachability polling before configuration management runs"""

    timeout: int = constants.HANDOFF_TIMEOUT
    poll_interval: int = constants.HANDOFF_POLL_INTERVAL
    playbook: str = constants.DEFAULT_PLAYBOOK


@dataclass
class WorkflowConfig:
    """Fully resolved configuration for one workspace"""

    root: Path
    project_name: str = constants.DEFAULT_PROJECT_NAME
    environment: str = constants.DEFAULT_ENVIRONMENT
    aws_region: str = constants.DEFAULT_AWS_REGION
    state_key: str = constants.DEFAULT_STATE_KEY
    network: NetworkConfig = field(default_factory=NetworkConfig)
    instances: InstanceConfig = field(default_factory=InstanceConfig)
    ssh: SSHConfig = field(
        default_factory=lambda: SSHConfig(
            key_path=constants.DEFAULT_SSH_KEY_PATH, user=constants.DEFAULT_SSH_USER
        )
    )
    retry: RetryConfig = field(default_factory=RetryConfig)
    handoff: HandoffConfig = field(default_factory=HandoffConfig)
    state_backend_dir: str = constants.DEFAULT_STATE_BACKEND_DIR
    network_compute_dir: str = constants.DEFAULT_NETWORK_COMPUTE_DIR
    ansible_dir: str = constants.DEFAULT_ANSIBLE_DIR
    db_url: Optional[str] = None
    lock_lease_seconds: int = constants.LOCK_LEASE_SECONDS

    @property
    def state_backend_path(self) -> Path:
        return self.root / self.state_backend_dir

    @property
    def network_compute_path(self) -> Path:
        return self.root / self.network_compute_dir

    @property
    def ansible_path(self) -> Path:
        return self.root / self.ansible_dir

    @property
    def state_db_url(self) -> str:
        """SQLAlchemy URL of the state store (SQLite in the workspace by default)."""
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.root / constants.STATE_DIR / constants.STATE_DB_FILE}"


class ConfigLoader:
    """Loads stackup.yml, .env and STACKUP_* overrides over built-in defaults"""

    def __init__(self, root: Path, environ: Optional[Dict[str, str]] = None):
        self.root = Path(root)
        self.config_path = self.root / CONFIG_FILENAME
        self.environ = os.environ if environ is None else environ

    def load(self) -> WorkflowConfig:
        """
        Build the workspace configuration.

        Returns:
            WorkflowConfig

        Raises:
            ConfigurationError: If stackup.yml is malformed
        """
        raw = self._read_file()
        self._apply_env_overrides(raw)

        project = raw.get("project", {})
        aws = raw.get("aws", {})
        ssh = raw.get("ssh", {})
        paths = raw.get("paths", {})
        state = raw.get("state", {})

        try:
            return WorkflowConfig(
                root=self.root,
                project_name=project.get("name", constants.DEFAULT_PROJECT_NAME),
                environment=project.get("environment", constants.DEFAULT_ENVIRONMENT),
                aws_region=aws.get("region", constants.DEFAULT_AWS_REGION),
                state_key=aws.get("state_key", constants.DEFAULT_STATE_KEY),
                network=NetworkConfig(**raw.get("network", {})),
                instances=InstanceConfig(**raw.get("instances", {})),
                ssh=SSHConfig(
                    key_path=ssh.get("key_path", constants.DEFAULT_SSH_KEY_PATH),
                    user=ssh.get("user", constants.DEFAULT_SSH_USER),
                ),
                retry=RetryConfig(**raw.get("retry", {})),
                handoff=HandoffConfig(**raw.get("handoff", {})),
                state_backend_dir=paths.get(
                    "state_backend", constants.DEFAULT_STATE_BACKEND_DIR
                ),
                network_compute_dir=paths.get(
                    "network_compute", constants.DEFAULT_NETWORK_COMPUTE_DIR
                ),
                ansible_dir=paths.get("ansible", constants.DEFAULT_ANSIBLE_DIR),
                db_url=state.get("db_url"),
                lock_lease_seconds=state.get(
                    "lock_lease_seconds", constants.LOCK_LEASE_SECONDS
                ),
            )
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid configuration in {CONFIG_FILENAME}", context=str(e)
            )

    def _read_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Could not parse {CONFIG_FILENAME}", context=str(e)
            )

        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"{CONFIG_FILENAME} must contain a mapping at the top level"
            )
        # Empty sections ("aws:") parse as None
        return {key: {} if value is None else value for key, value in raw.items()}

    def _apply_env_overrides(self, raw: Dict[str, Any]) -> None:
        """Process environment wins over .env, which wins over stackup.yml."""
        env: Dict[str, Any] = {}
        dotenv_path = self.root / ".env"
        if dotenv_path.exists():
            env.update(
                {k: v for k, v in dotenv_values(dotenv_path).items() if v is not None}
            )
        env.update(self.environ)

        for var, (section, key, convert) in ENV_OVERRIDES.items():
            value = env.get(var)
            if value in (None, ""):
                continue
            try:
                raw.setdefault(section, {})[key] = convert(value)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {var}: {value!r}",
                    context=f"Expected {convert.__name__}",
                )
