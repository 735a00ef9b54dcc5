"""stackup.yml, .env and STACKUP_* environment layering."""

import pytest

from stackup.core.config_loader import ConfigLoader
from stackup.exceptions import ConfigurationError


def test_defaults_without_any_file(tmp_path):
    config = ConfigLoader(tmp_path, environ={}).load()

    assert config.project_name == "jenkins-step3"
    assert config.aws_region == "us-east-1"
    assert config.network.vpc_cidr == "10.0.0.0/16"
    assert config.instances.spot_price == "0.01"
    assert config.ssh.user == "ec2-user"
    assert config.retry.apply_attempts == 3
    assert config.lock_lease_seconds == 1800
    assert config.state_backend_path == tmp_path / "s3-backend"
    assert config.state_db_url == f"sqlite:///{tmp_path / '.stackup' / 'state.db'}"


def test_yaml_values_override_defaults(tmp_path):
    (tmp_path / "stackup.yml").write_text(
        """
project:
  name: ci
  environment: staging
aws:
  region: eu-central-1
instances:
  master_type: t3.medium
paths:
  network_compute: infra
handoff:
  timeout: 600
retry:
"""
    )

    config = ConfigLoader(tmp_path, environ={}).load()

    assert config.project_name == "ci"
    assert config.environment == "staging"
    assert config.aws_region == "eu-central-1"
    assert config.instances.master_type == "t3.medium"
    assert config.instances.worker_type == "t2.micro"
    assert config.network_compute_path == tmp_path / "infra"
    assert config.handoff.timeout == 600
    assert config.retry.lock_attempts == 5


def test_dotenv_then_process_environment(tmp_path):
    (tmp_path / "stackup.yml").write_text("aws:\n  region: eu-central-1\n")
    (tmp_path / ".env").write_text(
        "STACKUP_AWS_REGION=eu-west-1\nSTACKUP_PROJECT_NAME=from-dotenv\n"
    )

    config = ConfigLoader(tmp_path, environ={"STACKUP_PROJECT_NAME": "from-env"}).load()

    assert config.aws_region == "eu-west-1"
    assert config.project_name == "from-env"


def test_environment_values_are_converted(tmp_path):
    config = ConfigLoader(
        tmp_path,
        environ={"STACKUP_LOCK_LEASE_SECONDS": "90", "STACKUP_DB_URL": "sqlite:///:memory:"},
    ).load()

    assert config.lock_lease_seconds == 90
    assert config.state_db_url == "sqlite:///:memory:"


def test_invalid_environment_value(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        ConfigLoader(tmp_path, environ={"STACKUP_HANDOFF_TIMEOUT": "soon"}).load()
    assert "STACKUP_HANDOFF_TIMEOUT" in exc_info.value.message


def test_malformed_yaml(tmp_path):
    (tmp_path / "stackup.yml").write_text("project: [unclosed\n")

    with pytest.raises(ConfigurationError):
        ConfigLoader(tmp_path, environ={}).load()


def test_unknown_key_is_rejected(tmp_path):
    (tmp_path / "stackup.yml").write_text("network:\n  vpc_size: 16\n")

    with pytest.raises(ConfigurationError):
        ConfigLoader(tmp_path, environ={}).load()


def test_top_level_must_be_a_mapping(tmp_path):
    (tmp_path / "stackup.yml").write_text("- deploy\n- cleanup\n")

    with pytest.raises(ConfigurationError):
        ConfigLoader(tmp_path, environ={}).load()
