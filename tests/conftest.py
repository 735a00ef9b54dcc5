"""Shared fixtures: a temporary workspace, a SQLite state store and fake collaborators."""

from typing import Dict, List

import pytest

from stackup.core.config_loader import HandoffConfig, RetryConfig, WorkflowConfig
from stackup.core.materializer import ConfigMaterializer
from stackup.core.orchestrator import Orchestrator
from stackup.exceptions import PrereqMissing
from stackup.logger import DeployLogger
from stackup.models.ssh import SSHConfig
from stackup.models.stage import StageState
from stackup.services.state_service import StateStoreClient

STAGE_OUTPUTS = {
    "state-backend": {
        "s3_bucket_name": "X",
        "dynamodb_table_name": "Y",
    },
    "network-compute": {
        "jenkins_master_public_ip": "54.1.2.3",
        "jenkins_master_private_ip": "10.0.1.10",
        "jenkins_worker_private_ip": "10.0.2.20",
    },
}


class FakeEngine:
    """Records calls instead of running Terraform."""

    def __init__(self, outputs=None):
        self.outputs = outputs if outputs is not None else {
            name: dict(values) for name, values in STAGE_OUTPUTS.items()
        }
        self.applied: List[str] = []
        self.planned: List[str] = []
        self.destroyed: List[str] = []
        self.requests: Dict[str, object] = {}
        self.destroy_inputs: Dict[str, Dict[str, str]] = {}
        self.errors: Dict[str, list] = {}
        self.changes = False

    def _maybe_fail(self, stage_name):
        pending = self.errors.get(stage_name)
        if pending:
            raise pending.pop(0)

    def has_changes(self, stage, request):
        self.planned.append(stage.name)
        return self.changes

    def apply(self, stage, request):
        self.applied.append(stage.name)
        self.requests[stage.name] = request
        self._maybe_fail(stage.name)
        return StageState(
            stage=stage.name,
            inputs=request.fingerprint(),
            outputs=dict(self.outputs.get(stage.name, {})),
            resources=sorted(stage.declared_resources),
        )

    def destroy(self, stage, request):
        self.destroyed.append(stage.name)
        self.destroy_inputs[stage.name] = {
            f.name: stage.input_path(f.name).read_text()
            for f in stage.input_files
            if stage.input_path(f.name).exists()
        }
        self._maybe_fail(stage.name)


class FakeHandoff:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    def run(self, request, cancel_event=None):
        self.requests.append(request)
        if self.error:
            raise self.error


class FakePreflight:
    def __init__(self, missing=None):
        self.missing = missing or []
        self.checked = []

    def check_tools(self, tools):
        self.checked.append(sorted(tools))
        if self.missing:
            raise PrereqMissing(self.missing)

    def check_aws_credentials(self):
        return "123456789012"


@pytest.fixture
def workspace(tmp_path):
    """Workspace root with stage directories and an existing SSH key pair."""
    root = tmp_path / "workspace"
    for name in ("s3-backend", "infrastructure", "ansible"):
        (root / name).mkdir(parents=True)

    keys = tmp_path / "keys"
    keys.mkdir()
    (keys / "jenkins-key").write_text("PRIVATE KEY\n")
    (keys / "jenkins-key.pub").write_text("ssh-rsa AAAATEST stackup-test\n")
    return root


@pytest.fixture
def config(workspace, tmp_path):
    return WorkflowConfig(
        root=workspace,
        ssh=SSHConfig(key_path=str(tmp_path / "keys" / "jenkins-key"), user="ec2-user"),
        retry=RetryConfig(
            apply_attempts=3, lock_attempts=3, backoff_base=0.5, backoff_max=2.0
        ),
        handoff=HandoffConfig(timeout=1, poll_interval=1),
    )


@pytest.fixture
def store(config):
    return StateStoreClient(config.state_db_url, owner="test-run")


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def handoff():
    return FakeHandoff()


@pytest.fixture
def preflight():
    return FakePreflight()


@pytest.fixture
def materializer():
    return ConfigMaterializer()


@pytest.fixture
def logger(tmp_path):
    log = DeployLogger("test", "deploy", verbose=False, logs_root=tmp_path / "logs")
    yield log
    log.close()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_orchestrator(config, store, engine, materializer, handoff, preflight, logger, sleeps):
    """Build an orchestrator over the fixtures; keyword arguments override them."""

    def factory(**overrides):
        kwargs = dict(
            config=config,
            store=store,
            engine=engine,
            materializer=materializer,
            handoff=handoff,
            preflight=preflight,
            logger=logger,
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return Orchestrator(**kwargs)

    return factory
