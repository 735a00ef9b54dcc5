"""
Stage declarations

The fixed two-stage topology (state backend, then network + compute), the
configuration-management handoff that consumes it, and the output bindings
wiring them together. Declaration order is execution order.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from stackup.constants import (
    ANSIBLE_INVENTORY_FILE,
    ANSIBLE_PYTHON_INTERPRETER,
    CONFIG_MANAGEMENT,
    NETWORK_COMPUTE_STAGE,
    STATE_BACKEND_STAGE,
    TERRAFORM_BACKEND_FILE,
    TERRAFORM_VAR_FILE,
)
from stackup.core.config_loader import WorkflowConfig
from stackup.core.extractor import extract
from stackup.exceptions import StageOrderError, UnresolvedInput
from stackup.models.stage import (
    InputFile,
    OutputBinding,
    ProvisionRequest,
    Stage,
    StageState,
)

STATE_BACKEND_RESOURCES = frozenset(
    {
        "aws_s3_bucket.terraform_state",
        "aws_s3_bucket_versioning.terraform_state",
        "aws_s3_bucket_server_side_encryption_configuration.terraform_state",
        "aws_s3_bucket_public_access_block.terraform_state",
        "aws_dynamodb_table.terraform_locks",
    }
)

NETWORK_COMPUTE_RESOURCES = frozenset(
    {
        "aws_vpc.main",
        "aws_internet_gateway.main",
        "aws_subnet.public",
        "aws_subnet.private",
        "aws_eip.nat",
        "aws_nat_gateway.main",
        "aws_route_table.public",
        "aws_route_table.private",
        "aws_route_table_association.public",
        "aws_route_table_association.private",
        "aws_security_group.jenkins_master",
        "aws_security_group.jenkins_worker",
        "aws_key_pair.jenkins",
        "aws_instance.jenkins_master",
        "aws_spot_instance_request.jenkins_worker",
    }
)


class StageDescriptor:
    """A stage plus the engine that provisions it."""

    def __init__(self, stage: Stage, engine, bindings: Sequence[OutputBinding] = ()):
        self.stage = stage
        self.engine = engine
        self.bindings = [b for b in bindings if b.target_stage == stage.name]

    @property
    def name(self) -> str:
        return self.stage.name

    def required_inputs(self) -> List[str]:
        """Every input key the stage's files need, static or bound."""
        keys = set()
        for input_file in self.stage.input_files:
            keys.update(input_file.values)
        keys.update(binding.target_key for binding in self.bindings)
        return sorted(keys)

    def expected_outputs(self) -> List[str]:
        return list(self.stage.output_names)

    def apply(self, request: ProvisionRequest) -> StageState:
        return self.engine.apply(self.stage, request)

    def has_changes(self, request: ProvisionRequest) -> bool:
        return self.engine.has_changes(self.stage, request)

    def destroy(self, request: ProvisionRequest) -> None:
        self.engine.destroy(self.stage, request)

    def __repr__(self) -> str:
        return f"StageDescriptor(name={self.name})"


def build_stages(config: WorkflowConfig, public_key: str) -> List[Stage]:
    """Declare the stages in execution order."""
    backend_vars = {
        "aws_region": config.aws_region,
        "project_name": config.project_name,
        "environment": config.environment,
    }

    network_vars = {
        "aws_region": config.aws_region,
        "project_name": config.project_name,
        "environment": config.environment,
        "vpc_cidr": config.network.vpc_cidr,
        "public_subnet_cidr": config.network.public_subnet_cidr,
        "private_subnet_cidr": config.network.private_subnet_cidr,
        "jenkins_master_instance_type": config.instances.master_type,
        "jenkins_worker_instance_type": config.instances.worker_type,
        "spot_price": config.instances.spot_price,
        "ssh_public_key": public_key,
    }

    return [
        Stage(
            name=STATE_BACKEND_STAGE,
            working_directory=config.state_backend_path,
            input_variables=backend_vars,
            declared_resources=STATE_BACKEND_RESOURCES,
            output_names=("s3_bucket_name", "dynamodb_table_name"),
            input_files=(
                InputFile(TERRAFORM_VAR_FILE, "state_backend.tfvars.j2", backend_vars),
            ),
            var_file=TERRAFORM_VAR_FILE,
        ),
        Stage(
            name=NETWORK_COMPUTE_STAGE,
            working_directory=config.network_compute_path,
            input_variables=network_vars,
            declared_resources=NETWORK_COMPUTE_RESOURCES,
            output_names=(
                "jenkins_master_public_ip",
                "jenkins_master_private_ip",
                "jenkins_worker_private_ip",
            ),
            input_files=(
                InputFile(TERRAFORM_VAR_FILE, "network_compute.tfvars.j2", network_vars),
                InputFile(
                    TERRAFORM_BACKEND_FILE,
                    "backend.hcl.j2",
                    {
                        "key": config.state_key,
                        "region": config.aws_region,
                        "encrypt": "true",
                    },
                ),
            ),
            var_file=TERRAFORM_VAR_FILE,
            backend_config_file=TERRAFORM_BACKEND_FILE,
        ),
    ]


def build_handoff(config: WorkflowConfig) -> Stage:
    """The configuration-management consumer; never applied, only fed."""
    return Stage(
        name=CONFIG_MANAGEMENT,
        working_directory=config.ansible_path,
        input_variables={},
        declared_resources=frozenset(),
        output_names=(),
        input_files=(
            InputFile(
                ANSIBLE_INVENTORY_FILE,
                "inventory.ini.j2",
                {
                    "ssh_user": config.ssh.user,
                    "ssh_key_path": str(config.ssh.key_path_expanded),
                    "python_interpreter": ANSIBLE_PYTHON_INTERPRETER,
                },
            ),
        ),
    )


def build_bindings() -> List[OutputBinding]:
    """How each stage's outputs reach its consumers."""
    return [
        OutputBinding(
            STATE_BACKEND_STAGE, "s3_bucket_name",
            NETWORK_COMPUTE_STAGE, TERRAFORM_BACKEND_FILE, "bucket",
        ),
        OutputBinding(
            STATE_BACKEND_STAGE, "dynamodb_table_name",
            NETWORK_COMPUTE_STAGE, TERRAFORM_BACKEND_FILE, "dynamodb_table",
        ),
        OutputBinding(
            NETWORK_COMPUTE_STAGE, "jenkins_master_public_ip",
            CONFIG_MANAGEMENT, ANSIBLE_INVENTORY_FILE, "master_public_ip",
        ),
        OutputBinding(
            NETWORK_COMPUTE_STAGE, "jenkins_master_private_ip",
            CONFIG_MANAGEMENT, ANSIBLE_INVENTORY_FILE, "master_private_ip",
        ),
        OutputBinding(
            NETWORK_COMPUTE_STAGE, "jenkins_worker_private_ip",
            CONFIG_MANAGEMENT, ANSIBLE_INVENTORY_FILE, "worker_private_ip",
        ),
    ]


def validate_order(
    stages: Sequence[Stage],
    bindings: Iterable[OutputBinding],
    handoff: Optional[Stage] = None,
) -> None:
    """
    Check the total order before anything is applied.

    Every binding must read a declared output of a strictly earlier stage and
    write into a file its consumer actually renders.

    Raises:
        StageOrderError: On duplicate stages or bindings that break the order
    """
    consumers = list(stages) + ([handoff] if handoff else [])
    position: Dict[str, int] = {}
    for index, consumer in enumerate(consumers):
        if consumer.name in position:
            raise StageOrderError(f"Stage '{consumer.name}' is declared twice")
        position[consumer.name] = index
    by_name = {consumer.name: consumer for consumer in consumers}
    stage_names = {stage.name for stage in stages}

    for binding in bindings:
        if binding.source_stage not in stage_names:
            raise StageOrderError(
                f"{binding!r} reads from unknown stage '{binding.source_stage}'"
            )
        if binding.target_stage not in position:
            raise StageOrderError(
                f"{binding!r} writes to unknown consumer '{binding.target_stage}'"
            )
        if position[binding.source_stage] >= position[binding.target_stage]:
            raise StageOrderError(
                f"{binding!r} reads from a stage that does not run earlier",
                stage=binding.target_stage,
            )
        source = by_name[binding.source_stage]
        if binding.output_name not in source.output_names:
            raise StageOrderError(
                f"{binding!r} reads undeclared output '{binding.output_name}'",
                context=f"Declared outputs: {', '.join(source.output_names)}",
                stage=binding.source_stage,
            )
        target_files = [f.name for f in by_name[binding.target_stage].input_files]
        if binding.target_file not in target_files:
            raise StageOrderError(
                f"{binding!r} targets unknown file '{binding.target_file}'",
                stage=binding.target_stage,
            )


def resolve_request(
    consumer: Stage,
    bindings: Iterable[OutputBinding],
    completed: Dict[str, StageState],
) -> ProvisionRequest:
    """
    Resolve every input file of a consumer from static values and the
    recorded outputs of completed stages.

    Raises:
        UnresolvedInput: If a bound source stage has not completed
        MissingOutput: If a completed stage lacks the bound output
    """
    files: Dict[str, Dict[str, Any]] = {
        input_file.name: dict(input_file.values) for input_file in consumer.input_files
    }

    for binding in bindings:
        if binding.target_stage != consumer.name:
            continue
        state = completed.get(binding.source_stage)
        if state is None:
            raise UnresolvedInput(
                f"Input '{binding.target_key}' of '{consumer.name}' needs output "
                f"'{binding.output_name}' of stage '{binding.source_stage}', "
                "which has not completed",
                stage=consumer.name,
            )
        files.setdefault(binding.target_file, {})[binding.target_key] = extract(
            state, binding.output_name
        )

    return ProvisionRequest(stage=consumer.name, files=files, var_file=consumer.var_file)
