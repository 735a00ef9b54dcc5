"""
Stage Orchestrator

Drives the staged workflow:

    deploy:  CheckingPrereqs -> for each stage in order:
                 Planning -> Applying -> ExtractingOutputs -> Materializing
             -> HandoffToConfigManagement -> Done
    cleanup: CheckingPrereqs -> TearingDown (reverse order) -> Done

Any fatal error moves the run to Failed and is re-raised with the stage it
happened in. Nothing is rolled back: completed stages keep their state and
the next run resumes from the first unsatisfied stage.
"""

import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from stackup.constants import CLEANUP_TOOLS, DEPLOY_TOOLS
from stackup.core.config_loader import WorkflowConfig
from stackup.core.extractor import extract_all
from stackup.core.materializer import ConfigMaterializer
from stackup.core.stages import (
    StageDescriptor,
    build_bindings,
    build_handoff,
    build_stages,
    resolve_request,
    validate_order,
)
from stackup.exceptions import (
    DependencyStillPresent,
    ProviderTransient,
    SSHError,
    StackupError,
    StateNotFound,
    UnresolvedInput,
)
from stackup.models.results import RunReport, StageOutcome
from stackup.models.stage import OutputBinding, ProvisionRequest, Stage, StageState
from stackup.services.state_service import StateStoreClient
from stackup.utils import retry_with_backoff


class Phase(Enum):
    """Orchestrator states."""

    IDLE = "Idle"
    CHECKING_PREREQS = "CheckingPrereqs"
    PLANNING = "Planning"
    APPLYING = "Applying"
    EXTRACTING_OUTPUTS = "ExtractingOutputs"
    MATERIALIZING = "Materializing"
    HANDOFF = "HandoffToConfigManagement"
    TEARING_DOWN = "TearingDown"
    DONE = "Done"
    FAILED = "Failed"


class Orchestrator:
    """
    Sequences stage applies and teardowns against the state store.

    Stages and bindings are built from the config unless given explicitly.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        store: StateStoreClient,
        engine,
        materializer: ConfigMaterializer,
        handoff=None,
        preflight=None,
        ssh_service=None,
        logger=None,
        stages: Optional[Sequence[Stage]] = None,
        bindings: Optional[Sequence[OutputBinding]] = None,
        handoff_stage: Optional[Stage] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.store = store
        self.engine = engine
        self.materializer = materializer
        self.handoff = handoff
        self.preflight = preflight
        self.ssh_service = ssh_service
        self.logger = logger
        self.sleep = sleep

        self._stages = list(stages) if stages is not None else None
        self.bindings = list(bindings) if bindings is not None else build_bindings()
        self.handoff_stage = handoff_stage or build_handoff(config)

        self.phase = Phase.IDLE
        self.current_stage: Optional[str] = None
        self.history: List[Tuple[Phase, Optional[str]]] = []
        self.completed: Dict[str, StageState] = {}
        self.report: Optional[RunReport] = None
        self.cancel_event = threading.Event()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, message: str, level: str = "INFO") -> None:
        if self.logger:
            self.logger.log(message, level)

    def _enter(self, phase: Phase, stage: Optional[str] = None) -> None:
        self.phase = phase
        self.current_stage = stage
        self.history.append((phase, stage))
        label = f"{phase.value}({stage})" if stage else phase.value
        self._log(f"-> {label}", "DEBUG")

    def _on_retry(self, what: str) -> Callable[[int, Exception, float], None]:
        def report(attempt: int, error: Exception, delay: float) -> None:
            if self.logger:
                self.logger.warning(
                    f"{what} failed (attempt {attempt}): "
                    f"{getattr(error, 'message', error)}; retrying in {delay:g}s"
                )

        return report

    def _retry_transient(self, operation, what: str):
        retry = self.config.retry
        return retry_with_backoff(
            operation,
            retry_on=(ProviderTransient,),
            attempts=retry.apply_attempts,
            base_delay=retry.backoff_base,
            max_delay=retry.backoff_max,
            on_retry=self._on_retry(what),
            sleep=self.sleep,
        )

    def _stage_lock(self, stage: str):
        retry = self.config.retry
        return self.store.lock(
            stage,
            attempts=retry.lock_attempts,
            base_delay=retry.backoff_base,
            max_delay=retry.backoff_max,
            on_retry=self._on_retry(f"Locking {stage}"),
            sleep=self.sleep,
        )

    def stages(self, public_key: str = "") -> List[Stage]:
        if self._stages is None:
            return build_stages(self.config, public_key)
        return list(self._stages)

    def abort(self) -> None:
        """Cancel any in-progress wait; the run stops at the next check."""
        self.cancel_event.set()

    def _check_prereqs(self, tools: Dict[str, str], need_key: bool) -> str:
        self._enter(Phase.CHECKING_PREREQS)
        if self.preflight:
            self.preflight.check_tools(tools)
            self.preflight.check_aws_credentials()
        if not need_key:
            return ""
        if self.ssh_service:
            self.ssh_service.ensure_key_pair()
        if not self.config.ssh.public_key_exists:
            raise SSHError(
                f"SSH public key not found: {self.config.ssh.public_key_path_expanded}"
            )
        return self.config.ssh.read_public_key()

    def _materialize(
        self, consumer: Stage, completed: Dict[str, StageState]
    ) -> ProvisionRequest:
        """Resolve every input file of consumer, then write them all."""
        request = resolve_request(consumer, self.bindings, completed)

        # Render everything first so a bad template leaves no file behind
        rendered = [
            (
                consumer.input_path(input_file.name),
                self.materializer.render(
                    input_file.template, request.files[input_file.name], stage=consumer.name
                ),
            )
            for input_file in consumer.input_files
        ]
        for path, result in rendered:
            self.materializer.write(path, result.text)
        return request

    def _check_resolved(self, descriptor: StageDescriptor, request: ProvisionRequest) -> None:
        resolved = set()
        for values in request.files.values():
            resolved.update(values)
        missing = [key for key in descriptor.required_inputs() if key not in resolved]
        if missing:
            raise UnresolvedInput(
                f"Stage '{descriptor.name}' has unresolved inputs: {', '.join(missing)}",
                stage=descriptor.name,
            )

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def deploy(self) -> RunReport:
        """
        Provision every stage in order, then hand off to configuration
        management.

        Returns:
            RunReport (status WARNING if the handoff failed)

        Raises:
            StackupError: On the first fatal error, with .stage set
        """
        report = RunReport(operation="deploy")
        self.report = report
        self.completed = {}

        try:
            public_key = self._check_prereqs(DEPLOY_TOOLS, need_key=True)
            stages = self.stages(public_key)
            validate_order(stages, self.bindings, self.handoff_stage)

            pending: Dict[str, ProvisionRequest] = {}
            for index, stage in enumerate(stages):
                descriptor = StageDescriptor(stage, self.engine, self.bindings)

                self._enter(Phase.PLANNING, stage.name)
                request = pending.pop(stage.name, None)
                if request is None:
                    request = self._materialize(stage, self.completed)
                self._check_resolved(descriptor, request)

                state = self._apply_stage(descriptor, request, report)
                self.completed[stage.name] = state

                self._enter(Phase.EXTRACTING_OUTPUTS, stage.name)
                outputs = extract_all(state, descriptor.expected_outputs())
                self._log(f"{stage.name} outputs: {', '.join(sorted(outputs)) or '(none)'}")

                self._enter(Phase.MATERIALIZING, stage.name)
                consumer = (
                    stages[index + 1] if index + 1 < len(stages) else self.handoff_stage
                )
                pending[consumer.name] = self._materialize(consumer, self.completed)

            self._enter(Phase.HANDOFF)
            self._run_handoff(pending[self.handoff_stage.name], report)
            self._enter(Phase.DONE)
        except StackupError as e:
            self._fail(e, report)
            raise

        return report

    def _fail(self, error: StackupError, report: RunReport) -> None:
        if error.stage is None:
            error.stage = self.current_stage
        report.fail(error.stage)
        self._enter(Phase.FAILED, error.stage)

    def _apply_stage(
        self,
        descriptor: StageDescriptor,
        request: ProvisionRequest,
        report: RunReport,
    ) -> StageState:
        name = descriptor.name
        fingerprint = request.fingerprint()
        seen_version = self._recorded_version(name)

        if self.store.is_satisfied(name, fingerprint):
            changed = self._retry_transient(
                lambda: descriptor.has_changes(request), f"Planning {name}"
            )
            if not changed:
                if self.logger:
                    self.logger.success(f"{name}: no changes, skipping apply")
                report.record(name, StageOutcome.UNCHANGED)
                return self.store.load(name)
            self._log(f"{name}: recorded inputs match but real resources drifted")

        self._enter(Phase.APPLYING, name)
        if self.logger:
            self.logger.step(f"Applying {name}")
        with self._stage_lock(name):
            # Another run may have applied the same inputs while we waited
            if (
                self._recorded_version(name) != seen_version
                and self.store.is_satisfied(name, fingerprint)
            ):
                if self.logger:
                    self.logger.success(f"{name}: applied by another run, skipping apply")
                report.record(name, StageOutcome.UNCHANGED)
                return self.store.load(name)

            state = self._retry_transient(
                lambda: descriptor.apply(request), f"Applying {name}"
            )
            state.inputs = fingerprint
            saved = self.store.save(name, state)

        if self.logger:
            self.logger.success(f"{name} applied (version {saved.version})")
        report.record(name, StageOutcome.APPLIED)
        return saved

    def _recorded_version(self, name: str) -> Optional[int]:
        try:
            return self.store.load(name).version
        except StateNotFound:
            return None

    def _run_handoff(self, request: ProvisionRequest, report: RunReport) -> None:
        if self.handoff is None:
            return
        try:
            self.handoff.run(request, cancel_event=self.cancel_event)
        except StackupError as e:
            if e.fatal:
                raise
            warning = f"Configuration management did not complete: {e.message}"
            if e.context:
                warning += f" ({e.context.splitlines()[-1]})"
            if self.logger:
                self.logger.warning(warning)
                self.logger.log(
                    "Infrastructure is provisioned; re-run the playbook manually", "WARNING"
                )
            report.add_warning(warning)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup(self) -> RunReport:
        """
        Destroy every stage in reverse order. Stages without recorded state
        are skipped, so repeating a cleanup is a no-op.

        Raises:
            StackupError: On the first fatal error, with .stage set
        """
        report = RunReport(operation="cleanup")
        self.report = report

        try:
            self._check_prereqs(CLEANUP_TOOLS, need_key=False)
            stages = self.stages()
            for stage in reversed(stages):
                self._enter(Phase.TEARING_DOWN, stage.name)
                self._destroy(stages, stage, report)
            self._enter(Phase.DONE)
        except StackupError as e:
            self._fail(e, report)
            raise

        return report

    def destroy_stage(self, name: str) -> RunReport:
        """
        Destroy a single stage.

        Raises:
            DependencyStillPresent: If a later stage still has recorded state
        """
        report = RunReport(operation="destroy")
        stages = self.stages()
        matches = [stage for stage in stages if stage.name == name]
        if not matches:
            raise UnresolvedInput(f"Unknown stage '{name}'", stage=name)

        try:
            self._enter(Phase.TEARING_DOWN, name)
            self._destroy(stages, matches[0], report)
            self._enter(Phase.DONE)
        except StackupError as e:
            self._fail(e, report)
            raise
        return report

    def _destroy(self, stages: List[Stage], stage: Stage, report: RunReport) -> None:
        later = stages[stages.index(stage) + 1:]
        dependents = [s.name for s in later if self.store.exists(s.name)]
        if dependents:
            raise DependencyStillPresent(stage.name, dependents)

        try:
            state = self.store.load(stage.name)
        except StateNotFound:
            self._log(f"{stage.name}: nothing recorded, skipping")
            report.record(stage.name, StageOutcome.ABSENT)
            return

        if self.logger:
            self.logger.step(f"Destroying {stage.name}")
        descriptor = StageDescriptor(stage, self.engine, self.bindings)
        request = ProvisionRequest(
            stage=stage.name, files=dict(state.inputs), var_file=stage.var_file
        )

        with self._stage_lock(stage.name):
            # Engine inputs must match what was applied, not the current config
            for input_file in stage.input_files:
                values = state.inputs.get(input_file.name)
                if values is None:
                    raise UnresolvedInput(
                        f"Recorded state of '{stage.name}' has no inputs for "
                        f"{input_file.name}",
                        stage=stage.name,
                    )
                self.materializer.materialize(
                    input_file.template,
                    values,
                    stage.input_path(input_file.name),
                    stage=stage.name,
                )
            self._retry_transient(
                lambda: descriptor.destroy(request), f"Destroying {stage.name}"
            )
            self.store.delete(stage.name)

        if self.logger:
            self.logger.success(f"{stage.name} destroyed")
        report.record(stage.name, StageOutcome.DESTROYED)
