"""
stackup Exception Hierarchy

Clean exception hierarchy for consistent error handling across the CLI.
Every error can carry the stage it happened in so the CLI can report it.
"""

from typing import Optional


class StackupError(Exception):
    """Base exception for all stackup errors."""

    fatal = True

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.message = message
        self.context = context
        self.stage = stage
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ConfigurationError(StackupError):
    """Raised when configuration is invalid or missing."""

    pass


# Pre-flight


class PrereqMissing(StackupError):
    """Raised when required external tools are not installed."""

    def __init__(self, missing_tools: list[str]):
        self.missing_tools = missing_tools
        super().__init__(
            f"Missing required tools: {' '.join(missing_tools)}",
            context="Please install the missing tools and try again.",
        )


class CredentialInvalid(StackupError):
    """Raised when cloud credentials are absent or rejected."""

    pass


# State store


class StateStoreError(StackupError):
    """Raised when state store operations fail."""

    pass


class StoreUnavailable(StateStoreError):
    """Raised when the state store cannot be reached."""

    pass


class StateNotFound(StateStoreError):
    """Raised when a stage has never been successfully applied."""

    def __init__(self, stage: str):
        super().__init__(f"No recorded state for stage '{stage}'", stage=stage)


class LockBusy(StateStoreError):
    """Raised when another run holds the stage lock."""

    def __init__(self, stage: str, owner: str, expires_at=None):
        self.owner = owner
        self.expires_at = expires_at
        context = f"Held by: {owner}"
        if expires_at is not None:
            context += f" (lease expires {expires_at.isoformat()})"
        super().__init__(
            f"Stage '{stage}' is locked by another run", context=context, stage=stage
        )


# Authoring / ordering bugs


class AuthoringError(StackupError):
    """Raised when stage declarations and bindings disagree."""

    pass


class StageOrderError(AuthoringError):
    """Raised when a binding reads from a stage that does not run earlier."""

    pass


class UnresolvedInput(AuthoringError):
    """Raised when a stage input cannot be resolved from completed stages."""

    pass


class MissingOutput(AuthoringError):
    """Raised when a stage state lacks an expected output."""

    def __init__(self, stage: str, output_name: str, available: list[str]):
        self.output_name = output_name
        self.available = available
        super().__init__(
            f"Output '{output_name}' not found in state of stage '{stage}'",
            context=f"Available outputs: {', '.join(available) or '(none)'}",
            stage=stage,
        )


class UnboundPlaceholder(AuthoringError):
    """Raised when a template placeholder has no bound value."""

    def __init__(self, template: str, placeholders: list[str], stage: Optional[str] = None):
        self.template = template
        self.placeholders = placeholders
        super().__init__(
            f"Unbound placeholder(s) in {template}: {', '.join(placeholders)}",
            stage=stage,
        )


class DependencyStillPresent(AuthoringError):
    """Raised when destroying a stage that a later stage still depends on."""

    def __init__(self, stage: str, dependents: list[str]):
        self.dependents = dependents
        super().__init__(
            f"Cannot destroy stage '{stage}' while dependent stages exist",
            context=f"Destroy first: {', '.join(dependents)}",
            stage=stage,
        )


# Provisioning engine


class TerraformError(StackupError):
    """Raised when Terraform operations fail."""

    pass


class ProviderTransient(TerraformError):
    """Raised when Terraform reports a retryable provider error."""

    pass


# Configuration management handoff


class HandoffError(StackupError):
    """Raised when the configuration-management handoff fails."""

    fatal = False


class HandoffTimeout(HandoffError):
    """Raised when provisioned hosts do not become reachable in time."""

    pass


class SSHError(StackupError):
    """Raised when SSH key material cannot be prepared."""

    pass


class RunCancelled(StackupError):
    """Raised when the operator aborts a run during a wait."""

    pass
