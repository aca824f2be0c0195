"""Error taxonomy shared by the supactl core.

Every error raised by the registry, the rewriters, the provisioning flow and
the providers derives from :class:`SupactlError`. Each class carries the exit
code the CLI should use and an optional remediation hint that is shown to the
operator alongside the message.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class SupactlError(RuntimeError):
    """Base class for operator-facing supactl failures."""

    exit_code: ExitCode = ExitCode.PROVIDER

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        """Store *message* and an optional *remediation* hint."""
        super().__init__(message)
        self.message = message
        self.remediation = remediation


class ValidationError(SupactlError):
    """Raised when operator input (such as an instance id) is malformed."""

    exit_code = ExitCode.VALIDATION


class AlreadyExistsError(SupactlError):
    """Raised when a registry entry or target directory already exists."""

    exit_code = ExitCode.VALIDATION


class NotFoundError(SupactlError):
    """Raised when a registry entry, file or remote record is missing."""

    exit_code = ExitCode.VALIDATION


class UnsupportedOperationError(SupactlError):
    """Raised when a provider does not support the requested operation."""

    exit_code = ExitCode.VALIDATION


class DependencyUnavailableError(SupactlError):
    """Raised when an external tool (docker, git) is missing or not running."""

    exit_code = ExitCode.ENVIRONMENT


class StateRegistryError(SupactlError):
    """Raised when the persisted registry cannot be read or written."""

    exit_code = ExitCode.ENVIRONMENT


class CredentialsError(SupactlError):
    """Raised when secret or token generation fails."""

    exit_code = ExitCode.ENVIRONMENT


class ExternalCommandFailure(SupactlError):
    """Raised when a subprocess or remote request reports failure."""

    exit_code = ExitCode.PROVIDER

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        returncode: int | None = None,
        output: str = "",
        remediation: str | None = None,
    ) -> None:
        """Record the failing *operation* together with its exit status and output."""
        super().__init__(f"{operation} failed: {message}", remediation=remediation)
        self.operation = operation
        self.returncode = returncode
        self.output = output


class ProvisioningStepFailure(SupactlError):
    """Raised when a provisioning stage fails after rollback has completed."""

    exit_code = ExitCode.PROVIDER

    def __init__(
        self,
        project_id: str,
        stage: str,
        cause: BaseException,
        *,
        cleanup_warnings: tuple[str, ...] = (),
    ) -> None:
        """Wrap *cause* raised while running *stage* for *project_id*."""
        detail = getattr(cause, "message", None) or str(cause) or type(cause).__name__
        remediation = getattr(cause, "remediation", None)
        if cleanup_warnings:
            extra = "Cleanup was incomplete; remove leftovers manually: " + "; ".join(
                cleanup_warnings
            )
            remediation = f"{remediation} {extra}" if remediation else extra
        super().__init__(
            f"Provisioning '{project_id}' failed during {stage}: {detail}",
            remediation=remediation,
        )
        self.project_id = project_id
        self.stage = stage
        self.cause = cause
        self.cleanup_warnings = cleanup_warnings


class AlreadyInDesiredStateError(SupactlError):
    """Raised when start/stop is requested for an instance already in that state.

    Callers may treat this as benign; the CLI reports it as a warning.
    """

    exit_code = ExitCode.OK

    def __init__(self, name: str, state: str) -> None:
        """Record the instance *name* and the *state* it is already in."""
        verb = "running" if state == "running" else "not running"
        super().__init__(f"Instance '{name}' is already {verb}.")
        self.name = name
        self.state = state


__all__ = [
    "AlreadyExistsError",
    "AlreadyInDesiredStateError",
    "CredentialsError",
    "DependencyUnavailableError",
    "ExternalCommandFailure",
    "NotFoundError",
    "ProvisioningStepFailure",
    "StateRegistryError",
    "SupactlError",
    "UnsupportedOperationError",
    "ValidationError",
]
