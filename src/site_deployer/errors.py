"""Exception hierarchy shared across the deployer."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .orchestrator.models import DeploymentRun


class DeployerError(RuntimeError):
    """Base class for every error raised by site-deployer."""


class ConfigurationError(DeployerError):
    """Raised when a project descriptor or environment is invalid.

    ``missing`` lists attributes that are absent or blank, ``problems`` lists
    cross-field violations. Both are reported together so a single run shows
    everything that needs fixing.
    """

    def __init__(
        self,
        message: str,
        *,
        missing: Optional[Sequence[str]] = None,
        problems: Optional[Sequence[str]] = None,
    ) -> None:
        self.missing: List[str] = list(missing or [])
        self.problems: List[str] = list(problems or [])
        details = []
        if self.missing:
            details.append(f"missing required attributes: {', '.join(self.missing)}")
        details.extend(self.problems)
        full = message if not details else f"{message} ({'; '.join(details)})"
        super().__init__(full)


class CommandError(DeployerError):
    """Raised when a hosting command exits with a non-zero status."""

    def __init__(self, command: Sequence[str], exit_code: int, stderr: str) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(self.command)} failed with code {exit_code}: {stderr}"
        )


class ServiceControlError(DeployerError):
    """Raised when querying or changing a hosted unit fails."""

    def __init__(self, unit: str, action: str, reason: str) -> None:
        self.unit = unit
        self.action = action
        self.reason = reason
        super().__init__(f"Failed to {action} {unit}: {reason}")


class TransferError(DeployerError):
    """Raised when build artifacts cannot be obtained or deployed."""

    def __init__(self, message: str, *, tried: Optional[Sequence[str]] = None) -> None:
        self.tried: List[str] = list(tried or [])
        super().__init__(message)


class ReportingError(DeployerError):
    """Raised inside the reporting client when a request cannot be completed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ApprovalRejected(DeployerError):
    """Raised when a deployment approval is declined or cancelled."""


class DeploymentFailed(DeployerError):
    """Final signal raised by the orchestrator when a run did not complete."""

    def __init__(self, run: "DeploymentRun", message: str) -> None:
        self.run = run
        super().__init__(message)
