"""Hosting surface: command sessions, IIS backend and service control."""

from .backend import AppCmdBackend, HostingBackend, ServiceState
from .controller import (
    ServiceActionResult,
    ServiceController,
    ServicePhaseResult,
    ServiceUnit,
    UnitKind,
)
from .maintenance import MaintenanceState, prepare_maintenance_content
from .session import CommandResult, LocalSession
from .ssh import SSHConnectionError, SSHCredentials, SSHSession

__all__ = [
    "AppCmdBackend",
    "CommandResult",
    "HostingBackend",
    "LocalSession",
    "MaintenanceState",
    "SSHConnectionError",
    "SSHCredentials",
    "SSHSession",
    "ServiceActionResult",
    "ServiceController",
    "ServicePhaseResult",
    "ServiceState",
    "ServiceUnit",
    "UnitKind",
    "prepare_maintenance_content",
]
