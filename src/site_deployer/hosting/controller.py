"""Start/stop of hosted units and maintenance-mode switchover."""

from __future__ import annotations

import ntpath
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..errors import CommandError, ServiceControlError
from ..project import EnvironmentConfig
from ..utils.logging import get_logger, log_field, log_subsection
from .backend import HostingBackend, ServiceState
from .maintenance import MaintenanceState, prepare_maintenance_content

logger = get_logger(__name__)

PathLike = Union[str, Path]


class UnitKind(str, Enum):
    APP_POOL = "app_pool"
    SITE = "site"

    @property
    def label(self) -> str:
        return "App Pool" if self is UnitKind.APP_POOL else "Website"


@dataclass(frozen=True)
class ServiceUnit:
    kind: UnitKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind.label} '{self.name}'"


@dataclass
class ServiceActionResult:
    """What happened to one unit during a start or stop."""

    unit: ServiceUnit
    action: str
    changed: bool
    state: ServiceState
    warning: Optional[str] = None


@dataclass
class ServicePhaseResult:
    """All unit results of one start or stop phase."""

    action: str
    results: List[ServiceActionResult] = field(default_factory=list)
    errors: List[ServiceControlError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _normalize_path(path: PathLike) -> str:
    return ntpath.normcase(ntpath.normpath(str(path))).rstrip("\\")


class ServiceController:
    """Idempotent start/stop of IIS app pools and sites.

    Stopping polls every ``poll_interval`` seconds until the unit reports
    stopped or ``stop_timeout`` elapses; a timeout is logged as a warning and
    treated as success because IIS can report stale state. Starting checks
    the resulting state once.
    """

    def __init__(
        self,
        backend: HostingBackend,
        *,
        poll_interval: float = 2.0,
        stop_timeout: float = 30.0,
        settle_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.settle_seconds = settle_seconds
        self._sleep = sleep

    # -- unit operations -------------------------------------------------

    def state(self, unit: ServiceUnit) -> ServiceState:
        try:
            if unit.kind is UnitKind.APP_POOL:
                return self.backend.app_pool_state(unit.name)
            return self.backend.site_state(unit.name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(str(unit), "query", str(exc)) from exc

    def stop(self, unit: ServiceUnit) -> ServiceActionResult:
        log_subsection(logger, f"Stopping {unit.kind.label}")
        log_field(logger, unit.kind.label, unit.name)

        current = self.state(unit)
        if current is ServiceState.STOPPED:
            logger.info("%s already stopped", unit)
            return ServiceActionResult(unit, "stop", changed=False, state=current)

        try:
            if unit.kind is UnitKind.APP_POOL:
                self.backend.stop_app_pool(unit.name)
            else:
                self.backend.stop_site(unit.name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(str(unit), "stop", str(exc)) from exc

        elapsed = 0.0
        state = current
        while elapsed < self.stop_timeout:
            self._sleep(self.poll_interval)
            elapsed += self.poll_interval
            state = self.state(unit)
            if state is ServiceState.STOPPED:
                logger.info("%s stopped", unit)
                return ServiceActionResult(unit, "stop", changed=True, state=state)

        warning = f"{unit} did not report stopped within {self.stop_timeout:g}s (last state: {state.value})"
        logger.warning("%s; continuing", warning)
        return ServiceActionResult(unit, "stop", changed=True, state=state, warning=warning)

    def start(self, unit: ServiceUnit) -> ServiceActionResult:
        log_subsection(logger, f"Starting {unit.kind.label}")
        log_field(logger, unit.kind.label, unit.name)

        current = self.state(unit)
        if current is ServiceState.RUNNING:
            logger.info("%s already running", unit)
            return ServiceActionResult(unit, "start", changed=False, state=current)

        try:
            if unit.kind is UnitKind.APP_POOL:
                self.backend.start_app_pool(unit.name)
            else:
                self.backend.start_site(unit.name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(str(unit), "start", str(exc)) from exc

        state = self.state(unit)
        if state is not ServiceState.RUNNING:
            warning = f"{unit} reports {state.value} after start"
            logger.warning("%s", warning)
            return ServiceActionResult(unit, "start", changed=True, state=state, warning=warning)

        logger.info("%s started", unit)
        return ServiceActionResult(unit, "start", changed=True, state=state)

    # -- phases ----------------------------------------------------------

    def stop_services(self, config: EnvironmentConfig) -> ServicePhaseResult:
        """Stop the site, then its app pool (whichever are enabled)."""
        units = []
        if config.stop_site and config.site_name:
            units.append(ServiceUnit(UnitKind.SITE, config.site_name))
        if config.stop_app_pool and config.app_pool_name:
            units.append(ServiceUnit(UnitKind.APP_POOL, config.app_pool_name))
        return self._run_phase("stop", units)

    def start_services(self, config: EnvironmentConfig) -> ServicePhaseResult:
        """Start the app pool, then the site (whichever are enabled)."""
        units = []
        if config.start_app_pool and config.app_pool_name:
            units.append(ServiceUnit(UnitKind.APP_POOL, config.app_pool_name))
        if config.start_site and config.site_name:
            units.append(ServiceUnit(UnitKind.SITE, config.site_name))
        return self._run_phase("start", units)

    def _run_phase(self, action: str, units: List[ServiceUnit]) -> ServicePhaseResult:
        phase = ServicePhaseResult(action=action)
        operation = self.stop if action == "stop" else self.start
        for unit in units:
            # 单个单元失败不影响同阶段的其他单元
            try:
                phase.results.append(operation(unit))
            except ServiceControlError as exc:
                logger.error("%s", exc)
                phase.errors.append(exc)
        return phase

    # -- maintenance mode ------------------------------------------------

    def validate_site(self, site_name: str) -> None:
        try:
            exists = self.backend.site_exists(site_name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(f"Website '{site_name}'", "validate", str(exc)) from exc
        if not exists:
            raise ServiceControlError(f"Website '{site_name}'", "validate", "site not found")
        logger.info("Site validation passed")

    def enable_maintenance(
        self, site_name: str, app_path: PathLike, maintenance_path: PathLike
    ) -> None:
        log_subsection(logger, "Enabling Maintenance Mode")
        log_field(logger, "Site Name", site_name)
        log_field(logger, "Switching to", maintenance_path)
        prepare_maintenance_content(app_path, maintenance_path)
        self._switch_root(site_name, maintenance_path, "enable maintenance mode")
        logger.info("MAINTENANCE MODE ENABLED: '%s' now serves %s", site_name, maintenance_path)

    def disable_maintenance(
        self, site_name: str, app_path: PathLike, maintenance_path: PathLike
    ) -> None:
        log_subsection(logger, "Disabling Maintenance Mode")
        log_field(logger, "Site Name", site_name)
        log_field(logger, "Switching to", app_path)
        self._switch_root(site_name, app_path, "disable maintenance mode")
        logger.info("MAINTENANCE MODE DISABLED: '%s' now serves %s", site_name, app_path)

    def maintenance_status(
        self, site_name: str, app_path: PathLike, maintenance_path: PathLike
    ) -> MaintenanceState:
        try:
            current = self.backend.site_physical_path(site_name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(f"Website '{site_name}'", "check maintenance status", str(exc)) from exc

        normalized = _normalize_path(current)
        if normalized == _normalize_path(maintenance_path):
            status = MaintenanceState.ENABLED
        elif normalized == _normalize_path(app_path):
            status = MaintenanceState.DISABLED
        else:
            status = MaintenanceState.UNKNOWN
            logger.warning("Site '%s' points to unexpected path: %s", site_name, current)

        log_field(logger, "Current Path", current)
        log_field(logger, "Maintenance", status.value.upper())
        return status

    def _switch_root(self, site_name: str, target: PathLike, action: str) -> None:
        unit = f"Website '{site_name}'"
        try:
            self.backend.set_site_physical_path(site_name, str(target))
            pool = self.backend.site_app_pool(site_name)
        except (CommandError, OSError) as exc:
            raise ServiceControlError(unit, action, str(exc)) from exc

        if pool:
            logger.info("Recycling application pool: %s", pool)
            try:
                self.backend.recycle_app_pool(pool)
            except (CommandError, OSError) as exc:
                logger.warning("Failed to recycle app pool %s: %s", pool, exc)

        self._sleep(self.settle_seconds)
