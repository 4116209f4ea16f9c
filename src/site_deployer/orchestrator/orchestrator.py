"""Deployment orchestrator: runs the fixed stage sequence for one project."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, NoReturn, Optional, Union

from ..errors import (
    ConfigurationError,
    DeployerError,
    DeploymentFailed,
    ServiceControlError,
    TransferError,
)
from ..project import validate_project
from ..utils.logging import get_logger, log_field, log_section
from .models import DeploymentRun, RunStatus, StageOutcome, StageResult

if TYPE_CHECKING:
    from ..artifacts import ArtifactTransfer
    from ..backup import BackupManager
    from ..config import BuildContext
    from ..hosting import ServiceController, ServicePhaseResult
    from ..interaction import ApprovalGate
    from ..project import EnvironmentConfig
    from ..reporting import DiscordNotifier, GitHubReporter

logger = get_logger(__name__)

StageBody = Callable[[], Optional[Dict[str, Any]]]

# 阶段内可恢复的错误；其余异常视为程序缺陷直接抛出
STAGE_ERRORS = (DeployerError, OSError)


class DeploymentOrchestrator:
    """
    部署编排器

    Runs the stages in order and applies the failure policy:

    * ``validate_environment``, ``validate_project`` and ``approval`` abort the
      run before anything changes.
    * Maintenance switching is best effort; failures are warnings.
    * A failed stop, backup or artifact deploy marks the run failed and skips
      the remaining deploy stages, but services are still started, the site
      leaves maintenance mode and the outcome is reported.
    * Backup cleanup only runs after a successful deploy and never changes
      the outcome.
    """

    def __init__(
        self,
        config: "EnvironmentConfig",
        build: "BuildContext",
        *,
        controller: "ServiceController",
        backups: "BackupManager",
        transfer: "ArtifactTransfer",
        reporter: "GitHubReporter",
        notifier: "DiscordNotifier",
        approval: Optional["ApprovalGate"] = None,
        log_dir: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.build = build
        self.controller = controller
        self.backups = backups
        self.transfer = transfer
        self.reporter = reporter
        self.notifier = notifier
        self.approval = approval
        self.log_dir = Path(log_dir) if log_dir else Path.cwd() / "deploy_logs"
        self._clock = clock

        self.run_state: Optional[DeploymentRun] = None
        self.current_log_file: Optional[Path] = None

    # -- entry point ---------------------------------------------------------

    def run(self) -> DeploymentRun:
        """Execute every stage; returns the run or raises :class:`DeploymentFailed`."""
        run = DeploymentRun(
            project_name=self.config.project_name,
            environment=self.config.environment,
            build_number=self.build.build_number,
            started_at=self._clock(),
        )
        self.run_state = run
        self._init_log(run)

        log_section(logger, f"DEPLOYING {self.config.project_name} TO {self.config.environment}")
        log_field(logger, "Build", f"{self.build.job_name} #{self.build.build_number}")
        log_field(logger, "Project type", self.config.variant.label)

        self.reporter.update_commit_status("pending", "Deployment started")
        run.revision = self.reporter.revision

        for name, body in (
            ("validate_environment", self._validate_environment),
            ("validate_project", self._validate_project),
            ("approval", self._approval),
        ):
            if name == "approval" and not self.config.approval_required:
                self._record(StageResult.skipped(name, "approval not required", required=False))
                continue
            result = self._stage(name, body)
            if result.failed:
                self._abort(result)

        try:
            self.reporter.track_deployment(
                self.config.deployment_environment, self._deploy_stages
            )
        except DeploymentFailed:
            logger.error("Deployment stages failed: %s", ", ".join(
                r.name for r in run.failed_stages if r.required
            ))
        run.tracking_id = self.reporter.deployment_id

        if run.status is RunStatus.RUNNING:
            run.status = RunStatus.COMPLETED

        self._stage("report", self._report, required=False)
        self._finalize_log(run)

        if run.status is not RunStatus.COMPLETED:
            raise DeploymentFailed(run, f"Deployment of {run.project_name} to {run.environment} failed")
        return run

    # -- stage plumbing ------------------------------------------------------

    def _stage(self, name: str, body: StageBody, *, required: bool = True) -> StageResult:
        log_section(logger, name.replace("_", " ").upper())
        started = self._clock().isoformat()
        try:
            detail = body() or {}
        except STAGE_ERRORS as exc:
            level = logger.error if required else logger.warning
            level("Stage %s failed: %s", name, exc)
            result = StageResult(
                name=name, outcome=StageOutcome.FAILED, required=required, error=str(exc),
                started_at=started, finished_at=self._clock().isoformat(),
            )
        else:
            result = StageResult(
                name=name, outcome=StageOutcome.SUCCESS, required=required, detail=detail,
                started_at=started, finished_at=self._clock().isoformat(),
            )
            logger.info("Stage %s completed", name)
        return self._record(result)

    def _record(self, result: StageResult) -> StageResult:
        assert self.run_state is not None
        self.run_state.record(result)
        if result.outcome is StageOutcome.SKIPPED:
            logger.info("Stage %s skipped (%s)", result.name, result.detail.get("reason", ""))
        self._save_log()
        return result

    def _abort(self, failed: StageResult) -> NoReturn:
        run = self.run_state
        assert run is not None
        run.status = RunStatus.ABORTED
        run.finished_at = self._clock()
        description = f"Deployment aborted at {failed.name}: {failed.error}"
        logger.error("%s", description)

        self.reporter.update_commit_status("error", description[:140])
        self.notifier.notify(self.build, "FAILURE", run.duration_seconds)
        self._finalize_log(run)
        raise DeploymentFailed(run, description)

    # -- pre-flight stages ---------------------------------------------------

    def _validate_environment(self) -> Dict[str, Any]:
        config = self.config
        required = {
            "project_name": config.project_name,
            "environment": config.environment,
            "website_root": config.website_root,
            "backups_root": config.backups_root,
            "folder_website_name": config.folder_website_name,
            "publish_path": config.publish_path,
            "deployment_environment": config.deployment_environment,
        }
        missing = [name for name, value in required.items() if not str(value or "").strip()]
        problems = []
        if config.maintenance_mode_enabled:
            if not config.site_name:
                problems.append("maintenance mode enabled but iis_website_name is not defined")
            if not config.maintenance_path:
                problems.append("maintenance mode enabled but ma_path is not defined")
        if missing or problems:
            raise ConfigurationError(
                "Environment validation failed", missing=missing, problems=problems
            )

        if config.site_name and (config.manage_site or config.maintenance_mode_enabled):
            self.controller.validate_site(config.site_name)

        for name, value in required.items():
            log_field(logger, name, value)
        logger.info("All required environment values are set")
        return {"website_path": str(config.website_path)}

    def _validate_project(self) -> Dict[str, Any]:
        source = self.config.source
        if not source:
            logger.info("No raw descriptor attached; relying on resolved configuration")
            return {"variant": self.config.variant.value}
        variant = validate_project(source)
        if variant is not self.config.variant:
            raise ConfigurationError(
                f"Project variant changed from {self.config.variant.value} to {variant.value}"
            )
        logger.info("Configuration validation passed for %s", variant.label)
        return {"variant": variant.value}

    def _approval(self) -> Dict[str, Any]:
        if self.approval is None:
            raise ConfigurationError("Approval is required but no approval handler is configured")
        approver = self.approval.approve_deployment(self.config, self.build)
        assert self.run_state is not None
        self.run_state.approver = approver
        return {"approver": approver}

    # -- deploy stages -------------------------------------------------------

    def _deploy_stages(self) -> DeploymentRun:
        """Stages 4 to 9; raises when the run failed so tracking sees it."""
        run = self.run_state
        assert run is not None
        config = self.config

        if config.maintenance_mode_enabled:
            result = self._stage("enter_maintenance", self._enter_maintenance, required=False)
            if result.failed:
                logger.warning("Continuing without maintenance mode")
        else:
            self._record(StageResult.skipped("enter_maintenance", "maintenance mode disabled", required=False))

        deploy_failed = False
        for name, body in (
            ("stop_services", self._stop_services),
            ("create_backup", self._create_backup),
            ("deploy_artifacts", self._deploy_artifacts),
        ):
            if deploy_failed:
                self._record(StageResult.skipped(name, "previous deploy stage failed"))
                continue
            if name == "stop_services" and not config.manages_services:
                self._record(StageResult.skipped(name, "no service management configured", required=False))
                continue
            if self._stage(name, body).failed:
                deploy_failed = True
                run.status = RunStatus.FAILED

        if config.manages_services:
            if self._stage("start_services", self._start_services).failed:
                run.status = RunStatus.FAILED
        else:
            self._record(StageResult.skipped("start_services", "no service management configured", required=False))

        if config.maintenance_mode_enabled:
            result = self._stage("exit_maintenance", self._exit_maintenance, required=False)
            if result.failed:
                logger.warning("Site may still be serving maintenance content")
        else:
            self._record(StageResult.skipped("exit_maintenance", "maintenance mode disabled", required=False))

        if run.status is RunStatus.FAILED:
            self._record(StageResult.skipped("cleanup_backups", "deployment failed", required=False))
            raise DeploymentFailed(run, "One or more deployment stages failed")

        if config.cleanup_enabled:
            self._stage("cleanup_backups", self._cleanup_backups, required=False)
        else:
            self._record(StageResult.skipped("cleanup_backups", "cleanup not enabled", required=False))
        return run

    def _enter_maintenance(self) -> Dict[str, Any]:
        config = self.config
        self.controller.enable_maintenance(config.site_name, config.website_path, config.maintenance_path)
        return {"path": config.maintenance_path}

    def _exit_maintenance(self) -> Dict[str, Any]:
        config = self.config
        self.controller.disable_maintenance(config.site_name, config.website_path, config.maintenance_path)
        return {"path": str(config.website_path)}

    def _stop_services(self) -> Dict[str, Any]:
        return self._phase_detail(self.controller.stop_services(self.config))

    def _start_services(self) -> Dict[str, Any]:
        return self._phase_detail(self.controller.start_services(self.config))

    @staticmethod
    def _phase_detail(phase: "ServicePhaseResult") -> Dict[str, Any]:
        if not phase.ok:
            if len(phase.errors) == 1:
                raise phase.errors[0]
            raise ServiceControlError(
                ", ".join(error.unit for error in phase.errors),
                phase.action,
                "; ".join(error.reason for error in phase.errors),
            )
        return {
            "units": [
                {
                    "unit": str(result.unit),
                    "changed": result.changed,
                    "state": result.state.value,
                    "warning": result.warning,
                }
                for result in phase.results
            ]
        }

    def _create_backup(self) -> Dict[str, Any]:
        record = self.backups.create_backup(self.config, self.build.build_number)
        if record is None:
            return {"backup": None}
        assert self.run_state is not None
        self.run_state.backup_path = str(record.path)
        return {"backup": str(record.path)}

    def _deploy_artifacts(self) -> Dict[str, Any]:
        try:
            result = self.transfer.transfer(self.config, self.build)
        except TransferError:
            self.reporter.update_commit_status("failure", "Failed to transfer build artifacts")
            raise
        return {
            "method": result.method,
            "channel": result.channel,
            "files": result.file_count,
            "tried": result.tried,
        }

    def _cleanup_backups(self) -> Dict[str, Any]:
        result = self.backups.cleanup_backups(self.config)
        return {
            "kept": [record.name for record in result.kept],
            "removed": [record.name for record in result.removed],
            "failed": [record.name for record in result.failed],
        }

    # -- reporting -----------------------------------------------------------

    def _report(self) -> Dict[str, Any]:
        run = self.run_state
        assert run is not None
        run.finished_at = self._clock()

        if run.succeeded:
            state, description = "success", f"Deployed to {run.environment}"
            severity = "WARNING" if run.optional_failures else "SUCCESS"
        else:
            failed = ", ".join(r.name for r in run.failed_stages if r.required) or "unknown stage"
            state, description = "failure", f"Deployment failed at {failed}"
            severity = "FAILURE"

        status_posted = self.reporter.update_commit_status(state, description)
        notified = self.notifier.notify(self.build, severity, run.duration_seconds)
        return {"commit_status": state, "status_posted": status_posted, "notified": notified}

    # -- run log -------------------------------------------------------------

    def _init_log(self, run: DeploymentRun) -> None:
        """初始化日志文件"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = run.started_at.strftime("%Y%m%d_%H%M%S")
        self.current_log_file = self.log_dir / f"deploy_{run.project_name}_{timestamp}.json"
        logger.info("Logging to: %s", self.current_log_file)
        self._save_log()

    def _finalize_log(self, run: DeploymentRun) -> None:
        if run.finished_at is None:
            run.finished_at = self._clock()
        self._save_log()
        log_field(logger, "Status", run.status.value.upper())
        log_field(logger, "Duration", f"{run.duration_seconds:.1f}s")
        logger.info("Log saved to: %s", self.current_log_file)

    def _save_log(self) -> None:
        """保存日志到文件"""
        if self.current_log_file and self.run_state:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.run_state.to_dict(), f, indent=2, ensure_ascii=False)
