"""Data models for the orchestrator module."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class StageOutcome(str, Enum):
    """阶段执行结果"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"       # 部署阶段失败（已尽力恢复服务）
    ABORTED = "aborted"     # 前置检查或审批失败，未做任何变更


STAGE_NAMES = (
    "validate_environment",
    "validate_project",
    "approval",
    "enter_maintenance",
    "stop_services",
    "create_backup",
    "deploy_artifacts",
    "start_services",
    "exit_maintenance",
    "cleanup_backups",
    "report",
)


@dataclass
class StageResult:
    """Outcome of one stage of a run."""
    name: str
    outcome: StageOutcome
    required: bool = True
    error: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome is StageOutcome.FAILED

    @classmethod
    def skipped(cls, name: str, reason: str, *, required: bool = True) -> "StageResult":
        return cls(name=name, outcome=StageOutcome.SKIPPED, required=required, detail={"reason": reason})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass
class DeploymentRun:
    """One orchestration session, appended to as stages complete.

    Owned by the orchestrator; reporters and notifiers only read it.
    """
    project_name: str
    environment: str
    build_number: str
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    stages: List[StageResult] = field(default_factory=list)
    tracking_id: Optional[int] = None
    approver: Optional[str] = None
    revision: Optional[str] = None
    backup_path: Optional[str] = None
    finished_at: Optional[datetime] = None

    def record(self, result: StageResult) -> StageResult:
        self.stages.append(result)
        return result

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    @property
    def stage_names(self) -> List[str]:
        return [result.name for result in self.stages]

    @property
    def failed_stages(self) -> List[StageResult]:
        return [result for result in self.stages if result.failed]

    @property
    def optional_failures(self) -> List[StageResult]:
        return [result for result in self.failed_stages if not result.required]

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return max((end - self.started_at).total_seconds(), 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_name": self.project_name,
            "environment": self.environment,
            "build_number": self.build_number,
            "status": self.status.value,
            "start_time": self.started_at.isoformat(),
            "end_time": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds if self.finished_at else None,
            "tracking_id": self.tracking_id,
            "approver": self.approver,
            "revision": self.revision,
            "backup_path": self.backup_path,
            "stages": [result.to_dict() for result in self.stages],
        }
