"""Stage-based deployment orchestration.

- DeploymentOrchestrator: runs the fixed stage sequence and failure policy
- DeploymentRun/StageResult: the run record persisted after every stage
"""

from .models import STAGE_NAMES, DeploymentRun, RunStatus, StageOutcome, StageResult
from .orchestrator import DeploymentOrchestrator

__all__ = [
    "STAGE_NAMES",
    "DeploymentRun",
    "RunStatus",
    "StageOutcome",
    "StageResult",
    "DeploymentOrchestrator",
]
