"""Human approval gate in front of a deployment."""

from __future__ import annotations

from typing import Optional

from ..config import BuildContext
from ..errors import ApprovalRejected
from ..project import EnvironmentConfig
from ..utils.logging import get_logger, log_field, log_section, log_subsection
from .handler import InteractionRequest, QuestionCategory, UserInteractionHandler

logger = get_logger(__name__)

MANAGER_GROUP = "managers"
DBA_GROUP = "dba"

_MANAGER_TEMPLATE = """
⚠️ MANAGER APPROVAL REQUIRED ⚠️

Deployment to: {environment}
Project: {project}
Build Number: {build}

Please review and approve this deployment.
"""

_DBA_TEMPLATE = """
⚠️ DBA APPROVAL REQUIRED ⚠️

Deployment to: {environment}
Project: {project}
Build Number: {build}

This deployment may affect database operations.
Please review and approve this deployment.
"""


class ApprovalGate:
    """Blocks until an operator approves or rejects; there is no timeout."""

    def __init__(self, handler: UserInteractionHandler) -> None:
        self.handler = handler

    def request_approval(
        self,
        message: str,
        approver_group: str,
        ok_text: str = "Approve",
    ) -> str:
        """Ask for approval and return the approver identity.

        Raises :class:`ApprovalRejected` if the request is declined or
        cancelled.
        """
        log_subsection(logger, "Deployment Approval Request")
        log_field(logger, "Message", message.strip().splitlines()[0] if message.strip() else "")
        log_field(logger, "Approver Group", approver_group)

        response = self.handler.ask(
            InteractionRequest(
                question=message,
                category=QuestionCategory.APPROVAL,
                ok_text=ok_text,
                approver_group=approver_group,
            )
        )
        if response.cancelled:
            raise ApprovalRejected("Deployment approval was cancelled")
        if not response.confirmed:
            raise ApprovalRejected(
                f"Deployment rejected by {response.responder or 'unknown'}"
            )

        approver = response.responder or "unknown"
        logger.info("Deployment approved by: %s", approver)
        self.handler.notify(f"Deployment approved by {approver}", "success")
        return approver

    def request_manager_approval(
        self, config: EnvironmentConfig, build: BuildContext
    ) -> str:
        return self._templated("MANAGER", _MANAGER_TEMPLATE, MANAGER_GROUP, config, build)

    def request_dba_approval(
        self, config: EnvironmentConfig, build: BuildContext
    ) -> str:
        return self._templated("DBA", _DBA_TEMPLATE, DBA_GROUP, config, build)

    def approve_deployment(
        self, config: EnvironmentConfig, build: BuildContext, message: Optional[str] = None
    ) -> str:
        """Approval for a configured project, using its message and group."""
        text = message or config.approval_message or (
            f"Deploy {config.project_name} build #{build.build_number} "
            f"to {config.environment}?"
        )
        return self.request_approval(text, config.approver_group, "Deploy")

    def _templated(
        self,
        kind: str,
        template: str,
        group: str,
        config: EnvironmentConfig,
        build: BuildContext,
    ) -> str:
        log_section(logger, f"{kind} APPROVAL REQUIRED")
        log_field(logger, "Environment", config.environment)
        log_field(logger, "Approval Type", f"{kind.title()} Approval")
        message = template.format(
            environment=config.environment,
            project=config.project_name,
            build=build.build_number,
        )
        approver = self.request_approval(message, group, "Approve Deployment")
        logger.info("%s approval granted by: %s", kind.title(), approver)
        return approver
