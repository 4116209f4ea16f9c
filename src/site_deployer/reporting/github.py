"""GitHub commit statuses and deployment records.

Both channels are advisory: every public method logs and swallows failures
so that reporting can never fail the deployment it describes. The one
exception is :meth:`GitHubReporter.track_deployment`, which re-raises the
wrapped work's own exception after recording it.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

import requests

from ..config import BuildContext, GitHubConfig
from ..errors import DeployerError, ReportingError
from ..project import EnvironmentConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

COMMIT_STATES = ("pending", "success", "failure", "error")
DEPLOYMENT_STATES = ("in_progress", "success", "failure")

# Bearer 优先，失败后用旧的 token 前缀重试一次
AUTH_SCHEMES = ("Bearer", "token")
PERMISSION_CODES = (401, 403)


class GitHubReporter:
    """Posts deployment progress to the GitHub REST API."""

    def __init__(
        self,
        config: EnvironmentConfig,
        github: GitHubConfig,
        build: BuildContext,
        *,
        revision: Optional[str] = None,
        revision_resolver: Optional[Callable[[], Optional[str]]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.github = github
        self.build = build
        self.revision = revision
        self._revision_resolver = revision_resolver
        self.session = session or requests.Session()
        self.deployment_id: Optional[int] = None

    @property
    def repo_path(self) -> str:
        return f"{self.config.repo_owner}/{self.config.repo_name}"

    def _url(self, path: str) -> str:
        return f"{self.github.api_url.rstrip('/')}/repos/{self.repo_path}/{path}"

    # -- revision ---------------------------------------------------------

    def resolve_revision(self) -> Optional[str]:
        """Return the commit SHA, recovering it on demand when unknown."""
        if self.revision:
            return self.revision

        logger.warning("No Git commit SHA available, attempting to retrieve...")
        sha: Optional[str] = None
        if self._revision_resolver is not None:
            try:
                sha = self._revision_resolver()
            except DeployerError as exc:
                logger.warning("Direct git query failed: %s", exc)
        if not sha and self.build.git_commit:
            sha = self.build.git_commit

        if sha:
            self.revision = sha
            logger.info("Retrieved Git commit SHA: %s", sha)
        return self.revision

    # -- transport --------------------------------------------------------

    def _headers(self, scheme: str) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "User-Agent": self.github.user_agent,
            "Authorization": f"{scheme} {self.github.token}",
        }

    def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        passthrough: Iterable[int] = (),
    ) -> requests.Response:
        """POST with the primary auth scheme, retrying once with the fallback.

        Status codes in ``passthrough`` are returned to the caller as-is
        without trying the fallback scheme.
        """
        if not self.github.token:
            raise ReportingError("GitHub token is not configured")

        passthrough = tuple(passthrough)
        last_error = "no response"
        last_status: Optional[int] = None
        for attempt, scheme in enumerate(AUTH_SCHEMES):
            if attempt:
                logger.warning("Primary GitHub auth failed, trying fallback method...")
            try:
                response = self.session.post(
                    url,
                    json=payload,
                    headers=self._headers(scheme),
                    timeout=self.github.timeout,
                )
            except requests.RequestException as exc:
                last_error = str(exc)
                last_status = None
                continue

            if 200 <= response.status_code < 300 or response.status_code in passthrough:
                logger.debug("POST %s -> HTTP %s", url, response.status_code)
                return response
            last_status = response.status_code
            last_error = f"HTTP {response.status_code}: {response.text[:200]}"

        raise ReportingError(
            f"Both GitHub authentication methods failed ({last_error})",
            status_code=last_status,
        )

    # -- commit statuses --------------------------------------------------

    def update_commit_status(self, state: str, description: str) -> bool:
        """Post a commit status; returns whether it was accepted."""
        if state not in COMMIT_STATES:
            raise ValueError(f"Invalid commit status state: {state}")
        if not self.config.status_reporting_enabled:
            return False
        if not self.config.repo_owner:
            logger.warning("GitHub repository owner not configured, skipping status update")
            return False

        sha = self.resolve_revision()
        if not sha:
            logger.warning("Unable to retrieve Git commit SHA, skipping GitHub status update")
            return False

        logger.info("GitHub Status: %s - %s (%s @ %s)", state, description, self.repo_path, sha)
        payload = {
            "state": state,
            "target_url": self.build.build_url or None,
            "description": description,
            "context": self.config.status_context,
        }
        try:
            response = self._post(self._url(f"statuses/{sha}"), payload)
        except ReportingError as exc:
            logger.warning("Failed to update GitHub status: %s", exc)
            logger.info("GitHub status update failure won't affect the deployment")
            return False

        logger.info("GitHub status updated successfully (HTTP %s)", response.status_code)
        return True

    # -- deployments ------------------------------------------------------

    def create_deployment(self, environment: str, ref: Optional[str] = None) -> Optional[int]:
        """Create a deployment record and return its id, or ``None``."""
        if not self.config.repo_owner:
            logger.warning("GitHub repository owner not configured, skipping deployment creation")
            return None
        sha = self.resolve_revision()
        if not sha:
            logger.warning("No Git commit SHA available, skipping deployment creation")
            return None

        ref = ref or sha
        logger.info("Creating GitHub deployment for %s (ref %s)", environment, ref)
        payload = {
            "ref": ref,
            "environment": environment,
            "description": f"Deployment to {environment} environment via site-deployer",
            "auto_merge": False,
            "required_contexts": [],
        }
        try:
            response = self._post(self._url("deployments"), payload, passthrough=(422,))
        except ReportingError as exc:
            if exc.status_code in PERMISSION_CODES:
                logger.warning(
                    "GitHub deployment creation failed: token lacks 'repo' or 'deployments' permission"
                )
            else:
                logger.warning("Failed to create GitHub deployment: %s", exc)
            logger.info("GitHub deployment tracking is optional - continuing without it")
            return None

        if response.status_code == 422:
            logger.warning("GitHub API returned 422 - deployment may already exist")
            return None

        try:
            deployment_id = int(response.json()["id"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Unexpected deployment response from GitHub: %s", exc)
            return None

        logger.info("GitHub deployment created successfully (ID: %s)", deployment_id)
        return deployment_id

    def update_deployment_status(
        self,
        deployment_id: Optional[int],
        state: str,
        description: str,
        environment_url: Optional[str] = None,
    ) -> bool:
        if not deployment_id:
            return False
        if state not in DEPLOYMENT_STATES:
            raise ValueError(f"Invalid deployment state: {state}")

        logger.info("Updating deployment %s: %s", deployment_id, state)
        payload: Dict[str, Any] = {
            "state": state,
            "description": description,
            "log_url": f"{self.build.build_url}console" if self.build.build_url else None,
        }
        if environment_url:
            payload["environment_url"] = environment_url

        try:
            self._post(self._url(f"deployments/{deployment_id}/statuses"), payload)
        except ReportingError as exc:
            if exc.status_code in (*PERMISSION_CODES, 404):
                logger.warning(
                    "GitHub deployment status update failed: token lacks permissions or deployment not found"
                )
            else:
                logger.warning("Failed to update deployment status: %s", exc)
            return False

        logger.info("Deployment status updated: %s", state)
        return True

    def track_deployment(
        self,
        environment: str,
        work: Callable[[], T],
        *,
        ref: Optional[str] = None,
    ) -> T:
        """Run ``work`` inside a GitHub deployment record.

        The record is best effort; ``work`` always runs, and an exception from
        it is re-raised after the record is marked as failed.
        """
        if not self.config.deployment_tracking_enabled:
            return work()

        deployment_id = self.create_deployment(environment, ref)
        self.deployment_id = deployment_id
        if deployment_id:
            self.update_deployment_status(
                deployment_id, "in_progress", f"Deployment to {environment} is in progress..."
            )
        else:
            logger.info("GitHub deployment tracking unavailable - continuing deployment")

        try:
            result = work()
        except Exception as exc:
            if deployment_id:
                self.update_deployment_status(
                    deployment_id, "failure", f"Deployment to {environment} failed: {exc}"
                )
            raise

        if deployment_id:
            self.update_deployment_status(
                deployment_id,
                "success",
                f"Successfully deployed to {environment}",
                self.config.environment_url,
            )
        return result
