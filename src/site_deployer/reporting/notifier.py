"""Post-run webhook notification (Discord embed format)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from ..config import BuildContext, NotificationConfig
from ..errors import DeployerError
from ..project import EnvironmentConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USERNAME = "Deployer"


@dataclass(frozen=True)
class Severity:
    color: int
    emoji: str


SEVERITIES: Dict[str, Severity] = {
    "SUCCESS": Severity(3066993, "✅"),
    "FAILURE": Severity(15158332, "❌"),
    "WARNING": Severity(16776960, "⚠️"),
}
INFO_SEVERITY = Severity(3447003, "ℹ️")


def severity_for(status: Optional[str]) -> Severity:
    return SEVERITIES.get((status or "").upper(), INFO_SEVERITY)


class TriggerType(str, Enum):
    MANUAL = "Manual"
    PR = "GitHub PR"
    PUSH = "GitHub Push"
    BRANCH_MERGE = "Branch Merge"
    POLLING = "SCM Polling"
    TIMER = "Timer"
    REMOTE = "Remote"
    UPSTREAM = "Upstream"
    AUTOMATED = "Automated"


# 按原因类名片段匹配，先匹配者优先
_CAUSE_TRIGGERS = (
    ("UserIdCause", TriggerType.MANUAL),
    ("GitHubPullRequestCause", TriggerType.PR),
    ("GitHubPushCause", TriggerType.PUSH),
    ("BranchEventCause", TriggerType.BRANCH_MERGE),
    ("SCMTrigger", TriggerType.POLLING),
    ("TimerTrigger", TriggerType.TIMER),
    ("RemoteCause", TriggerType.REMOTE),
    ("UpstreamCause", TriggerType.UPSTREAM),
)

_CAUSE_AUTHOR_KEYS = (
    ("UserIdCause", ("userName", "userId")),
    ("GitHubPullRequestCause", ("pullRequestAuthor", "author")),
    ("GitHubPushCause", ("pushedBy", "commitAuthor")),
    ("BranchEventCause", ("author",)),
)


def _cause_class(cause: Mapping[str, Any]) -> str:
    return str(cause.get("_class") or "")


def detect_deployer(build: BuildContext) -> str:
    """Best guess at who started the run."""
    if build.build_user_id:
        return build.build_user_id
    if build.build_user:
        return build.build_user

    for cause in build.causes:
        class_name = _cause_class(cause)
        for fragment, keys in _CAUSE_AUTHOR_KEYS:
            if fragment in class_name:
                for key in keys:
                    if cause.get(key):
                        return str(cause[key])
                break

    for candidate in (build.change_author, build.git_author_name, build.git_committer_name):
        if candidate:
            return candidate
    return "System"


def detect_trigger(build: BuildContext) -> TriggerType:
    for cause in build.causes:
        class_name = _cause_class(cause)
        for fragment, trigger in _CAUSE_TRIGGERS:
            if fragment in class_name:
                return trigger

    if build.build_user_id or build.build_user:
        return TriggerType.MANUAL
    if build.change_author:
        return TriggerType.PR
    if build.git_author_name or build.git_committer_name:
        return TriggerType.PUSH
    return TriggerType.AUTOMATED


def format_duration(seconds: float) -> str:
    total = max(int(seconds), 0)
    minutes, remaining = divmod(total, 60)
    if minutes:
        return f"{minutes}m {remaining}s"
    return f"{remaining}s"


def build_message(
    build: BuildContext, status: str, duration_seconds: float, branch: Optional[str] = None
) -> str:
    """Render the plain-text body of the notification.

    ``branch`` is used when the CI environment does not name the branch.
    """
    succeeded = status.upper() == "SUCCESS"
    emoji = "✅" if succeeded else "❌"
    status_text = "succeeded" if succeeded else status.lower()

    deployer = detect_deployer(build)
    branch = build.branch_name or branch
    if branch:
        deployer = f"{deployer} ({branch})"

    lines = [
        f"{emoji} Deploy {status_text}",
        f"Application: {build.job_name}",
        f"Build #{build.build_number}",
        f"Duration: {format_duration(duration_seconds)}",
        f"Deployed by: {deployer}",
        f"Trigger: {detect_trigger(build).value}",
        f"URL: {build.build_url or 'No URL'}",
    ]
    return "\n".join(lines)


class DiscordNotifier:
    """Sends a single embed to a webhook; failures are logged only."""

    def __init__(
        self,
        settings: NotificationConfig,
        config: Optional[EnvironmentConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
        clock: Optional[Callable[[], datetime]] = None,
        branch_resolver: Optional[Callable[[], str]] = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._branch_resolver = branch_resolver

    # 项目级覆盖优先于全局设置
    @property
    def webhook_url(self) -> Optional[str]:
        if self.config is not None and self.config.webhook_url:
            return self.config.webhook_url
        return self.settings.webhook_url

    @property
    def avatar_url(self) -> Optional[str]:
        if self.config is not None and self.config.avatar_url:
            return self.config.avatar_url
        return self.settings.avatar_url

    @property
    def username(self) -> str:
        if self.config is not None and self.config.notifier_username:
            return self.config.notifier_username
        return self.settings.username or DEFAULT_USERNAME

    def build_payload(self, message: str, status: str) -> Dict[str, Any]:
        severity = severity_for(status)
        timestamp = self._clock().astimezone(timezone.utc)
        payload: Dict[str, Any] = {
            "username": self.username,
            "embeds": [
                {
                    "title": f"{severity.emoji} [{(status or 'INFO').upper()}]",
                    "description": message,
                    "color": severity.color,
                    "timestamp": timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
                }
            ],
        }
        if self.avatar_url:
            payload["avatar_url"] = self.avatar_url
        return payload

    def send(self, message: str, status: str) -> bool:
        url = self.webhook_url
        if not url or not url.strip():
            logger.info("Webhook URL not set, skipping notification")
            return False

        try:
            response = self.session.post(
                url, json=self.build_payload(message, status), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to send notification: %s", exc)
            return False

        logger.info("Notification sent successfully")
        return True

    def resolve_branch(self, build: BuildContext) -> Optional[str]:
        if build.branch_name or self._branch_resolver is None:
            return build.branch_name
        try:
            branch = self._branch_resolver()
        except DeployerError as exc:
            logger.debug("Could not determine branch from checkout: %s", exc)
            return None
        # detached HEAD 时 git 返回 "HEAD"
        return branch if branch and branch != "HEAD" else None

    def notify(self, build: BuildContext, status: str, duration_seconds: float) -> bool:
        message = build_message(build, status, duration_seconds, self.resolve_branch(build))
        logger.info("=== Notification Message ===")
        for line in message.splitlines():
            logger.info("%s", line)
        return self.send(message, status)
