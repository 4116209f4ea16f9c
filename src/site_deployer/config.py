"""Configuration loading utilities for site-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

DEFAULT_APPCMD_PATH = r"C:\Windows\System32\inetsrv\appcmd.exe"


@dataclass
class GitHubConfig:
    """Connection settings for commit statuses and deployment records."""

    api_url: str = "https://api.github.com"
    token: Optional[str] = None
    user_agent: str = "site-deployer/1.0"
    timeout: int = 30


@dataclass
class NotificationConfig:
    """Webhook settings for the post-run notification."""

    webhook_url: Optional[str] = None
    avatar_url: Optional[str] = None
    username: str = "Deployer"


@dataclass
class HostingConfig:
    """How hosting commands reach the web server."""

    mode: str = "local"  # "local" | "ssh"
    appcmd_path: str = DEFAULT_APPCMD_PATH
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    auth_method: Optional[str] = None
    password: Optional[str] = None
    key_path: Optional[str] = None


@dataclass
class DeploymentSettings:
    """Settings related to deployment execution."""

    log_dir: str = "deploy_logs"
    workspace_root: str = ".site-deployer/workspace"
    artifact_archive_root: Optional[str] = None
    artifact_channel_root: Optional[str] = None
    poll_interval: float = 2.0            # 服务状态轮询间隔（秒）
    stop_timeout: float = 30.0            # 停止服务的最长等待（秒）
    maintenance_settle_seconds: float = 3.0


@dataclass
class InteractionConfig:
    """Configuration for the approval prompt."""

    mode: str = "cli"  # "cli" | "auto"
    auto_approve: bool = False


@dataclass
class AppConfig:
    """Top-level configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    hosting: HostingConfig = field(default_factory=HostingConfig)
    deployment: DeploymentSettings = field(default_factory=DeploymentSettings)
    interaction: InteractionConfig = field(default_factory=InteractionConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        github_payload = _strip_comments(payload.get("github", {}) or {})
        notification_payload = _strip_comments(payload.get("notification", {}) or {})
        hosting_payload = _strip_comments(payload.get("hosting", {}) or {})
        deployment_payload = _strip_comments(payload.get("deployment", {}) or {})
        interaction_payload = _strip_comments(payload.get("interaction", {}) or {})

        return cls(
            github=GitHubConfig(**{**GitHubConfig().__dict__, **github_payload}),
            notification=NotificationConfig(
                **{**NotificationConfig().__dict__, **notification_payload}
            ),
            hosting=HostingConfig(**{**HostingConfig().__dict__, **hosting_payload}),
            deployment=DeploymentSettings(
                **{**DeploymentSettings().__dict__, **deployment_payload}
            ),
            interaction=InteractionConfig(
                **{**InteractionConfig().__dict__, **interaction_payload}
            ),
        )


@dataclass(frozen=True)
class BuildContext:
    """CI metadata captured once at start-up.

    Everything the orchestrator needs to know about the surrounding build
    (job identity, who triggered it, which commit) is read here and then
    passed around explicitly.
    """

    job_name: str = "Unknown Job"
    build_number: str = "0"
    build_url: str = ""
    build_user_id: Optional[str] = None
    build_user: Optional[str] = None
    change_author: Optional[str] = None
    git_author_name: Optional[str] = None
    git_committer_name: Optional[str] = None
    git_commit: Optional[str] = None
    git_branch: Optional[str] = None
    causes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def branch_name(self) -> Optional[str]:
        if not self.git_branch:
            return None
        branch = self.git_branch
        if branch.startswith("origin/"):
            branch = branch[len("origin/"):]
        return branch


def _strip_comments(payload: Dict[str, Any]) -> Dict[str, Any]:
    # 过滤掉以下划线开头的注释字段
    return {k: v for k, v in payload.items() if not k.startswith("_")}


def load_build_context(environ: Optional[Mapping[str, str]] = None) -> BuildContext:
    """Read CI metadata from ``environ`` (defaults to the process environment).

    Trigger causes are optional and may be provided as a JSON array in
    ``DEPLOY_BUILD_CAUSES``; malformed JSON is ignored.
    """
    env = os.environ if environ is None else environ

    causes: List[Dict[str, Any]] = []
    raw_causes = env.get("DEPLOY_BUILD_CAUSES")
    if raw_causes:
        try:
            parsed = json.loads(raw_causes)
        except json.JSONDecodeError:
            parsed = []
        if isinstance(parsed, list):
            causes = [c for c in parsed if isinstance(c, dict)]

    return BuildContext(
        job_name=env.get("JOB_NAME") or "Unknown Job",
        build_number=env.get("BUILD_NUMBER") or "0",
        build_url=env.get("BUILD_URL") or "",
        build_user_id=env.get("BUILD_USER_ID") or None,
        build_user=env.get("BUILD_USER") or None,
        change_author=env.get("CHANGE_AUTHOR") or None,
        git_author_name=env.get("GIT_AUTHOR_NAME") or None,
        git_committer_name=env.get("GIT_COMMITTER_NAME") or None,
        git_commit=env.get("GIT_COMMIT") or None,
        git_branch=env.get("GIT_BRANCH") or None,
        causes=causes,
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - SITE_DEPLOYER_GITHUB_TOKEN or GITHUB_TOKEN: GitHub API token
    - SITE_DEPLOYER_WEBHOOK_URL or WEBHOOK_URL: notification webhook
    - SITE_DEPLOYER_AVATAR_URL or AVATAR_URL: notification avatar
    - SITE_DEPLOYER_SSH_HOST: SSH host for remote hosting commands
    - SITE_DEPLOYER_SSH_PORT: SSH port
    - SITE_DEPLOYER_SSH_USERNAME: SSH username
    - SITE_DEPLOYER_SSH_PASSWORD: SSH password
    - SITE_DEPLOYER_SSH_KEY_PATH: Path to SSH private key
    """

    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = _DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: AppConfig) -> None:
    if not config.github.token:
        config.github.token = os.getenv("SITE_DEPLOYER_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN")

    env_webhook = os.getenv("SITE_DEPLOYER_WEBHOOK_URL") or os.getenv("WEBHOOK_URL")
    if env_webhook:
        config.notification.webhook_url = env_webhook

    env_avatar = os.getenv("SITE_DEPLOYER_AVATAR_URL") or os.getenv("AVATAR_URL")
    if env_avatar:
        config.notification.avatar_url = env_avatar

    env_host = os.getenv("SITE_DEPLOYER_SSH_HOST")
    if env_host:
        config.hosting.host = env_host
        config.hosting.mode = "ssh"

    env_port = os.getenv("SITE_DEPLOYER_SSH_PORT")
    if env_port:
        config.hosting.port = int(env_port)

    env_username = os.getenv("SITE_DEPLOYER_SSH_USERNAME")
    if env_username:
        config.hosting.username = env_username

    env_password = os.getenv("SITE_DEPLOYER_SSH_PASSWORD")
    if env_password:
        config.hosting.password = env_password
        config.hosting.auth_method = "password"

    env_key_path = os.getenv("SITE_DEPLOYER_SSH_KEY_PATH")
    if env_key_path:
        config.hosting.key_path = env_key_path
        config.hosting.auth_method = "key"
