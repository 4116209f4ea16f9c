"""Typed project configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, List, Mapping, Optional

from ..errors import ConfigurationError

# 构建产物的通用通道名（按优先级）
DOTNET_DEFAULT_CHANNEL = "multi-server-build-artifacts"
NODE_DEFAULT_CHANNEL = "multi-server-react-build-artifacts"


class BuildVariant(str, Enum):
    """Project technology class, decided once at resolution time."""

    DOTNET = "dotnet"
    NODE = "node"
    GENERIC = "generic"

    @property
    def label(self) -> str:
        return {
            BuildVariant.DOTNET: ".NET Application",
            BuildVariant.NODE: "React Application",
            BuildVariant.GENERIC: "Generic Web Application",
        }[self]


@dataclass(frozen=True)
class EnvironmentConfig:
    """Everything one deployment run needs to know about its target.

    Built once by :func:`site_deployer.project.resolve_environment` and never
    mutated afterwards.
    """

    project_name: str
    variant: BuildVariant
    folder_website_name: str
    website_root: str
    backups_root: str
    environment: str = "UAT"
    project_index: int = 0

    site_name: str = ""
    app_pool_name: str = ""
    stop_app_pool: bool = False
    start_app_pool: bool = False
    stop_site: bool = False
    start_site: bool = False

    cleanup_enabled: bool = False
    max_backups_to_keep: int = 3

    maintenance_mode_enabled: bool = False
    maintenance_path: str = ""

    publish_path: str = "publish"
    artifact_name: str = ""
    build_agent_label: str = "built-in"
    deploy_agent_label: str = "built-in"
    toolchain_version: Optional[str] = None
    build_configuration: Optional[str] = None

    status_reporting_enabled: bool = False
    deployment_tracking_enabled: bool = False
    repo_owner: Optional[str] = None
    repo_name: Optional[str] = None
    branch: str = "develop"
    status_context: str = ""
    deployment_environment: str = ""
    environment_url: str = ""

    approval_required: bool = False
    approver_group: str = "deployers"
    approval_message: Optional[str] = None

    webhook_url: Optional[str] = None
    avatar_url: Optional[str] = None
    notifier_username: Optional[str] = None

    source: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        problems = []
        if self.manage_app_pool and not self.app_pool_name.strip():
            problems.append("app pool management enabled but app_pool_name is not defined")
        if self.manage_site and not self.site_name.strip():
            problems.append("site management enabled but iis_website_name is not defined")
        if self.cleanup_enabled and self.max_backups_to_keep < 1:
            problems.append("cleanup enabled but max_backups_to_keep must be at least 1")
        if problems:
            raise ConfigurationError("Invalid environment configuration", problems=problems)
        # frozen dataclass: 用 object.__setattr__ 冻结原始数据
        object.__setattr__(self, "source", MappingProxyType(dict(self.source)))

    @property
    def manage_app_pool(self) -> bool:
        return self.stop_app_pool or self.start_app_pool

    @property
    def manage_site(self) -> bool:
        return self.stop_site or self.start_site

    @property
    def manages_services(self) -> bool:
        return self.manage_app_pool or self.manage_site

    @property
    def website_path(self) -> Path:
        return Path(self.website_root) / self.folder_website_name

    @property
    def project_backups_path(self) -> Path:
        return Path(self.backups_root) / self.folder_website_name

    @property
    def artifact_channels(self) -> List[str]:
        """Channel names to try when the primary artifact copy fails."""
        names: List[str] = []
        for name in (self.artifact_name, DOTNET_DEFAULT_CHANNEL, NODE_DEFAULT_CHANNEL):
            if name and name not in names:
                names.append(name)
        return names
