"""Project descriptor parsing and validation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors import ConfigurationError
from ..utils.logging import get_logger, log_field, log_subsection
from .models import BuildVariant, EnvironmentConfig

logger = get_logger(__name__)

if os.name == "nt":
    DEFAULT_PUBLISH_ROOT = r"D:\Publish"
    DEFAULT_MAINTENANCE_PATH = r"D:\Maintenance"
else:
    DEFAULT_PUBLISH_ROOT = "/srv/publish"
    DEFAULT_MAINTENANCE_PATH = "/srv/maintenance"

DEFAULT_BASE_DOMAIN = "example.com"
DEFAULT_RETENTION = 3

_COMMON_ATTRIBUTES = [
    "start_iis", "stop_iis", "start_app_pool", "stop_app_pool", "is_cleanup",
]

REQUIRED_ATTRIBUTES: Dict[BuildVariant, List[str]] = {
    BuildVariant.DOTNET: [
        "project_name", "folder_website_name", "dotnet_version",
        "is_run_build", "is_run_test", *_COMMON_ATTRIBUTES,
    ],
    BuildVariant.NODE: [
        "node_version", "iis_website_name", "folder_website_name", *_COMMON_ATTRIBUTES,
    ],
    BuildVariant.GENERIC: ["folder_website_name", *_COMMON_ATTRIBUTES],
}

# 新字段优先，其次是旧字段
RETENTION_FIELDS = ("max_backups_to_keep", "amount_files_delete")

Descriptor = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


def load_descriptor(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read a JSON project descriptor from disk and normalize it."""
    descriptor_path = Path(path)
    if not descriptor_path.is_file():
        raise ConfigurationError(f"Project descriptor not found: {descriptor_path}")

    text = descriptor_path.read_text(encoding="utf-8")
    if not text.strip():
        raise ConfigurationError(f"Project descriptor is empty: {descriptor_path}")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Invalid JSON format in project descriptor {descriptor_path}: {exc}"
        ) from exc
    return normalize_descriptor(data)


def normalize_descriptor(data: Any) -> List[Dict[str, Any]]:
    """Return the descriptor as a list of project objects."""
    if isinstance(data, list):
        if not all(isinstance(item, Mapping) for item in data):
            raise ConfigurationError("Every project entry in the descriptor must be an object")
        logger.info("Descriptor loaded (array format): %d project(s)", len(data))
        return [dict(item) for item in data]
    if isinstance(data, Mapping):
        logger.info("Descriptor loaded (single object format)")
        return [dict(data)]
    raise ConfigurationError(f"Unsupported descriptor format: {type(data).__name__}")


def detect_variant(project: Mapping[str, Any]) -> BuildVariant:
    if project.get("dotnet_version") is not None:
        return BuildVariant.DOTNET
    if project.get("node_version") is not None:
        return BuildVariant.NODE
    return BuildVariant.GENERIC


def required_attributes(variant: BuildVariant) -> List[str]:
    return list(REQUIRED_ATTRIBUTES[variant])


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _retention_count(project: Mapping[str, Any]) -> Tuple[Optional[str], Optional[int]]:
    """Return the retention field in use and its count.

    The count is ``None`` when the field is absent or not a positive integer.
    """
    for name in RETENTION_FIELDS:
        value = project.get(name)
        if _is_blank(value):
            continue
        try:
            count = int(value)
        except (TypeError, ValueError):
            return name, None
        return name, count if count >= 1 else None
    return None, None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def validate_project(project: Mapping[str, Any]) -> BuildVariant:
    """Check a raw project object, reporting every problem at once.

    Returns the detected variant. Raises :class:`ConfigurationError` listing
    all missing attributes and cross-field violations.
    """
    variant = detect_variant(project)
    missing = [name for name in required_attributes(variant) if _is_blank(project.get(name))]

    problems: List[str] = []
    if (_as_bool(project.get("start_app_pool")) or _as_bool(project.get("stop_app_pool"))) and _is_blank(
        project.get("app_pool_name")
    ):
        problems.append("app pool management enabled but app_pool_name is not defined")

    if (_as_bool(project.get("start_iis")) or _as_bool(project.get("stop_iis"))) and _is_blank(
        project.get("iis_website_name")
    ):
        problems.append("site management enabled but iis_website_name is not defined")

    if _as_bool(project.get("is_cleanup")):
        field_name, count = _retention_count(project)
        if field_name is None:
            problems.append("cleanup enabled but retention configuration is missing")
        elif count is None:
            problems.append(f"cleanup enabled but {field_name} must be a positive integer")

    if missing or problems:
        raise ConfigurationError(
            f"Invalid configuration for {variant.label} project",
            missing=missing,
            problems=problems,
        )
    return variant


def _environment_url(env_config: Mapping[str, Any], project_name: str, environment: str) -> str:
    explicit = env_config.get("environment_url")
    if explicit:
        return str(explicit)
    domain = env_config.get("base_domain") or DEFAULT_BASE_DOMAIN
    env_lower = environment.lower()
    project_lower = project_name.lower()
    if env_lower in ("production", "prod"):
        return f"https://{project_lower}.{domain}"
    return f"https://{project_lower}.{env_lower}.{domain}"


def resolve_environment(
    descriptor: Descriptor, index: int = 0, *, strict: bool = True
) -> EnvironmentConfig:
    """Build the immutable :class:`EnvironmentConfig` for one project.

    With ``strict=False`` the project is not validated here, so a deployment
    run can still report an invalid descriptor from its own validation stage.
    Service management that names no site or app pool is switched off so the
    configuration can be built at all.
    """
    projects = normalize_descriptor(descriptor)
    if not 0 <= index < len(projects):
        raise ConfigurationError(
            f"Project index {index} out of range (descriptor has {len(projects)} project(s))"
        )
    project = projects[index]
    variant = validate_project(project) if strict else detect_variant(project)
    env_config: Mapping[str, Any] = project.get("environment_config") or {}

    project_name = str(
        project.get("project_name")
        or project.get("iis_website_name")
        or project.get("folder_website_name")
        or ""
    )
    environment = str(env_config.get("environment") or "UAT")
    website_root = str(
        env_config.get("base_website_path") or Path(DEFAULT_PUBLISH_ROOT) / project_name
    )
    backups_root = str(env_config.get("base_backups_path") or Path(website_root) / "Backup")

    cleanup_enabled = _as_bool(project.get("is_cleanup"))
    _, retention = _retention_count(project)
    max_backups = retention if retention is not None else DEFAULT_RETENTION

    site_name = str(project.get("iis_website_name") or "")
    app_pool_name = str(project.get("app_pool_name") or "")
    stop_site, start_site = _as_bool(project.get("stop_iis")), _as_bool(project.get("start_iis"))
    stop_pool = _as_bool(project.get("stop_app_pool"))
    start_pool = _as_bool(project.get("start_app_pool"))
    if not strict:
        if not site_name.strip():
            stop_site = start_site = False
        if not app_pool_name.strip():
            stop_pool = start_pool = False

    if variant is BuildVariant.DOTNET:
        toolchain_version = str(project.get("dotnet_version"))
        build_configuration = str(env_config.get("configuration") or "Release")
        default_repo = project_name.lower()
    elif variant is BuildVariant.NODE:
        toolchain_version = str(project.get("node_version"))
        build_configuration = None
        default_repo = project_name
    else:
        toolchain_version = None
        build_configuration = None
        default_repo = project_name

    return EnvironmentConfig(
        project_name=project_name,
        variant=variant,
        project_index=index,
        folder_website_name=str(project.get("folder_website_name") or ""),
        website_root=website_root,
        backups_root=backups_root,
        environment=environment,
        site_name=site_name,
        app_pool_name=app_pool_name,
        stop_app_pool=stop_pool,
        start_app_pool=start_pool,
        stop_site=stop_site,
        start_site=start_site,
        cleanup_enabled=cleanup_enabled,
        max_backups_to_keep=max_backups,
        maintenance_mode_enabled=_as_bool(env_config.get("is_ma", False)),
        maintenance_path=str(env_config.get("ma_path") or DEFAULT_MAINTENANCE_PATH),
        publish_path=str(env_config.get("publish_path") or "publish"),
        artifact_name=str(env_config.get("artifact_name") or f"{project_name}-build-artifacts"),
        build_agent_label=str(env_config.get("build_agent_label") or "built-in"),
        deploy_agent_label=str(env_config.get("deploy_agent_label") or "built-in"),
        toolchain_version=toolchain_version,
        build_configuration=build_configuration,
        status_reporting_enabled=_as_bool(env_config.get("github_status_update", False)),
        deployment_tracking_enabled=_as_bool(env_config.get("github_deployments_update", False)),
        repo_owner=env_config.get("github_repo_owner") or None,
        repo_name=str(env_config.get("github_repo_name") or default_repo),
        branch=str(env_config.get("github_branch_name") or "develop"),
        status_context=str(
            env_config.get("github_status_context") or f"site-deployer/{environment.lower()}"
        ),
        deployment_environment=str(env_config.get("deployment_environment") or environment),
        environment_url=_environment_url(env_config, project_name, environment),
        approval_required=_as_bool(env_config.get("require_approval", False)),
        approver_group=str(env_config.get("approver_group") or "deployers"),
        approval_message=env_config.get("approval_message") or None,
        webhook_url=env_config.get("webhook_url") or None,
        avatar_url=env_config.get("avatar_url") or None,
        notifier_username=env_config.get("username") or None,
        source=project,
    )


def describe(config: EnvironmentConfig) -> None:
    """Log a summary of the resolved configuration."""
    log_subsection(logger, "Environment configuration")
    log_field(logger, "Project Name", config.project_name)
    log_field(logger, "Project type", config.variant.label)
    log_field(logger, "Environment", config.environment)
    log_field(logger, "Build Agent", config.build_agent_label)
    log_field(logger, "Deploy Agent", config.deploy_agent_label)
    if config.variant is BuildVariant.DOTNET:
        log_field(logger, ".NET Version", config.toolchain_version)
        log_field(logger, "Configuration", config.build_configuration)
    elif config.variant is BuildVariant.NODE:
        log_field(logger, "Node Version", config.toolchain_version)
    log_field(logger, "Website Path", config.website_path)
    log_field(logger, "Environment URL", config.environment_url)
