"""Backup snapshots of the live website and count-based retention."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from ..project import EnvironmentConfig
from ..utils.logging import get_logger, log_field, log_subsection

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"


@dataclass(frozen=True)
class BackupRecord:
    """One retained snapshot directory."""

    path: Path
    created_at: float

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def created(self) -> datetime:
        return datetime.fromtimestamp(self.created_at)


@dataclass
class CleanupResult:
    """Outcome of a retention pass."""

    kept: List[BackupRecord] = field(default_factory=list)
    removed: List[BackupRecord] = field(default_factory=list)
    failed: List[BackupRecord] = field(default_factory=list)


def _creation_time(path: Path) -> float:
    stat = path.stat()
    if os.name == "nt":
        # Windows 上 st_ctime 即创建时间（3.12 起为 st_birthtime）
        return getattr(stat, "st_birthtime", stat.st_ctime)
    return stat.st_mtime


def _unique_path(path: Path) -> Path:
    """Append ``_2``, ``_3``, ... until the name is free."""
    candidate = path
    suffix = 2
    while candidate.exists():
        candidate = path.with_name(f"{path.name}_{suffix}")
        suffix += 1
    return candidate


def _has_files(root: Path) -> bool:
    if not root.is_dir():
        return False
    return any(p.is_file() for p in root.rglob("*"))


class BackupManager:
    """Creates timestamped backups and evicts all but the newest N."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.now

    def backup_name(self, config: EnvironmentConfig, build_number: str) -> str:
        stamp = self._clock().strftime(TIMESTAMP_FORMAT)
        site = config.site_name or config.folder_website_name
        return f"{build_number}_{site}_{config.environment}_{stamp}"

    def create_backup(
        self, config: EnvironmentConfig, build_number: str
    ) -> Optional[BackupRecord]:
        """Copy the live website into a new backup directory.

        Returns ``None`` when there is nothing to back up.
        """
        source = config.website_path
        backups_dir = config.project_backups_path
        target = _unique_path(backups_dir / self.backup_name(config, build_number))

        log_subsection(logger, "Creating Backup")
        log_field(logger, "Source", source)
        log_field(logger, "Backup", target)

        backups_dir.mkdir(parents=True, exist_ok=True)

        if not _has_files(source):
            logger.info("No existing files to backup")
            return None

        shutil.copytree(source, target)
        # copytree 会复制源目录的 mtime；保留策略按 mtime 排序，须改为当前时间
        os.utime(target)
        file_count = sum(1 for p in target.rglob("*") if p.is_file())
        logger.info("Backup created with %d files at %s", file_count, target)
        return BackupRecord(path=target, created_at=_creation_time(target))

    def list_backups(self, config: EnvironmentConfig) -> List[BackupRecord]:
        """Return existing backups, newest first."""
        backups_dir = config.project_backups_path
        if not backups_dir.is_dir():
            return []
        records = [
            BackupRecord(path=child, created_at=_creation_time(child))
            for child in backups_dir.iterdir()
            if child.is_dir()
        ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records

    def cleanup_backups(self, config: EnvironmentConfig) -> CleanupResult:
        """Keep the newest ``max_backups_to_keep`` backups and delete the rest."""
        result = CleanupResult()
        if not config.cleanup_enabled:
            logger.info("Cleanup skipped (not enabled for this project)")
            return result

        log_subsection(logger, "Backup Cleanup")
        backups_dir = config.project_backups_path
        if not backups_dir.is_dir():
            logger.info("No backup directory found: %s", backups_dir)
            return result

        keep = config.max_backups_to_keep
        log_field(logger, "Cleanup strategy", f"Keep newest {keep} backup(s)")
        records = self.list_backups(config)
        result.kept = records[:keep]
        to_delete = records[keep:]

        if not to_delete:
            logger.info("No cleanup needed (%d backups found, keeping all)", len(records))
            return result

        logger.info(
            "Found %d backups, keeping newest %d, removing %d",
            len(records), keep, len(to_delete),
        )
        for record in to_delete:
            logger.info(
                "Removing old backup: %s (created: %s)",
                record.name, record.created.strftime("%Y-%m-%d %H:%M"),
            )
            try:
                shutil.rmtree(record.path)
            except OSError as exc:
                logger.warning("Failed to remove backup %s: %s", record.path, exc)
                result.failed.append(record)
            else:
                result.removed.append(record)

        logger.info("Cleaned up %d old backup(s)", len(result.removed))
        return result
