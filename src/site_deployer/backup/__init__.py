"""Backup creation and retention."""

from .manager import BackupManager, BackupRecord, CleanupResult

__all__ = ["BackupManager", "BackupRecord", "CleanupResult"]
