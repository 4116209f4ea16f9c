"""Fetching build artifacts into the workspace and copying them onto the site."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..config import BuildContext
from ..errors import TransferError
from ..project import EnvironmentConfig
from ..utils.logging import get_logger, log_field, log_subsection

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _count_files(root: Path) -> int:
    return sum(1 for p in root.rglob("*") if p.is_file())


@dataclass
class TransferResult:
    """Where the artifacts came from and where they landed."""

    method: str                 # "archive" | "channel"
    publish_dir: Path
    file_count: int
    channel: Optional[str] = None
    tried: List[str] = field(default_factory=list)


class ArtifactArchive:
    """Archived outputs of earlier builds, laid out as ``<root>/<job>/<build>/``."""

    def __init__(self, root: Optional[PathLike]) -> None:
        self.root = Path(root) if root else None

    def fetch(self, job: str, build: str, publish_path: str, target: Path) -> Path:
        if self.root is None:
            raise TransferError("Artifact archive is not configured")
        source = self.root / job / build / publish_path
        if not source.is_dir():
            raise TransferError(f"No archived artifacts at {source}")
        destination = target / publish_path
        shutil.copytree(source, destination, dirs_exist_ok=True)
        return destination


class ArtifactChannelStore:
    """Named artifact channels; each channel mirrors a workspace layout."""

    def __init__(self, root: Optional[PathLike]) -> None:
        self.root = Path(root) if root else None

    def retrieve(self, name: str, target: Path) -> Path:
        if self.root is None:
            raise TransferError("Artifact channel store is not configured")
        source = self.root / name
        if not source.is_dir():
            raise TransferError(f"Artifact channel '{name}' not found")
        shutil.copytree(source, target, dirs_exist_ok=True)
        return target


class ArtifactTransfer:
    """Primary archive copy with named-channel fallback, then verification."""

    def __init__(
        self,
        workspace: PathLike,
        archive: ArtifactArchive,
        channels: ArtifactChannelStore,
    ) -> None:
        self.workspace = Path(workspace)
        self.archive = archive
        self.channels = channels

    def fetch(self, config: EnvironmentConfig, build: BuildContext) -> TransferResult:
        """Bring the publish directory into the workspace.

        Raises :class:`TransferError` with every attempted channel when no
        source provides the artifacts.
        """
        log_subsection(logger, "Artifact Transfer")
        publish_dir = self.workspace / config.publish_path
        if publish_dir.exists():
            shutil.rmtree(publish_dir)
        self.workspace.mkdir(parents=True, exist_ok=True)

        log_field(logger, "Transfer method", "archive copy")
        try:
            self.archive.fetch(build.job_name, build.build_number, config.publish_path, self.workspace)
        except (TransferError, OSError) as exc:
            logger.warning("Archive copy failed (%s), trying fallback method", exc)
        else:
            logger.info("Artifacts transferred successfully via archive copy")
            return TransferResult("archive", publish_dir, self.verify(publish_dir))

        tried: List[str] = []
        for name in config.artifact_channels:
            tried.append(name)
            try:
                self.channels.retrieve(name, self.workspace)
            except (TransferError, OSError) as exc:
                logger.info("Channel '%s' unavailable: %s", name, exc)
                continue
            logger.info("Artifacts transferred successfully via channel: %s", name)
            return TransferResult(
                "channel", publish_dir, self.verify(publish_dir), channel=name, tried=tried
            )

        raise TransferError(
            f"Failed to transfer build artifacts (tried: {', '.join(tried)})", tried=tried
        )

    def verify(self, publish_dir: Path) -> int:
        log_subsection(logger, "Artifact Verification")
        if not publish_dir.is_dir():
            raise TransferError(f"Artifact directory not found: {publish_dir}")
        count = _count_files(publish_dir)
        log_field(logger, "Artifacts found", f"{count} files")
        if count == 0:
            logger.warning("Artifact directory %s is empty", publish_dir)
        return count

    def deploy(self, config: EnvironmentConfig, publish_dir: Path) -> int:
        """Copy the publish directory contents over the live website."""
        target = config.website_path
        log_subsection(logger, "Deploying Files")
        log_field(logger, "Source", publish_dir)
        log_field(logger, "Target", target)
        try:
            target.mkdir(parents=True, exist_ok=True)
            shutil.copytree(publish_dir, target, dirs_exist_ok=True)
        except OSError as exc:
            raise TransferError(f"Failed to copy artifacts to {target}: {exc}") from exc
        count = _count_files(publish_dir)
        logger.info("Deployed %d files to %s", count, target)
        return count

    def transfer(self, config: EnvironmentConfig, build: BuildContext) -> TransferResult:
        result = self.fetch(config, build)
        self.deploy(config, result.publish_dir)
        return result
