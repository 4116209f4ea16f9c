"""Build artifact retrieval and deployment."""

from .transfer import ArtifactArchive, ArtifactChannelStore, ArtifactTransfer, TransferResult

__all__ = ["ArtifactArchive", "ArtifactChannelStore", "ArtifactTransfer", "TransferResult"]
