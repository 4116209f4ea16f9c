"""Git helpers."""

from .manager import GitCommandError, GitRepositoryManager

__all__ = ["GitCommandError", "GitRepositoryManager"]
