"""Read-only queries against a git checkout."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional

from ..errors import DeployerError


class GitCommandError(DeployerError):
    """Raised when a git command fails."""

    def __init__(self, command: list[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}")


class GitRepositoryManager:
    """Wraps the `git` CLI for the few lookups the deployer needs."""

    def __init__(self, git_binary: str = "git") -> None:
        self.git_binary = git_binary

    def head_sha(self, repo_dir: Path) -> str:
        return self._run(["rev-parse", "HEAD"], cwd=repo_dir).strip()

    def current_branch(self, repo_dir: Path) -> str:
        return self._run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_dir).strip()

    def _run(self, args: list[str], cwd: Optional[Path] = None) -> str:
        command = [self.git_binary] + args
        try:
            process = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise GitCommandError(command, -1, str(exc)) from exc
        if process.returncode != 0:
            raise GitCommandError(command, process.returncode, process.stderr.strip())
        return process.stdout
