"""Local command execution session."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


@dataclass
class CommandResult:
    """Result of executing a hosting command."""

    args: List[str]
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def command(self) -> str:
        return subprocess.list2cmdline(self.args)


class LocalSession:
    """
    Runs hosting commands on this machine.

    Commands are argv lists handed straight to ``subprocess.run`` without a
    shell, so values such as site names are never parsed as script text.
    """

    def __init__(self, working_dir: Optional[str] = None, default_timeout: int = 120) -> None:
        self.working_dir = working_dir
        self.default_timeout = default_timeout
        self._connected = False

    def connect(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = True

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""
        self._connected = False

    def __enter__(self) -> "LocalSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(self, args: Sequence[str], *, timeout: Optional[int] = None) -> CommandResult:
        argv = [str(a) for a in args]
        timeout = timeout or self.default_timeout
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                args=argv,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
            )
        except OSError as exc:
            return CommandResult(args=argv, stdout="", stderr=str(exc), exit_status=-1)

        return CommandResult(
            args=argv,
            stdout=completed.stdout.strip(),
            stderr=completed.stderr.strip(),
            exit_status=completed.returncode,
        )
