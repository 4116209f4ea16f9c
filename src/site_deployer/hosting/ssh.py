"""SSH session management built on Paramiko."""

from __future__ import annotations

import socket
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import paramiko

from ..errors import DeployerError
from .session import CommandResult


class SSHConnectionError(DeployerError):
    """Raised when an SSH connection cannot be established."""


@dataclass
class SSHCredentials:
    """Normalized credential payload from CLI/config."""

    host: str
    username: str
    port: int = 22
    auth_method: str = "password"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20

    def validate(self) -> None:
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")


class SSHSession:
    """Runs hosting commands on a remote Windows host over SSH.

    The argv list is rendered with Windows command-line quoting, one quoted
    token per argument, which is what the OpenSSH server's default
    ``cmd.exe`` shell expects.
    """

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        default_timeout: int = 120,
    ) -> None:
        self.credentials = credentials
        self.default_timeout = default_timeout
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
            else:
                connect_kwargs["key_filename"] = self.credentials.key_path
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(self, args: Sequence[str], *, timeout: Optional[int] = None) -> CommandResult:
        if not self._client:
            self.connect()
        assert self._client is not None

        argv = [str(a) for a in args]
        timeout = timeout or self.default_timeout
        command = subprocess.list2cmdline(argv)

        _, stdout, stderr = self._client.exec_command(command, timeout=timeout)
        stdout.channel.settimeout(float(timeout))
        try:
            exit_status = stdout.channel.recv_exit_status()
            stdout_text = stdout.read().decode("utf-8", errors="replace")
            stderr_text = stderr.read().decode("utf-8", errors="replace")
        except socket.timeout:
            return CommandResult(
                args=argv,
                stdout="",
                stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                exit_status=-1,
            )

        return CommandResult(
            args=argv,
            stdout=stdout_text.strip(),
            stderr=stderr_text.strip(),
            exit_status=exit_status,
        )
