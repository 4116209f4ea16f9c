"""Hosting surface abstraction and the IIS ``appcmd`` implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from ..config import DEFAULT_APPCMD_PATH
from ..errors import CommandError
from .session import CommandResult


class ServiceState(str, Enum):
    """Observed state of an app pool or site."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @classmethod
    def from_iis(cls, value: str) -> "ServiceState":
        normalized = value.strip().lower()
        if normalized == "started":
            return cls.RUNNING
        if normalized == "stopped":
            return cls.STOPPED
        return cls.UNKNOWN


class CommandSession(Protocol):
    def run(self, args: Sequence[str], *, timeout: Optional[int] = None) -> CommandResult:
        ...


class HostingBackend(ABC):
    """Operations the deployer needs from the web server."""

    @abstractmethod
    def app_pool_state(self, name: str) -> ServiceState:
        pass

    @abstractmethod
    def start_app_pool(self, name: str) -> None:
        pass

    @abstractmethod
    def stop_app_pool(self, name: str) -> None:
        pass

    @abstractmethod
    def recycle_app_pool(self, name: str) -> None:
        pass

    @abstractmethod
    def site_state(self, name: str) -> ServiceState:
        pass

    @abstractmethod
    def start_site(self, name: str) -> None:
        pass

    @abstractmethod
    def stop_site(self, name: str) -> None:
        pass

    @abstractmethod
    def site_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def site_physical_path(self, name: str) -> str:
        pass

    @abstractmethod
    def set_site_physical_path(self, name: str, path: str) -> None:
        pass

    @abstractmethod
    def site_app_pool(self, name: str) -> str:
        pass


class AppCmdBackend(HostingBackend):
    """Drives IIS through ``appcmd.exe``.

    Every identifier travels as its own argv element; nothing is spliced into
    a script.
    """

    def __init__(self, session: CommandSession, appcmd_path: str = DEFAULT_APPCMD_PATH) -> None:
        self.session = session
        self.appcmd_path = appcmd_path

    def app_pool_state(self, name: str) -> ServiceState:
        output = self._run("list", "apppool", f"/name:{name}", "/text:state")
        return ServiceState.from_iis(output)

    def start_app_pool(self, name: str) -> None:
        self._run("start", "apppool", f"/apppool.name:{name}")

    def stop_app_pool(self, name: str) -> None:
        self._run("stop", "apppool", f"/apppool.name:{name}")

    def recycle_app_pool(self, name: str) -> None:
        self._run("recycle", "apppool", f"/apppool.name:{name}")

    def site_state(self, name: str) -> ServiceState:
        output = self._run("list", "site", f"/name:{name}", "/text:state")
        return ServiceState.from_iis(output)

    def start_site(self, name: str) -> None:
        self._run("start", "site", f"/site.name:{name}")

    def stop_site(self, name: str) -> None:
        self._run("stop", "site", f"/site.name:{name}")

    def site_exists(self, name: str) -> bool:
        result = self.session.run(self._argv("list", "site", f"/name:{name}"))
        return result.ok and bool(result.stdout.strip())

    def site_physical_path(self, name: str) -> str:
        return self._run("list", "vdir", f"/vdir.name:{name}/", "/text:physicalPath")

    def set_site_physical_path(self, name: str, path: str) -> None:
        self._run("set", "vdir", f"/vdir.name:{name}/", f"/physicalPath:{path}")

    def site_app_pool(self, name: str) -> str:
        return self._run("list", "app", f"/app.name:{name}/", "/text:applicationPool")

    def _argv(self, *args: str) -> List[str]:
        return [self.appcmd_path, *args]

    def _run(self, *args: str) -> str:
        argv = self._argv(*args)
        result = self.session.run(argv)
        if not result.ok:
            raise CommandError(argv, result.exit_status, result.stderr or result.stdout)
        return result.stdout.strip()
