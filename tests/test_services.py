"""Tests for the service lifecycle controller and the appcmd backend."""

from typing import Dict, List, Optional, Sequence, Set

import pytest

from site_deployer.errors import CommandError, ServiceControlError
from site_deployer.hosting import (
    AppCmdBackend,
    CommandResult,
    HostingBackend,
    MaintenanceState,
    ServiceController,
    ServiceState,
    ServiceUnit,
    UnitKind,
)
from site_deployer.project import resolve_environment


class FakeBackend(HostingBackend):
    """In-memory IIS: records every state-changing call."""

    def __init__(self) -> None:
        self.pools: Dict[str, ServiceState] = {}
        self.sites: Dict[str, ServiceState] = {}
        self.paths: Dict[str, str] = {}
        self.site_pools: Dict[str, str] = {}
        self.stuck: Set[str] = set()
        self.failing: Set[str] = set()
        self.calls: List[tuple] = []

    def _change(self, table, action, name, state):
        self.calls.append((action, name))
        if name in self.failing:
            raise CommandError(["appcmd", action, name], 1, "access denied")
        if name not in self.stuck:
            table[name] = state

    def app_pool_state(self, name: str) -> ServiceState:
        return self.pools.get(name, ServiceState.UNKNOWN)

    def start_app_pool(self, name: str) -> None:
        self._change(self.pools, "start_pool", name, ServiceState.RUNNING)

    def stop_app_pool(self, name: str) -> None:
        self._change(self.pools, "stop_pool", name, ServiceState.STOPPED)

    def recycle_app_pool(self, name: str) -> None:
        self.calls.append(("recycle_pool", name))
        if name in self.failing:
            raise CommandError(["appcmd", "recycle", name], 1, "not running")

    def site_state(self, name: str) -> ServiceState:
        return self.sites.get(name, ServiceState.UNKNOWN)

    def start_site(self, name: str) -> None:
        self._change(self.sites, "start_site", name, ServiceState.RUNNING)

    def stop_site(self, name: str) -> None:
        self._change(self.sites, "stop_site", name, ServiceState.STOPPED)

    def site_exists(self, name: str) -> bool:
        return name in self.sites

    def site_physical_path(self, name: str) -> str:
        return self.paths[name]

    def set_site_physical_path(self, name: str, path: str) -> None:
        self.calls.append(("set_path", name))
        self.paths[name] = path

    def site_app_pool(self, name: str) -> str:
        return self.site_pools.get(name, "")


class Sleeper:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def backend():
    fake = FakeBackend()
    fake.pools["ShopPool"] = ServiceState.RUNNING
    fake.sites["ShopSite"] = ServiceState.RUNNING
    fake.site_pools["ShopSite"] = "ShopPool"
    return fake


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def controller(backend, sleeper):
    return ServiceController(backend, poll_interval=2.0, stop_timeout=30.0, settle_seconds=3.0, sleep=sleeper)


def _config(tmp_path, **flags):
    project = {
        "folder_website_name": "shop",
        "iis_website_name": "ShopSite",
        "app_pool_name": "ShopPool",
        "start_iis": True,
        "stop_iis": True,
        "start_app_pool": True,
        "stop_app_pool": True,
        "is_cleanup": False,
        "environment_config": {"base_website_path": str(tmp_path / "www")},
    }
    project.update(flags)
    return resolve_environment(project)


POOL = ServiceUnit(UnitKind.APP_POOL, "ShopPool")
SITE = ServiceUnit(UnitKind.SITE, "ShopSite")


class TestStop:
    def test_already_stopped_is_noop(self, controller, backend):
        backend.pools["ShopPool"] = ServiceState.STOPPED

        result = controller.stop(POOL)

        assert result.changed is False
        assert result.state is ServiceState.STOPPED
        assert backend.calls == []

    def test_running_unit_is_stopped(self, controller, backend, sleeper):
        result = controller.stop(POOL)

        assert backend.calls == [("stop_pool", "ShopPool")]
        assert result.changed is True
        assert result.warning is None
        assert sleeper.calls == [2.0]

    def test_timeout_is_success_with_warning(self, controller, backend, sleeper):
        backend.stuck.add("ShopPool")

        result = controller.stop(POOL)

        assert result.state is ServiceState.RUNNING
        assert result.warning is not None
        assert "30s" in result.warning
        assert sleeper.calls == [2.0] * 15

    def test_unknown_state_still_issues_stop(self, controller, backend):
        backend.pools["ShopPool"] = ServiceState.UNKNOWN
        controller.stop(POOL)
        assert backend.calls == [("stop_pool", "ShopPool")]

    def test_command_failure_raises_service_control_error(self, controller, backend):
        backend.failing.add("ShopPool")
        with pytest.raises(ServiceControlError) as excinfo:
            controller.stop(POOL)
        assert excinfo.value.action == "stop"
        assert "ShopPool" in excinfo.value.unit


class TestStart:
    def test_already_running_is_noop(self, controller, backend):
        result = controller.start(SITE)
        assert result.changed is False
        assert backend.calls == []

    def test_stopped_unit_is_started_without_polling(self, controller, backend, sleeper):
        backend.sites["ShopSite"] = ServiceState.STOPPED

        result = controller.start(SITE)

        assert backend.calls == [("start_site", "ShopSite")]
        assert result.state is ServiceState.RUNNING
        assert sleeper.calls == []

    def test_not_running_after_start_is_warning(self, controller, backend):
        backend.sites["ShopSite"] = ServiceState.STOPPED
        backend.stuck.add("ShopSite")

        result = controller.start(SITE)

        assert result.changed is True
        assert result.warning is not None


class TestPhases:
    def test_stop_order_is_site_then_pool(self, controller, backend, tmp_path):
        phase = controller.stop_services(_config(tmp_path))
        assert phase.ok
        assert backend.calls == [("stop_site", "ShopSite"), ("stop_pool", "ShopPool")]

    def test_start_order_is_pool_then_site(self, controller, backend, tmp_path):
        backend.pools["ShopPool"] = ServiceState.STOPPED
        backend.sites["ShopSite"] = ServiceState.STOPPED

        phase = controller.start_services(_config(tmp_path))

        assert phase.ok
        assert backend.calls == [("start_pool", "ShopPool"), ("start_site", "ShopSite")]

    def test_only_enabled_units_are_touched(self, controller, backend, tmp_path):
        phase = controller.stop_services(_config(tmp_path, stop_iis=False, start_iis=False))
        assert [str(r.unit) for r in phase.results] == ["App Pool 'ShopPool'"]
        assert backend.calls == [("stop_pool", "ShopPool")]

    def test_sibling_failure_does_not_abort_phase(self, controller, backend, tmp_path):
        backend.failing.add("ShopSite")

        phase = controller.stop_services(_config(tmp_path))

        assert not phase.ok
        assert len(phase.errors) == 1
        assert backend.pools["ShopPool"] is ServiceState.STOPPED


class TestMaintenance:
    def test_enable_switches_path_and_recycles_pool(self, controller, backend, sleeper, tmp_path):
        app = tmp_path / "app"
        app.mkdir()
        (app / "web.config").write_text("<configuration/>", encoding="utf-8")
        maintenance = tmp_path / "maintenance"
        backend.paths["ShopSite"] = str(app)

        controller.enable_maintenance("ShopSite", app, maintenance)

        assert backend.paths["ShopSite"] == str(maintenance)
        assert ("recycle_pool", "ShopPool") in backend.calls
        assert (maintenance / "index.html").is_file()
        assert (maintenance / "web.config").is_file()
        assert sleeper.calls == [3.0]

    def test_recycle_failure_is_only_a_warning(self, controller, backend, tmp_path):
        backend.failing.add("ShopPool")
        backend.paths["ShopSite"] = str(tmp_path / "maintenance")

        controller.disable_maintenance("ShopSite", tmp_path / "app", tmp_path / "maintenance")

        assert backend.paths["ShopSite"] == str(tmp_path / "app")

    @pytest.mark.parametrize(
        "live, expected",
        [
            ("D:\\Maintenance\\", MaintenanceState.ENABLED),
            ("d:\\maintenance", MaintenanceState.ENABLED),
            ("D:\\Publish\\Shop", MaintenanceState.DISABLED),
            ("D:\\Elsewhere", MaintenanceState.UNKNOWN),
        ],
    )
    def test_status_compares_normalized_paths(self, controller, backend, live, expected):
        backend.paths["ShopSite"] = live
        status = controller.maintenance_status("ShopSite", "D:\\Publish\\Shop", "D:\\Maintenance")
        assert status is expected

    def test_validate_site_missing(self, controller):
        with pytest.raises(ServiceControlError, match="site not found"):
            controller.validate_site("Nope")


class RecordingSession:
    def __init__(self, results: Optional[List[CommandResult]] = None) -> None:
        self.commands: List[List[str]] = []
        self._results = list(results or [])

    def run(self, args: Sequence[str], *, timeout: Optional[int] = None) -> CommandResult:
        self.commands.append(list(args))
        if self._results:
            return self._results.pop(0)
        return CommandResult(args=list(args), stdout="", stderr="", exit_status=0)


class TestAppCmdBackend:
    def test_state_query_arguments(self):
        session = RecordingSession([CommandResult([], "Started\r\n", "", 0)])
        backend = AppCmdBackend(session, "appcmd.exe")

        assert backend.app_pool_state("Shop Pool") is ServiceState.RUNNING
        assert session.commands == [["appcmd.exe", "list", "apppool", "/name:Shop Pool", "/text:state"]]

    def test_values_are_discrete_arguments(self):
        session = RecordingSession()
        backend = AppCmdBackend(session, "appcmd.exe")

        backend.set_site_physical_path("Shop & Co", "D:\\Maintenance")
        backend.stop_site("Shop & Co")

        assert session.commands == [
            ["appcmd.exe", "set", "vdir", "/vdir.name:Shop & Co/", "/physicalPath:D:\\Maintenance"],
            ["appcmd.exe", "stop", "site", "/site.name:Shop & Co"],
        ]

    def test_non_zero_exit_raises_command_error(self):
        session = RecordingSession([CommandResult([], "", "ERROR ( message:Cannot find SITE )", 1168)])
        backend = AppCmdBackend(session, "appcmd.exe")

        with pytest.raises(CommandError) as excinfo:
            backend.start_site("Missing")
        assert excinfo.value.exit_code == 1168

    def test_site_exists_uses_exit_status_and_output(self):
        session = RecordingSession(
            [
                CommandResult([], 'SITE "Shop" (id:2,state:Started)', "", 0),
                CommandResult([], "", "", 1),
            ]
        )
        backend = AppCmdBackend(session, "appcmd.exe")
        assert backend.site_exists("Shop") is True
        assert backend.site_exists("Missing") is False

    def test_stopped_and_unknown_states(self):
        assert ServiceState.from_iis("Stopped") is ServiceState.STOPPED
        assert ServiceState.from_iis("Stopping") is ServiceState.UNKNOWN
