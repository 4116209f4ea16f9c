"""High-level workflow wiring: settings + descriptor -> collaborators."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .artifacts import ArtifactArchive, ArtifactChannelStore, ArtifactTransfer
from .backup import BackupManager, BackupRecord, CleanupResult
from .config import AppConfig, BuildContext, load_build_context
from .gitops import GitRepositoryManager
from .hosting import (
    AppCmdBackend,
    LocalSession,
    MaintenanceState,
    ServiceController,
    ServicePhaseResult,
    SSHCredentials,
    SSHSession,
)
from .interaction import (
    ApprovalGate,
    AutoResponseHandler,
    CLIInteractionHandler,
    UserInteractionHandler,
)
from .orchestrator import DeploymentOrchestrator, DeploymentRun
from .project import EnvironmentConfig, describe, load_descriptor, resolve_environment
from .reporting import DiscordNotifier, GitHubReporter
from .utils.logging import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]
Session = Union[LocalSession, SSHSession]


class DeploymentWorkflow:
    """Builds every collaborator of a run from application settings."""

    def __init__(
        self,
        config: AppConfig,
        build: Optional[BuildContext] = None,
        interaction_handler: Optional[UserInteractionHandler] = None,
        *,
        session: Optional[Session] = None,
        git: Optional[GitRepositoryManager] = None,
        checkout_dir: Optional[PathLike] = None,
    ) -> None:
        self.config = config
        self.build = build or load_build_context()
        self.interaction_handler = interaction_handler
        self._session = session
        self.git = git or GitRepositoryManager()
        self.checkout_dir = Path(checkout_dir) if checkout_dir else Path.cwd()

    # -- configuration -------------------------------------------------------

    def load(
        self, descriptor: PathLike, project_index: int = 0, *, strict: bool = True
    ) -> EnvironmentConfig:
        """Read, validate and resolve one project from a descriptor file."""
        env_config = resolve_environment(
            load_descriptor(descriptor), project_index, strict=strict
        )
        describe(env_config)
        return env_config

    # -- collaborators -------------------------------------------------------

    def open_session(self) -> Session:
        if self._session is not None:
            return self._session
        hosting = self.config.hosting
        if hosting.mode == "ssh":
            if not hosting.host or not hosting.username:
                raise ValueError("SSH hosting mode requires host and username")
            credentials = SSHCredentials(
                host=hosting.host,
                port=hosting.port,
                username=hosting.username,
                auth_method=hosting.auth_method or ("key" if hosting.key_path else "password"),
                password=hosting.password,
                key_path=hosting.key_path,
            )
            credentials.validate()
            logger.info("Hosting commands will run on %s via SSH", hosting.host)
            return SSHSession(credentials)
        return LocalSession()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.open_session()
        session.connect()
        try:
            yield session
        finally:
            # 外部注入的会话由调用方负责关闭
            if self._session is None:
                session.close()

    def controller(self, session: Session) -> ServiceController:
        settings = self.config.deployment
        return ServiceController(
            AppCmdBackend(session, self.config.hosting.appcmd_path),
            poll_interval=settings.poll_interval,
            stop_timeout=settings.stop_timeout,
            settle_seconds=settings.maintenance_settle_seconds,
        )

    def reporter(self, env_config: EnvironmentConfig) -> GitHubReporter:
        return GitHubReporter(
            env_config,
            self.config.github,
            self.build,
            revision=self.build.git_commit,
            revision_resolver=lambda: self.git.head_sha(self.checkout_dir),
        )

    def notifier(self, env_config: EnvironmentConfig) -> DiscordNotifier:
        return DiscordNotifier(
            self.config.notification,
            env_config,
            branch_resolver=lambda: self.git.current_branch(self.checkout_dir),
        )

    def transfer(self, env_config: EnvironmentConfig) -> ArtifactTransfer:
        settings = self.config.deployment
        return ArtifactTransfer(
            Path(settings.workspace_root) / env_config.project_name,
            ArtifactArchive(settings.artifact_archive_root),
            ArtifactChannelStore(settings.artifact_channel_root),
        )

    def approval_gate(self, auto_approve: bool = False) -> ApprovalGate:
        interaction = self.config.interaction
        if auto_approve or interaction.auto_approve or interaction.mode == "auto":
            handler: UserInteractionHandler = AutoResponseHandler(always_confirm=True)
        else:
            handler = self.interaction_handler or CLIInteractionHandler()
        return ApprovalGate(handler)

    # -- commands ------------------------------------------------------------

    def run_deploy(
        self,
        descriptor: PathLike,
        project_index: int = 0,
        *,
        auto_approve: bool = False,
    ) -> DeploymentRun:
        # 项目校验在编排器的 validate_project 阶段进行，失败时可上报
        env_config = self.load(descriptor, project_index, strict=False)
        with self.session() as session:
            orchestrator = DeploymentOrchestrator(
                env_config,
                self.build,
                controller=self.controller(session),
                backups=BackupManager(),
                transfer=self.transfer(env_config),
                reporter=self.reporter(env_config),
                notifier=self.notifier(env_config),
                approval=self.approval_gate(auto_approve),
                log_dir=self.config.deployment.log_dir,
            )
            return orchestrator.run()

    def maintenance(
        self, action: str, descriptor: PathLike, project_index: int = 0
    ) -> MaintenanceState:
        env_config = self.load(descriptor, project_index)
        if not env_config.site_name:
            raise ValueError("Maintenance mode requires iis_website_name in the descriptor")
        with self.session() as session:
            controller = self.controller(session)
            args = (env_config.site_name, env_config.website_path, env_config.maintenance_path)
            controller.validate_site(env_config.site_name)
            if action == "enable":
                controller.enable_maintenance(*args)
            elif action == "disable":
                controller.disable_maintenance(*args)
            elif action != "status":
                raise ValueError(f"Unknown maintenance action: {action}")
            return controller.maintenance_status(*args)

    def services(
        self, action: str, descriptor: PathLike, project_index: int = 0
    ) -> ServicePhaseResult:
        env_config = self.load(descriptor, project_index)
        with self.session() as session:
            controller = self.controller(session)
            if action == "stop":
                return controller.stop_services(env_config)
            if action == "start":
                return controller.start_services(env_config)
            raise ValueError(f"Unknown services action: {action}")

    def create_backup(
        self, descriptor: PathLike, project_index: int = 0
    ) -> Optional[BackupRecord]:
        env_config = self.load(descriptor, project_index)
        return BackupManager().create_backup(env_config, self.build.build_number)

    def cleanup_backups(self, descriptor: PathLike, project_index: int = 0) -> CleanupResult:
        env_config = self.load(descriptor, project_index)
        return BackupManager().cleanup_backups(env_config)

    def list_backups(self, descriptor: PathLike, project_index: int = 0) -> List[BackupRecord]:
        env_config = self.load(descriptor, project_index)
        return BackupManager().list_backups(env_config)
