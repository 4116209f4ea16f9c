"""Command-line interface for site-deployer."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .errors import ConfigurationError, DeployerError, DeploymentFailed
from .workflow import DeploymentWorkflow


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    log_dir: Path


def _add_descriptor_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--descriptor", "-d", required=True,
        help="Path to the JSON project descriptor",
    )
    parser.add_argument(
        "--project-index", type=int, default=0,
        help="Index of the project in a multi-project descriptor (default: 0)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-deployer",
        description="Deploy build artifacts to an IIS-hosted website.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Run the full deployment pipeline")
    _add_descriptor_args(deploy_parser)
    deploy_parser.add_argument(
        "--auto-approve", action="store_true",
        help="Approve the deployment without prompting",
    )

    validate_parser = subparsers.add_parser(
        "validate", help="Validate a project descriptor and print the resolved settings"
    )
    _add_descriptor_args(validate_parser)

    maintenance_parser = subparsers.add_parser("maintenance", help="Switch maintenance mode")
    maintenance_parser.add_argument("action", choices=["enable", "disable", "status"])
    _add_descriptor_args(maintenance_parser)

    services_parser = subparsers.add_parser("services", help="Start or stop the app pool and site")
    services_parser.add_argument("action", choices=["start", "stop"])
    _add_descriptor_args(services_parser)

    backups_parser = subparsers.add_parser("backups", help="Create, list or clean up backups")
    backups_parser.add_argument("action", choices=["create", "cleanup", "list"])
    _add_descriptor_args(backups_parser)

    # logs 子命令 - 查看部署记录
    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest deployment log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    return CLIContext(config=config, log_dir=Path(config.deployment.log_dir))


_STATUS_EMOJI = {"completed": "✅", "failed": "❌", "aborted": "⛔", "running": "🔄"}


def handle_logs_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the logs subcommand."""
    log_dir = context.log_dir
    if not log_dir.exists():
        print("📁 No deployment logs found. Run a deployment first.")
        return 0

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not log_files:
        print("📁 No deployment logs found.")
        return 0

    if args.list_logs:
        print(f"📁 Deployment logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Project':<30} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                print(f"{i:<4} ❓ {'error':<10} {'?':<30} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            project = data.get("project_name", "?")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            emoji = _STATUS_EMOJI.get(status, "❓")
            print(f"{i:<4} {emoji} {status:<10} {project:<30} {start_time:<20} {log_file.name}")
        return 0

    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1
    else:
        target_file = log_files[0]

    show_log_file(target_file)
    return 0


def show_log_file(log_file: Path) -> None:
    """Display a deployment run log."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    print(f"\n{'='*60}")
    print(f"📄 Deployment Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"📦 Project:     {data.get('project_name', 'N/A')}")
    print(f"🌐 Environment: {data.get('environment', 'N/A')}")
    print(f"🔢 Build:       {data.get('build_number', 'N/A')}")
    print(f"⏰ Started:     {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:       {data.get('end_time', 'N/A')}")
    print(f"{_STATUS_EMOJI.get(status, '❓')} Status:      {status}")
    if data.get("approver"):
        print(f"👤 Approver:    {data['approver']}")
    print(f"{'='*60}\n")

    icons = {"success": "✅", "failed": "❌", "skipped": "⏭️"}
    for stage in data.get("stages", []):
        outcome = stage.get("outcome", "?")
        optional = "" if stage.get("required", True) else " (optional)"
        print(f"{icons.get(outcome, '•')} {stage.get('name')}{optional}: {outcome}")
        if stage.get("error"):
            print(f"    ⚠️ {stage['error']}")
        reason = (stage.get("detail") or {}).get("reason")
        if reason:
            print(f"    💭 {reason}")

    print(f"\n{'='*60}")
    print(f"📄 Full log: {log_file}")
    print(f"{'='*60}\n")


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "logs":
        return handle_logs_command(args, context)

    workflow = DeploymentWorkflow(config=context.config)

    if args.command == "validate":
        try:
            env_config = workflow.load(args.descriptor, args.project_index)
        except ConfigurationError as exc:
            print(f"❌ {exc}")
            return 1
        print(f"✅ {env_config.project_name} ({env_config.variant.label}) is valid")
        return 0

    try:
        if args.command == "deploy":
            run = workflow.run_deploy(
                args.descriptor, args.project_index, auto_approve=args.auto_approve
            )
            print(f"✅ Deployment {run.status.value}: {run.project_name} -> {run.environment}")
            return 0

        if args.command == "maintenance":
            state = workflow.maintenance(args.action, args.descriptor, args.project_index)
            print(f"Maintenance mode: {state.value.upper()}")
            return 0

        if args.command == "services":
            phase = workflow.services(args.action, args.descriptor, args.project_index)
            for result in phase.results:
                suffix = f" ({result.warning})" if result.warning else ""
                print(f"{result.unit}: {result.state.value}{suffix}")
            for error in phase.errors:
                print(f"❌ {error}")
            return 0 if phase.ok else 1

        if args.command == "backups":
            if args.action == "create":
                record = workflow.create_backup(args.descriptor, args.project_index)
                print(f"Backup created: {record.path}" if record else "Nothing to back up")
            elif args.action == "cleanup":
                cleanup = workflow.cleanup_backups(args.descriptor, args.project_index)
                print(f"Kept {len(cleanup.kept)}, removed {len(cleanup.removed)}, failed {len(cleanup.failed)}")
            else:
                for record in workflow.list_backups(args.descriptor, args.project_index):
                    print(f"{record.created:%Y-%m-%d %H:%M}  {record.name}")
            return 0
    except DeploymentFailed as exc:
        print(f"❌ {exc}")
        return 1
    except (DeployerError, ValueError) as exc:
        print(f"❌ {exc}")
        return 1

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
