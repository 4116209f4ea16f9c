"""Status reporting: GitHub commit statuses/deployments and webhook notifications."""

from .github import COMMIT_STATES, DEPLOYMENT_STATES, GitHubReporter
from .notifier import (
    DiscordNotifier,
    Severity,
    TriggerType,
    build_message,
    detect_deployer,
    detect_trigger,
    format_duration,
    severity_for,
)

__all__ = [
    "COMMIT_STATES",
    "DEPLOYMENT_STATES",
    "GitHubReporter",
    "DiscordNotifier",
    "Severity",
    "TriggerType",
    "build_message",
    "detect_deployer",
    "detect_trigger",
    "format_duration",
    "severity_for",
]
