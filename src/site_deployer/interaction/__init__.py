"""Operator interaction and the deployment approval gate."""

from .approval import DBA_GROUP, MANAGER_GROUP, ApprovalGate
from .handler import (
    AutoResponseHandler,
    CallbackInteractionHandler,
    CLIInteractionHandler,
    InteractionRequest,
    InteractionResponse,
    QuestionCategory,
    UserInteractionHandler,
)

__all__ = [
    "ApprovalGate",
    "DBA_GROUP",
    "MANAGER_GROUP",
    "UserInteractionHandler",
    "InteractionRequest",
    "InteractionResponse",
    "CLIInteractionHandler",
    "CallbackInteractionHandler",
    "AutoResponseHandler",
    "QuestionCategory",
]
