"""User interaction handlers used by the approval gate."""

from __future__ import annotations

import getpass
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from ..utils.logging import get_logger

logger = get_logger(__name__)


class QuestionCategory(str, Enum):
    APPROVAL = "approval"
    CONFIRMATION = "confirmation"
    INFORMATION = "information"


@dataclass
class InteractionRequest:
    """A yes/no question put to an operator."""

    question: str
    category: QuestionCategory = QuestionCategory.APPROVAL
    context: Optional[str] = None
    default: Optional[str] = None
    ok_text: str = "Approve"
    # 仅作提示，审批处理器不限制谁可以回答
    approver_group: Optional[str] = None

    def format_prompt(self) -> str:
        """Format the request as a user-friendly prompt."""
        icons = {
            QuestionCategory.APPROVAL: "⚠️",
            QuestionCategory.CONFIRMATION: "❓",
            QuestionCategory.INFORMATION: "📝",
        }
        lines = [f"\n{icons.get(self.category, '❓')} Input required:"]
        lines.extend(f"   {line}" for line in self.question.strip().splitlines())

        if self.context:
            lines.append(f"\n   ℹ️  {self.context}")
        if self.approver_group:
            lines.append(f"   Approver group: {self.approver_group}")
        lines.append(f"\n   {self.ok_text}? [y/n]")

        return "\n".join(lines)


@dataclass
class InteractionResponse:
    """An operator's answer."""

    value: str
    cancelled: bool = False
    responder: Optional[str] = None         # who answered, when known

    @property
    def confirmed(self) -> bool:
        return not self.cancelled and self.value.strip().lower() in ("y", "yes", "approve", "approved")

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)


class UserInteractionHandler(ABC):
    """Abstract base class for handling user interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """
        Present a request to the user and wait for the response.

        Args:
            request: The interaction request to present

        Returns:
            The user's response
        """
        pass

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Send a notification to the user (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, warning, error, success)
        """
        pass


class CLIInteractionHandler(UserInteractionHandler):
    """Command-line interaction; blocks on stdin without a timeout."""

    def __init__(self, responder: Optional[str] = None) -> None:
        self.responder = responder

    def _whoami(self) -> str:
        if self.responder:
            return self.responder
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return "unknown"

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        print(request.format_prompt())

        try:
            response = self._handle_confirm(request)
        except KeyboardInterrupt:
            print("\n   (cancelled)")
            return InteractionResponse.cancelled_response()
        except EOFError:
            return InteractionResponse.cancelled_response()

        response.responder = self._whoami()
        return response

    def _handle_confirm(self, request: InteractionRequest) -> InteractionResponse:
        default = request.default or "n"
        while True:
            user_input = input(f"\n   Confirm? [y/n] (default: {default}): ").strip().lower()
            if not user_input:
                user_input = default
            if user_input in ("y", "yes"):
                return InteractionResponse(value="yes")
            if user_input in ("n", "no"):
                return InteractionResponse(value="no")
            print("   ❌ Please answer y or n")

    def notify(self, message: str, level: str = "info") -> None:
        icons = {
            "info": "ℹ️",
            "warning": "⚠️",
            "error": "❌",
            "success": "✅",
        }
        print(f"\n{icons.get(level, '•')} {message}")


class CallbackInteractionHandler(UserInteractionHandler):
    """
    Interaction handler that delegates to callbacks.
    Useful for chat-ops bots or web approval pages.
    """

    def __init__(
        self,
        ask_callback: Callable[[InteractionRequest], InteractionResponse],
        notify_callback: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.ask_callback = ask_callback
        self.notify_callback = notify_callback or (lambda msg, lvl: logger.info("[%s] %s", lvl, msg))

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        return self.ask_callback(request)

    def notify(self, message: str, level: str = "info") -> None:
        self.notify_callback(message, level)


class AutoResponseHandler(UserInteractionHandler):
    """
    Automatic response handler for non-interactive runs and tests.
    """

    def __init__(
        self,
        default_responses: Optional[Dict[str, str]] = None,
        always_confirm: bool = True,
        responder: str = "auto-approve",
    ) -> None:
        """
        Args:
            default_responses: Dict mapping question keywords to responses
            always_confirm: Whether to auto-confirm (True) or reject (False)
            responder: Identity recorded as the approver
        """
        self.default_responses = default_responses or {}
        self.always_confirm = always_confirm
        self.responder = responder

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        logger.info("Auto-responding to: %s", request.question.strip()[:50])

        for keyword, response in self.default_responses.items():
            if keyword.lower() in request.question.lower():
                return InteractionResponse(value=response, responder=self.responder)

        value = "yes" if self.always_confirm else "no"
        return InteractionResponse(value=value, responder=self.responder)

    def notify(self, message: str, level: str = "info") -> None:
        logger.info("[%s] %s", level, message)
