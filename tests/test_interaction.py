"""Tests for user interaction handlers and the approval gate."""

from unittest import mock

import pytest

from site_deployer.config import BuildContext
from site_deployer.errors import ApprovalRejected
from site_deployer.interaction import (
    DBA_GROUP,
    MANAGER_GROUP,
    ApprovalGate,
    AutoResponseHandler,
    CallbackInteractionHandler,
    CLIInteractionHandler,
    InteractionRequest,
    InteractionResponse,
    QuestionCategory,
)
from site_deployer.project import resolve_environment


def _config(**env):
    env.setdefault("environment", "Production")
    return resolve_environment(
        {
            "project_name": "ShopApi",
            "folder_website_name": "shop-api",
            "dotnet_version": "8.0",
            "is_run_build": True,
            "is_run_test": False,
            "start_iis": False,
            "stop_iis": False,
            "start_app_pool": False,
            "stop_app_pool": False,
            "is_cleanup": False,
            "environment_config": env,
        }
    )


BUILD = BuildContext(build_number="31")


class TestInteractionRequest:
    def test_format_prompt_confirm(self):
        request = InteractionRequest(
            question="Deploy ShopApi?",
            ok_text="Deploy",
            approver_group="managers",
        )

        prompt = request.format_prompt()

        assert "Input required:" in prompt
        assert "Deploy ShopApi?" in prompt
        assert "Deploy? [y/n]" in prompt
        assert "Approver group: managers" in prompt

    def test_format_prompt_context(self):
        request = InteractionRequest(
            question="Continue?",
            category=QuestionCategory.INFORMATION,
            context="Site is in maintenance mode",
        )

        prompt = request.format_prompt()

        assert "📝 Input required:" in prompt
        assert "Site is in maintenance mode" in prompt
        assert "Approve? [y/n]" in prompt


class TestInteractionResponse:
    @pytest.mark.parametrize("value", ["y", "YES", "approve", " Approved "])
    def test_confirmed_values(self, value):
        assert InteractionResponse(value=value).confirmed

    def test_rejected_and_cancelled(self):
        assert not InteractionResponse(value="no").confirmed
        assert not InteractionResponse.cancelled_response().confirmed



class TestCLIInteractionHandler:
    def test_confirm_records_responder(self):
        handler = CLIInteractionHandler(responder="alice")
        with mock.patch("builtins.input", return_value="y"), mock.patch("builtins.print"):
            response = handler.ask(InteractionRequest(question="Deploy?"))
        assert response.confirmed
        assert response.responder == "alice"

    def test_invalid_answer_is_asked_again(self):
        handler = CLIInteractionHandler(responder="alice")
        with mock.patch("builtins.input", side_effect=["maybe", "n"]), mock.patch("builtins.print"):
            response = handler.ask(InteractionRequest(question="Deploy?"))
        assert response.value == "no"

    def test_eof_cancels(self):
        handler = CLIInteractionHandler(responder="alice")
        with mock.patch("builtins.input", side_effect=EOFError), mock.patch("builtins.print"):
            response = handler.ask(InteractionRequest(question="Deploy?"))
        assert response.cancelled

    def test_keyboard_interrupt_cancels(self):
        handler = CLIInteractionHandler(responder="alice")
        with mock.patch("builtins.input", side_effect=KeyboardInterrupt), mock.patch("builtins.print"):
            response = handler.ask(InteractionRequest(question="Deploy?"))
        assert response.cancelled


class TestAutoResponseHandler:
    def test_confirms_by_default(self):
        response = AutoResponseHandler().ask(InteractionRequest(question="Deploy?"))
        assert response.confirmed
        assert response.responder == "auto-approve"

    def test_keyword_response_wins(self):
        handler = AutoResponseHandler(default_responses={"production": "no"})
        response = handler.ask(InteractionRequest(question="Deploy to Production?"))
        assert response.value == "no"

    def test_rejects_when_configured(self):
        response = AutoResponseHandler(always_confirm=False).ask(InteractionRequest(question="Deploy?"))
        assert response.value == "no"
        assert not response.confirmed


class TestApprovalGate:
    def test_approval_returns_approver(self):
        gate = ApprovalGate(AutoResponseHandler(responder="bob"))
        assert gate.approve_deployment(_config(), BUILD) == "bob"

    def test_rejection_raises(self):
        gate = ApprovalGate(AutoResponseHandler(always_confirm=False, responder="bob"))
        with pytest.raises(ApprovalRejected, match="bob"):
            gate.approve_deployment(_config(), BUILD)

    def test_cancellation_raises(self):
        gate = ApprovalGate(
            CallbackInteractionHandler(lambda request: InteractionResponse.cancelled_response())
        )
        with pytest.raises(ApprovalRejected, match="cancelled"):
            gate.request_approval("Deploy?", "deployers")

    def test_missing_responder_is_unknown(self):
        gate = ApprovalGate(CallbackInteractionHandler(lambda request: InteractionResponse(value="yes")))
        assert gate.request_approval("Deploy?", "deployers") == "unknown"

    def test_configured_message_and_group_are_used(self):
        seen = []

        def answer(request):
            seen.append(request)
            return InteractionResponse(value="yes", responder="carol")

        gate = ApprovalGate(CallbackInteractionHandler(answer))
        config = _config(approval_message="Ship it?", approver_group="release-managers")

        gate.approve_deployment(config, BUILD)

        assert seen[0].question == "Ship it?"
        assert seen[0].approver_group == "release-managers"
        assert seen[0].ok_text == "Deploy"

    def test_default_message_names_project_and_build(self):
        seen = []

        def answer(request):
            seen.append(request)
            return InteractionResponse(value="yes", responder="carol")

        ApprovalGate(CallbackInteractionHandler(answer)).approve_deployment(_config(), BUILD)

        assert "ShopApi" in seen[0].question
        assert "#31" in seen[0].question
        assert seen[0].approver_group == "deployers"

    @pytest.mark.parametrize(
        "method, group, heading",
        [
            ("request_manager_approval", MANAGER_GROUP, "MANAGER APPROVAL REQUIRED"),
            ("request_dba_approval", DBA_GROUP, "DBA APPROVAL REQUIRED"),
        ],
    )
    def test_templated_requests(self, method, group, heading):
        seen = []

        def answer(request):
            seen.append(request)
            return InteractionResponse(value="approve", responder="dana")

        gate = ApprovalGate(CallbackInteractionHandler(answer))

        assert getattr(gate, method)(_config(), BUILD) == "dana"
        question = seen[0].question
        assert heading in question
        assert "Deployment to: Production" in question
        assert "Project: ShopApi" in question
        assert "Build Number: 31" in question
        assert seen[0].approver_group == group
