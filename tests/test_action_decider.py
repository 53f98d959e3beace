"""
Tests for the OpenAI action decider.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from retrace.agents.action_decider import OpenAIActionDecider
from retrace.core.actions import MouseMoveAction, TypeAction
from retrace.core.interfaces import ActionExecutor
from retrace.core.types import FINGERPRINT_KEY, ToolResult
from retrace.error_handling import ConfigError, RetraceError, ToolError
from retrace.runner.test_run import TestRun


def tool_call(name, arguments, call_id="call_1"):
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )


def response(*tool_calls, content=None, tokens=10):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content, tool_calls=list(tool_calls) or None)
            )
        ],
        usage=SimpleNamespace(
            prompt_tokens=tokens - 2, completion_tokens=2, total_tokens=tokens
        ),
    )


@pytest.fixture
def executor():
    mock = Mock(spec=ActionExecutor)
    mock.execute = AsyncMock(return_value=ToolResult(output="done"))
    mock.get_fingerprint = AsyncMock(return_value="<button>Sign in</button>")
    return mock


@pytest.fixture
def client():
    mock = Mock()
    mock.chat.completions.create = AsyncMock()
    return mock


@pytest.fixture
def test_run(test_case):
    run = TestRun.create(test_case)
    run.mark_running()
    return run


@pytest.fixture
def decider(executor, test_run, settings, client):
    return OpenAIActionDecider(executor, test_run, settings=settings, client=client)


class TestInitialization:
    """Tests for decider construction."""

    def test_missing_api_key(self, executor, test_run, settings):
        """A live client needs an API key."""
        settings = settings.model_copy(update={"openai_api_key": ""})

        with pytest.raises(ConfigError) as exc_info:
            OpenAIActionDecider(executor, test_run, settings=settings)

        assert exc_info.value.type == "invalid-config"

    def test_uses_settings(self, decider, settings):
        assert decider.model == settings.openai_model
        assert decider.max_iterations == settings.max_decider_iterations


class TestRunAction:
    """Tests for the decide/act loop."""

    @pytest.mark.asyncio
    async def test_immediate_verdict(self, decider, client, executor):
        """A report_result call ends the loop."""
        client.chat.completions.create.return_value = response(
            tool_call("report_result", {"status": "passed", "reason": "Dashboard visible"})
        )

        result = await decider.run_action('Test: "login"')

        assert result.status == "passed"
        assert result.reason == "Dashboard visible"
        assert result.token_usage.total_tokens == 10
        executor.execute.assert_not_called()

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == decider.model
        assert [tool["function"]["name"] for tool in kwargs["tools"]] == [
            "computer",
            "report_result",
        ]
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": 'Test: "login"'}

    @pytest.mark.asyncio
    async def test_actions_are_recorded(self, decider, client, executor, test_run):
        """Executed actions become cache steps and usage is summed."""
        client.chat.completions.create.side_effect = [
            response(
                tool_call("computer", {"action": "mouse_move", "coordinate": [40, 80]}, "c1"),
                content="Hover the sign in button",
            ),
            response(tool_call("computer", {"action": "type", "text": "alice"}, "c2")),
            response(tool_call("report_result", {"status": "failed", "reason": "Error banner"})),
        ]

        result = await decider.run_action("prompt")

        assert result.status == "failed"
        assert result.reason == "Error banner"
        assert result.token_usage.total_tokens == 30
        assert result.token_usage.prompt_tokens == 24

        assert [call.args[0] for call in executor.execute.await_args_list] == [
            MouseMoveAction(action="mouse_move", coordinate=(40, 80)),
            TypeAction(action="type", text="alice"),
        ]
        executor.get_fingerprint.assert_awaited_once_with(40, 80)

        steps = test_run.get_steps()
        assert [step.action.input for step in steps] == [
            {"action": "mouse_move", "coordinate": [40, 80]},
            {"action": "type", "text": "alice"},
        ]
        assert steps[0].extras == {FINGERPRINT_KEY: "<button>Sign in</button>"}
        assert steps[0].reasoning == "Hover the sign in button"
        assert steps[1].extras == {}

    @pytest.mark.asyncio
    async def test_fingerprint_taken_before_move(self, decider, client, executor):
        """The element under the target is captured before the pointer moves."""
        order = []
        executor.get_fingerprint.side_effect = lambda x, y: order.append("fingerprint") or ""
        executor.execute.side_effect = lambda action: order.append("execute") or ToolResult()
        client.chat.completions.create.side_effect = [
            response(tool_call("computer", {"action": "mouse_move", "coordinate": [1, 1]})),
            response(tool_call("report_result", {"status": "passed", "reason": "ok"})),
        ]

        await decider.run_action("prompt")

        assert order == ["fingerprint", "execute"]

    @pytest.mark.asyncio
    async def test_tool_results_are_fed_back(self, decider, client, executor):
        """Tool output and screenshots go back to the model."""
        executor.execute.return_value = ToolResult(output="Took screenshot", base64_image="aGk=")
        client.chat.completions.create.side_effect = [
            response(tool_call("computer", {"action": "screenshot"}, "shot")),
            response(tool_call("report_result", {"status": "passed", "reason": "ok"})),
        ]

        await decider.run_action("prompt")

        messages = client.chat.completions.create.await_args.kwargs["messages"]
        tool_message = next(m for m in messages if m["role"] == "tool")
        assert tool_message == {
            "role": "tool",
            "tool_call_id": "shot",
            "content": "Took screenshot",
        }
        image_message = messages[messages.index(tool_message) + 1]
        assert image_message["content"][0]["image_url"]["url"] == "data:image/jpeg;base64,aGk="

    @pytest.mark.asyncio
    async def test_failed_actions_are_not_recorded(self, decider, client, executor, test_run):
        """Tool errors and failed callbacks are reported but never cached."""
        executor.execute.side_effect = [
            ToolError("Action failed: element detached"),
            ToolResult(output="Assertion failed: 1 != 2", error="assertion-failed"),
        ]
        client.chat.completions.create.side_effect = [
            response(tool_call("computer", {"action": "left_click"}, "a")),
            response(tool_call("computer", {"action": "run_callback"}, "b")),
            response(tool_call("report_result", {"status": "failed", "reason": "callback"})),
        ]

        await decider.run_action("prompt")

        assert test_run.get_steps() == []
        messages = client.chat.completions.create.await_args.kwargs["messages"]
        contents = [m["content"] for m in messages if m["role"] == "tool"]
        assert contents == ["Action failed: element detached", "Assertion failed: 1 != 2"]

    @pytest.mark.asyncio
    async def test_fingerprint_failure_is_reported(self, decider, client, executor, test_run):
        """An unreadable page is a tool error for the model, not a crash."""
        executor.get_fingerprint.side_effect = ToolError(
            "Could not fingerprint element at (1, 1): context destroyed"
        )
        client.chat.completions.create.side_effect = [
            response(tool_call("computer", {"action": "mouse_move", "coordinate": [1, 1]})),
            response(tool_call("report_result", {"status": "passed", "reason": "ok"})),
        ]

        result = await decider.run_action("prompt")

        assert result.status == "passed"
        executor.execute.assert_not_called()
        assert test_run.get_steps() == []
        messages = client.chat.completions.create.await_args.kwargs["messages"]
        tool_message = next(m for m in messages if m["role"] == "tool")
        assert tool_message["content"].startswith("Could not fingerprint element")

    @pytest.mark.asyncio
    async def test_invalid_action_input(self, decider, client, executor, test_run):
        """Malformed computer arguments are reported back to the model."""
        client.chat.completions.create.side_effect = [
            response(tool_call("computer", {"action": "type"})),
            response(tool_call("report_result", {"status": "passed", "reason": "ok"})),
        ]

        await decider.run_action("prompt")

        executor.execute.assert_not_called()
        messages = client.chat.completions.create.await_args.kwargs["messages"]
        tool_message = next(m for m in messages if m["role"] == "tool")
        assert tool_message["content"].startswith("Invalid action input")

    @pytest.mark.asyncio
    async def test_reminder_when_no_tool_call(self, decider, client):
        """A text-only reply is answered with a reminder."""
        client.chat.completions.create.side_effect = [
            response(content="I think it passed"),
            response(tool_call("report_result", {"status": "passed", "reason": "ok"})),
        ]

        result = await decider.run_action("prompt")

        assert result.status == "passed"
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_status(self, decider, client):
        client.chat.completions.create.return_value = response(
            tool_call("report_result", {"status": "maybe", "reason": "?"})
        )

        with pytest.raises(RetraceError, match="Unexpected AI response status: maybe"):
            await decider.run_action("prompt")

    @pytest.mark.asyncio
    async def test_iteration_limit(self, executor, test_run, settings, client):
        """Running out of turns is a failed verdict."""
        settings = settings.model_copy(update={"max_decider_iterations": 3})
        decider = OpenAIActionDecider(executor, test_run, settings=settings, client=client)
        client.chat.completions.create.return_value = response(content="thinking", tokens=4)

        result = await decider.run_action("prompt")

        assert result.status == "failed"
        assert result.reason == "No verdict reached within 3 decision turns"
        assert result.token_usage.total_tokens == 12
        assert client.chat.completions.create.await_count == 3
