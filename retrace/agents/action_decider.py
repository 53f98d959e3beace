"""
Action Decider backed by OpenAI tool calling.

Runs the observe -> decide -> act loop for one test and records every
executed action on the TestRun so later runs can replay it.
"""

import json
import time
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from retrace.config.prompts import (
    ACTION_DECIDER_SYSTEM_PROMPT,
    COMPUTER_TOOL,
    NO_TOOL_CALL_REMINDER,
    REPORT_RESULT_TOOL,
)
from retrace.config.settings import Settings, get_settings
from retrace.core.actions import MouseMoveAction, parse_action_input
from retrace.core.interfaces import ActionDecider, ActionExecutor
from retrace.core.types import (
    FINGERPRINT_KEY,
    CacheStep,
    DeciderResult,
    StepAction,
    TokenUsage,
    ToolResult,
)
from retrace.error_handling import ConfigError, RetraceError, ToolError, get_error_details
from retrace.monitoring.logger import get_logger
from retrace.runner.test_run import TestRun


class OpenAIActionDecider(ActionDecider):
    """Drives the executor with an OpenAI chat model until it reports a verdict."""

    def __init__(
        self,
        executor: ActionExecutor,
        test_run: TestRun,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        """
        Initialize the decider.

        Args:
            executor: Executor that performs the chosen actions
            test_run: Run that receives the recorded steps
            settings: Settings (defaults to the global settings)
            client: Optional preconfigured OpenAI client
        """
        self.settings = settings or get_settings()
        self.executor = executor
        self.test_run = test_run
        self.model = self.settings.openai_model
        self.max_iterations = self.settings.max_decider_iterations
        self.logger = get_logger("retrace.agents.action_decider", run_id=test_run.run_id)

        if client is None:
            if not self.settings.openai_api_key:
                raise ConfigError(
                    "invalid-config",
                    "OpenAI API key not provided. Set OPENAI_API_KEY environment variable.",
                )
            client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                max_retries=self.settings.openai_max_retries,
            )
        self.client = client

    async def run_action(self, prompt: str) -> DeciderResult:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": ACTION_DECIDER_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        usage = TokenUsage()

        for iteration in range(1, self.max_iterations + 1):
            response = await self._complete(messages)
            usage = usage + self._usage_of(response)

            message = response.choices[0].message
            tool_calls = message.tool_calls or []
            messages.append(self._assistant_message(message))

            if not tool_calls:
                self.logger.debug(f"No tool call in turn {iteration}")
                messages.append({"role": "user", "content": NO_TOOL_CALL_REMINDER})
                continue

            images: List[str] = []
            for tool_call in tool_calls:
                name = tool_call.function.name
                arguments = self._parse_arguments(tool_call.function.arguments)

                if name == "report_result":
                    status = arguments.get("status")
                    if status not in ("passed", "failed"):
                        raise RetraceError(f"Unexpected AI response status: {status}")
                    self.logger.info(
                        f"Decider reported {status}",
                        extra={"reason": arguments.get("reason"), "turns": iteration},
                    )
                    return DeciderResult(
                        status=status,
                        reason=str(arguments.get("reason") or ""),
                        token_usage=usage,
                    )

                if name != "computer":
                    content = f"Unknown tool: {name}"
                else:
                    result = await self._perform(arguments, message.content or "")
                    content = result.output or result.error or ""
                    if result.base64_image:
                        images.append(result.base64_image)

                messages.append(
                    {"role": "tool", "tool_call_id": tool_call.id, "content": content}
                )

            for image in images:
                messages.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/jpeg;base64,{image}"},
                            }
                        ],
                    }
                )

        self.logger.warning(
            f"No verdict after {self.max_iterations} turns",
            extra={"total_tokens": usage.total_tokens},
        )
        return DeciderResult(
            status="failed",
            reason=f"No verdict reached within {self.max_iterations} decision turns",
            token_usage=usage,
        )

    async def _complete(self, messages: List[Dict[str, Any]]) -> Any:
        self.logger.debug(
            f"OpenAI API call: model={self.model}, messages={len(messages)}"
        )
        try:
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=[COMPUTER_TOOL, REPORT_RESULT_TOOL],
                timeout=float(self.settings.openai_request_timeout_seconds),
            )
        except openai.APIError as e:
            self.logger.error(f"OpenAI API error: {e}")
            raise RetraceError(f"OpenAI API error: {e}", cause=e) from e

    async def _perform(self, arguments: Dict[str, Any], reasoning: str) -> ToolResult:
        try:
            action = parse_action_input(arguments)
        except ValidationError as e:
            return ToolResult(output=f"Invalid action input: {e}", error="invalid-input")

        extras: Dict[str, Any] = {}
        try:
            if isinstance(action, MouseMoveAction):
                x, y = action.coordinate
                extras[FINGERPRINT_KEY] = await self.executor.get_fingerprint(x, y)
            result = await self.executor.execute(action)
        except ToolError as e:
            self.logger.info("Action failed", extra=get_error_details(e))
            return ToolResult(output=e.message, error="tool-error")

        if not result.error:
            self.test_run.add_step(
                CacheStep(
                    reasoning=reasoning,
                    action=StepAction(input=action.to_input()),
                    timestamp=int(time.time() * 1000),
                    result=result.output,
                    extras=extras,
                )
            )
        return result

    @staticmethod
    def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    @staticmethod
    def _usage_of(response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=usage.prompt_tokens or 0,
            completion_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
        )

    @staticmethod
    def _assistant_message(message: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.function.name,
                        "arguments": call.function.arguments,
                    },
                }
                for call in message.tool_calls
            ]
        return payload
