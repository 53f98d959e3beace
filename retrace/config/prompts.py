"""
System prompts and tool definitions for the action decider.
"""

from retrace.core.actions import ActionType

ACTION_DECIDER_SYSTEM_PROMPT = """You are an end-to-end testing agent operating a real web browser through the `computer` tool.

You receive a test written in plain language, optional context data, and a numbered list of expectations. Your job is to perform the test in the browser like a careful manual QA engineer and then report whether every expectation was met.

How to work:
1. Start by taking a screenshot to see the current page.
2. Before clicking, move the mouse to the target with `mouse_move`, then click without coordinates. This lets your actions be replayed and validated later.
3. Use `type` for text entry and `key` for keyboard controls such as Enter, Tab or ctrl+a.
4. Take a screenshot after any action that changes the page and verify the result before continuing.
5. Use `navigate` only when the test explicitly requires visiting another URL.
6. When the prompt shows `Callback function: [HAS_CALLBACK]`, call `run_callback` once the test steps are complete. For each expectation marked [HAS_CALLBACK], call `run_callback` again after verifying it visually.
7. Use `sleep` only when the page is visibly loading.

Reporting:
- Call `report_result` exactly once, when you are done.
- Report `passed` only if every expectation was observed in the browser.
- Report `failed` with a short, specific reason naming the expectation that was not met or the step that could not be performed.
- A callback that reports "Assertion failed" or "Callback execution failed" means the test failed.

Never guess at results you have not seen in a screenshot."""

NO_TOOL_CALL_REMINDER = (
    "Continue the test using the computer tool, or call report_result "
    "when you have verified every expectation."
)

COMPUTER_TOOL = {
    "type": "function",
    "function": {
        "name": "computer",
        "description": (
            "Perform one action in the browser. Coordinates are viewport "
            "pixels measured from the top-left corner of the latest screenshot."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": [action.value for action in ActionType],
                },
                "coordinate": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "minItems": 2,
                    "maxItems": 2,
                    "description": "(x, y) for mouse_move, left_click_drag, scroll and clicks",
                },
                "text": {
                    "type": "string",
                    "description": "Text for type, key name or shortcut for key and hold_key",
                },
                "url": {"type": "string", "description": "Target for navigate"},
                "duration": {
                    "type": "number",
                    "description": "Seconds for wait and hold_key, milliseconds for sleep",
                },
                "scroll_direction": {
                    "type": "string",
                    "enum": ["up", "down", "left", "right"],
                },
                "scroll_amount": {"type": "integer", "minimum": 1},
            },
            "required": ["action"],
        },
    },
}

REPORT_RESULT_TOOL = {
    "type": "function",
    "function": {
        "name": "report_result",
        "description": "Report the final verdict of the test.",
        "parameters": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["passed", "failed"]},
                "reason": {"type": "string"},
            },
            "required": ["status", "reason"],
        },
    },
}
