"""
Browser action inputs.

Every action the decider can request, and the cache can replay, is one
member of the ``ActionInput`` union, discriminated by its ``action`` field.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

Coordinate = Tuple[int, int]


class ActionType(str, Enum):
    """Action discriminators understood by the executor."""

    LEFT_CLICK = "left_click"
    RIGHT_CLICK = "right_click"
    MIDDLE_CLICK = "middle_click"
    DOUBLE_CLICK = "double_click"
    TRIPLE_CLICK = "triple_click"
    MOUSE_MOVE = "mouse_move"
    LEFT_CLICK_DRAG = "left_click_drag"
    LEFT_MOUSE_DOWN = "left_mouse_down"
    LEFT_MOUSE_UP = "left_mouse_up"
    CURSOR_POSITION = "cursor_position"
    SCREENSHOT = "screenshot"
    TYPE = "type"
    KEY = "key"
    HOLD_KEY = "hold_key"
    NAVIGATE = "navigate"
    WAIT = "wait"
    SCROLL = "scroll"
    SLEEP = "sleep"
    CLEAR_SESSION = "clear_session"
    RUN_CALLBACK = "run_callback"


class _Action(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    def to_input(self) -> Dict[str, Any]:
        """Plain dict form, as recorded in cache steps."""
        return self.model_dump(mode="json", exclude_none=True)


def _coordinate_field(required: bool = True) -> Any:
    return Field(
        ... if required else None,
        validation_alias=AliasChoices("coordinate", "coordinates"),
        description="Viewport (x, y) in pixels",
    )


class ClickAction(_Action):
    action: Literal[
        "left_click", "right_click", "middle_click", "double_click", "triple_click"
    ]
    coordinate: Optional[Coordinate] = _coordinate_field(required=False)

    @property
    def button(self) -> str:
        if self.action == ActionType.RIGHT_CLICK:
            return "right"
        if self.action == ActionType.MIDDLE_CLICK:
            return "middle"
        return "left"

    @property
    def click_count(self) -> int:
        if self.action == ActionType.DOUBLE_CLICK:
            return 2
        if self.action == ActionType.TRIPLE_CLICK:
            return 3
        return 1


class MouseMoveAction(_Action):
    action: Literal["mouse_move"]
    coordinate: Coordinate = _coordinate_field()


class LeftClickDragAction(_Action):
    action: Literal["left_click_drag"]
    coordinate: Coordinate = _coordinate_field()


class LeftMouseDownAction(_Action):
    action: Literal["left_mouse_down"]


class LeftMouseUpAction(_Action):
    action: Literal["left_mouse_up"]


class CursorPositionAction(_Action):
    action: Literal["cursor_position"]


class ScreenshotAction(_Action):
    action: Literal["screenshot"]


class TypeAction(_Action):
    action: Literal["type"]
    text: str = Field(..., min_length=1)


class KeyAction(_Action):
    action: Literal["key"]
    text: str = Field(..., min_length=1, description="Key or shortcut name")


class HoldKeyAction(_Action):
    action: Literal["hold_key"]
    text: str = Field(..., min_length=1)
    duration: float = Field(..., gt=0, description="Seconds to hold")


class NavigateAction(_Action):
    action: Literal["navigate"]
    url: str = Field(..., min_length=1)


class WaitAction(_Action):
    action: Literal["wait"]
    duration: float = Field(..., gt=0, description="Seconds to wait")


class ScrollAction(_Action):
    action: Literal["scroll"]
    coordinate: Coordinate = _coordinate_field()
    scroll_direction: Literal["up", "down", "left", "right"]
    scroll_amount: int = Field(..., gt=0)


class SleepAction(_Action):
    action: Literal["sleep"]
    duration: Optional[int] = Field(None, ge=0, description="Milliseconds")


class ClearSessionAction(_Action):
    action: Literal["clear_session"]


class RunCallbackAction(_Action):
    action: Literal["run_callback"]


ActionInput = Annotated[
    Union[
        ClickAction,
        MouseMoveAction,
        LeftClickDragAction,
        LeftMouseDownAction,
        LeftMouseUpAction,
        CursorPositionAction,
        ScreenshotAction,
        TypeAction,
        KeyAction,
        HoldKeyAction,
        NavigateAction,
        WaitAction,
        ScrollAction,
        SleepAction,
        ClearSessionAction,
        RunCallbackAction,
    ],
    Field(discriminator="action"),
]

_ACTION_INPUT_ADAPTER: TypeAdapter = TypeAdapter(ActionInput)


def parse_action_input(data: Dict[str, Any]) -> ActionInput:
    """Validate a raw action dict into its concrete action model."""
    return _ACTION_INPUT_ADAPTER.validate_python(data)

