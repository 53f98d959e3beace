"""
Core data models and types for retrace.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Key under which the recorded UI fingerprint of a mouse_move step is stored.
FINGERPRINT_KEY = "componentStr"


class TestStatus(str, Enum):
    """Status of a test run."""

    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Base model persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenUsage(CamelModel):
    """Token counters reported by the action decider."""

    completion_tokens: int = Field(0, ge=0)
    prompt_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            completion_tokens=self.completion_tokens + other.completion_tokens,
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class StepAction(BaseModel):
    """A recorded tool invocation."""

    type: str = Field("tool_use", description="Kind of recorded invocation")
    name: str = Field("computer", description="Tool that handled the action")
    input: Dict[str, Any] = Field(
        default_factory=dict, description="Raw action input, keyed by 'action'"
    )

    @property
    def action_name(self) -> Optional[str]:
        """Return the action discriminator, if any."""
        value = self.input.get("action")
        return str(value) if value is not None else None


class CacheStep(BaseModel):
    """A single recorded step of a live test run. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    reasoning: str = Field("", description="Why the decider took this step")
    action: Optional[StepAction] = None
    timestamp: int = Field(..., description="Epoch milliseconds")
    result: Optional[str] = Field(None, description="Executor output")
    extras: Dict[str, Any] = Field(default_factory=dict)

    @property
    def fingerprint(self) -> Optional[str]:
        """Fingerprint recorded for the element under a mouse_move, if any."""
        return self.extras.get(FINGERPRINT_KEY)


class CacheEntryMetadata(CamelModel):
    """Run-level metadata of a cache entry."""

    timestamp: int
    version: Union[int, str, None] = None
    status: TestStatus
    reason: Optional[str] = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    run_id: str
    executed_from_cache: bool = False


class CacheEntryTest(CamelModel):
    """Identity of the test a cache entry belongs to."""

    name: str
    file_path: str


class CacheEntryData(CamelModel):
    """Recorded payload of a cache entry."""

    steps: List[CacheStep] = Field(default_factory=list)


class CacheEntry(CamelModel):
    """On-disk record of one terminal test run."""

    metadata: CacheEntryMetadata
    test: CacheEntryTest
    data: CacheEntryData = Field(default_factory=CacheEntryData)

    def to_json(self) -> str:
        """Serialize using the persisted (camelCase) field names."""
        return self.model_dump_json(by_alias=True, indent=2)


class ToolResult(BaseModel):
    """Result of an action executed by the browser executor."""

    output: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    base64_image: Optional[str] = None
    error: Optional[str] = None

    @property
    def url(self) -> Optional[str]:
        """URL reported in the window metadata, if any."""
        return (self.metadata.get("window_info") or {}).get("url")

    @property
    def title(self) -> Optional[str]:
        """Page title reported in the window metadata, if any."""
        return (self.metadata.get("window_info") or {}).get("title")


class DeciderResult(BaseModel):
    """Terminal verdict of the action decider for one test."""

    status: Literal["passed", "failed"]
    reason: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
