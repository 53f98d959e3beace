"""Configuration management for retrace."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILENAMES = (".env", ".env.local")
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def normalize_log_level(value: str) -> str:
    """Upper-case a log level name, rejecting unknown levels."""
    if value.upper() not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {value}")
    return value.upper()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILENAMES,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI Configuration
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(
        default="gpt-4o", description="Model used by the action decider"
    )
    openai_max_retries: int = Field(
        default=3, ge=1, description="Maximum API retry attempts"
    )
    openai_request_timeout_seconds: int = Field(
        default=900,
        ge=60,
        description="Request timeout for OpenAI API calls in seconds",
    )

    # Target Configuration
    base_url: str = Field(
        default="http://localhost:3000",
        description="URL the browser opens before each test file",
        validation_alias=AliasChoices("RETRACE_BASE_URL", "base_url"),
    )
    test_pattern: str = Field(
        default="**/*.test.py",
        description="Glob pattern used to discover test files",
        validation_alias=AliasChoices("RETRACE_TEST_PATTERN", "test_pattern"),
    )

    # Browser Configuration
    browser_headless: bool = Field(
        default=False, description="Run browser in headless mode"
    )
    browser_timeout: int = Field(
        default=30000, ge=1000, description="Default browser timeout (ms)"
    )
    browser_viewport_width: int = Field(
        default=1920, ge=800, description="Browser viewport width"
    )
    browser_viewport_height: int = Field(
        default=1080, ge=600, description="Browser viewport height"
    )

    # Caching Configuration
    caching_enabled: bool = Field(
        default=True,
        description="Replay recorded actions before asking the decider",
        validation_alias=AliasChoices("RETRACE_CACHING_ENABLED", "caching_enabled"),
    )
    cache_dir: Path = Field(
        default=Path(".retrace/cache"),
        description="Directory holding cached test runs",
        validation_alias=AliasChoices("RETRACE_CACHE_DIR", "cache_dir"),
    )
    replay_step_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Settling delay inserted before each replayed step",
    )

    # Execution Configuration
    max_decider_iterations: int = Field(
        default=50, ge=1, description="Maximum decide/act turns per test"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="text",
        description="Log format (json or text)",
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path"
    )

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        return normalize_log_level(v)

    @field_validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {v}")
        return v

    def apply_cli_overrides(
        self,
        headless: Optional[bool] = None,
        base_url: Optional[str] = None,
        test_pattern: Optional[str] = None,
        no_cache: bool = False,
        log_level: Optional[str] = None,
    ) -> "Settings":
        """Return a copy of the settings with command line flags folded in."""
        updates: Dict[str, Any] = {}
        if headless:
            updates["browser_headless"] = True
        if base_url:
            updates["base_url"] = base_url
        if test_pattern:
            updates["test_pattern"] = test_pattern
        if no_cache:
            updates["caching_enabled"] = False
        if log_level:
            updates["log_level"] = normalize_log_level(log_level)
        return self.model_copy(update=updates)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    for filename in ENV_FILENAMES:
        env_file = Path(filename)
        if env_file.exists():
            load_dotenv(env_file)

    return Settings()
