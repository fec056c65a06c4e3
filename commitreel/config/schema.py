from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from commitreel.constants import (
    DEFAULT_DEBOUNCE_S,
    DEFAULT_IGNORES,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_TAPE_PATH,
    DEFAULT_WEB_HOST,
    DEFAULT_WEB_PORT,
)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    host: str = DEFAULT_WEB_HOST
    port: int = Field(default=DEFAULT_WEB_PORT, ge=1, le=65535)


class CommitReelConfig(BaseModel):
    """Settings from `commitreel.yml`, overridable per CLI flag."""

    model_config = ConfigDict(extra="allow")

    tape: str = DEFAULT_TAPE_PATH
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL_S, ge=0.1)
    debounce: float = Field(default=DEFAULT_DEBOUNCE_S, ge=0)
    # None means "decide from whether the workspace is under git"
    capture_files: Optional[bool] = None
    watch_files: Optional[bool] = None
    seed: bool = True
    run_command: Optional[str] = None
    run_mode: Literal["auto", "web", "cli"] = "auto"
    web: WebConfig = Field(default_factory=WebConfig)
    ignores: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORES))

    @field_validator("run_mode", mode="before")
    @classmethod
    def normalize_run_mode(cls, v: object) -> object:
        """Accept any casing; unrecognized values fall back to auto."""
        if v is None:
            return "auto"
        mode = str(v).strip().lower()
        return mode if mode in ("auto", "web", "cli") else "auto"

    @field_validator("run_command")
    @classmethod
    def blank_command_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v
