"""API request/response models for the HTTP surface."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RunRequest(BaseModel):  # type: ignore[explicit-any]
    """Request to run a recorded checkpoint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    checkpoint_id: str = Field(..., min_length=1, alias="checkpointId")
    command: str | None = None
    mode: Literal["auto", "web", "cli"] | None = None


class LogPageDTO(BaseModel):  # type: ignore[explicit-any]
    """Lines captured since a cursor, plus the cursor to poll from next."""

    model_config = ConfigDict(frozen=True)

    lines: list[str]
    next: int


class StopRunDTO(BaseModel):  # type: ignore[explicit-any]
    """Result of a stop request."""

    model_config = ConfigDict(frozen=True)

    stopped: bool
