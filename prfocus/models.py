"""Core Pydantic domain models for PR Focus."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventKind(str, Enum):
    PULL_REQUEST = "pull_request"
    ISSUE = "issue"
    PULL_REQUEST_COMMENT = "pull_request_comment"
    ISSUE_COMMENT = "issue_comment"


class DiffLineType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CONTEXT = "context"


class RepositoryRef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = ""
    full_name: str = ""
    owner_login: str = ""


class Actor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    login: str = ""
    type: str = ""


class NormalizedEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    kind: EventKind
    action: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    repository: RepositoryRef = Field(default_factory=RepositoryRef)
    actor: Actor = Field(default_factory=Actor)
    payload_summary: dict[str, Any] = Field(default_factory=dict)
    installation_id: int | None = None


class EventStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_events: int
    events_by_type: dict[str, int] = Field(default_factory=dict)
    events_by_repository: dict[str, int] = Field(default_factory=dict)
    recent_activity: list[NormalizedEvent] = Field(default_factory=list)


class EventSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: str
    action: str
    repository: str
    actor: str
    timestamp: datetime
    description: str


class DiffLine(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: DiffLineType
    old_number: int | None = None
    new_number: int | None = None
    content: str = ""


class DiffHunk(BaseModel):
    model_config = ConfigDict(extra="forbid")

    old_start: int
    old_lines: int = 1
    new_start: int
    new_lines: int = 1
    lines: list[DiffLine] = Field(default_factory=list)


class AnalysisHunk(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file: str
    diff: str


class AnalysisChange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str
    hunks: list[AnalysisHunk]


class AnalysisResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    changes: list[AnalysisChange]

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary must be a non-empty string")
        return value
