"""Policy Version Control — Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.enums import PolicyVersionEventType, PolicyVersionStatus, VersionBump
from app.modules.policy_versions.content import PolicyContent
from app.modules.policy_versions.diff import LineDiffKind


class PolicyMetadata(BaseModel):
    """Metadata captured on every snapshot."""

    title: str = Field(min_length=1, max_length=500)
    category: str | None = Field(default=None, max_length=100)
    jurisdiction_tags: list[str] = Field(default_factory=list)
    description: str | None = None
    effective_date: date | None = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("jurisdiction_tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return sorted({tag.strip() for tag in value if tag and tag.strip()})

    @classmethod
    def from_snapshot(cls, version: Any) -> PolicyMetadata:
        return cls(**version.metadata_fields())


# ── Requests ──────────────────────────────────────────────────────────────────


class CreateVersionRequest(BaseModel):
    """Body sent by the editor after each committed edit."""

    content: PolicyContent
    metadata: PolicyMetadata
    change_summary: str | None = Field(default=None, max_length=2000)
    status: PolicyVersionStatus = PolicyVersionStatus.DRAFT
    bump: VersionBump | None = None


class RollbackRequest(BaseModel):
    target_version_id: uuid.UUID
    # Length bounds are checked by rollback.validate_reason
    reason: str = ""


class UpdateStatusRequest(BaseModel):
    status: PolicyVersionStatus


# ── Responses ─────────────────────────────────────────────────────────────────


class PolicyVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    policy_id: uuid.UUID
    org_id: uuid.UUID
    version_number: str
    title: str
    category: str | None
    jurisdiction_tags: list[str]
    description: str | None
    effective_date: date | None
    content: dict[str, Any]
    content_hash: str
    word_count: int
    status: PolicyVersionStatus
    change_summary: str | None
    restored_from_id: uuid.UUID | None
    created_by: uuid.UUID
    created_at: datetime
    approved_by: uuid.UUID | None
    approved_at: datetime | None
    published_by: uuid.UUID | None
    published_at: datetime | None
    archived_by: uuid.UUID | None
    archived_at: datetime | None
    deleted_at: datetime | None


class PolicyVersionListResponse(BaseModel):
    items: list[PolicyVersionResponse]
    total: int


class TimelineEntry(BaseModel):
    """Listing row: everything except the content body."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    version_number: str
    status: PolicyVersionStatus
    title: str
    created_by: uuid.UUID
    created_at: datetime
    word_count: int
    change_summary: str | None
    restored_from_id: uuid.UUID | None
    is_latest: bool = False


class TimelineResponse(BaseModel):
    policy_id: uuid.UUID
    latest_version_id: uuid.UUID | None
    items: list[TimelineEntry]
    total: int


class VersionSummaryResponse(BaseModel):
    id: uuid.UUID
    version_number: str
    status: PolicyVersionStatus
    word_count: int
    age_seconds: float


class WordSegmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    op: str
    text: str


class LineDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: LineDiffKind
    line_number_old: int | None
    line_number_new: int | None
    text_old: str | None
    text_new: str | None
    similarity: float | None = None
    segments: list[WordSegmentResponse] = []


class FieldDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field: str
    old_value: Any
    new_value: Any
    changed: bool


class DiffStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    additions: int
    deletions: int
    modifications: int
    unchanged: int
    total_changed: int
    percent_changed: float


class VersionRefResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID | None
    version_number: str | None
    created_at: datetime | None = None
    created_by: uuid.UUID | None = None


class DiffReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_version: VersionRefResponse
    to_version: VersionRefResponse
    line_diffs: list[LineDiffResponse]
    field_diffs: list[FieldDiffResponse]
    stats: DiffStatsResponse
    significance: str
    time_difference_seconds: float | None
    editors: list[str]
    categories: list[str]
    unified_diff: list[str] = []


class PolicyVersionEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    policy_id: uuid.UUID
    version_id: uuid.UUID
    event_type: PolicyVersionEventType
    actor_id: uuid.UUID
    payload: dict[str, Any]
    created_at: datetime
    delivered_at: datetime | None


class PolicyVersionEventListResponse(BaseModel):
    items: list[PolicyVersionEventResponse]
    total: int
