"""Policy version history — append-only snapshots and their audit facts."""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import JSONType
from app.models.base import TimestampedModel, utcnow
from app.models.enums import PolicyVersionEventType, PolicyVersionStatus
from app.modules.policy_versions.exceptions import ForbiddenError


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class PolicyVersion(TimestampedModel):
    """Immutable snapshot of a policy at one point in time.

    The version number is semantic (``major.minor.patch``), stored as three
    integers so ordering is numeric; ``(policy_id, major, minor, patch)`` is
    unique. Content and metadata are written once. Only lifecycle columns
    (status, approval/publication/archival stamps, soft delete) change later.
    """

    __tablename__ = "policy_versions"

    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("policies.id", ondelete="RESTRICT"), nullable=False
    )
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    major: Mapped[int] = mapped_column(Integer, nullable=False)
    minor: Mapped[int] = mapped_column(Integer, nullable=False)
    patch: Mapped[int] = mapped_column(Integer, nullable=False)

    # Metadata as it was when the snapshot was taken
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    jurisdiction_tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    content: Mapped[dict] = mapped_column(JSONType, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[PolicyVersionStatus] = mapped_column(
        SAEnum(
            PolicyVersionStatus,
            name="policy_version_status",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PolicyVersionStatus.DRAFT,
    )
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    restored_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("policy_versions.id", ondelete="SET NULL"), nullable=True
    )

    # Lifecycle stamps (actor ids come from the identity provider; no FK)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("policy_id", "major", "minor", "patch", name="uq_policy_versions_policy_semver"),
        Index("ix_policy_versions_policy_id", "policy_id"),
        Index("ix_policy_versions_org_id", "org_id"),
        Index("ix_policy_versions_policy_deleted", "policy_id", "deleted_at"),
    )

    # ── Helper accessors ──────────────────────────────────────────────────

    @property
    def version_key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def version_number(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the snapshot was created."""
        now = now or utcnow()
        created_at = self.created_at
        # SQLite hands back naive datetimes; everything is stored in UTC
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now - created_at

    def metadata_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "jurisdiction_tags": list(self.jurisdiction_tags or []),
            "description": self.description,
            "effective_date": self.effective_date,
        }

    def __repr__(self) -> str:
        return (
            f"<PolicyVersion(id={self.id}, policy_id={self.policy_id}, "
            f"v={self.version_number}, status={self.status.value})>"
        )


# Columns that may never change once a snapshot row exists
IMMUTABLE_VERSION_COLUMNS = (
    "policy_id",
    "org_id",
    "major",
    "minor",
    "patch",
    "title",
    "category",
    "jurisdiction_tags",
    "description",
    "effective_date",
    "content",
    "content_hash",
    "word_count",
    "change_summary",
    "restored_from_id",
    "created_by",
    "created_at",
)


@event.listens_for(PolicyVersion, "before_update")
def _reject_history_rewrite(mapper, connection, target: PolicyVersion) -> None:  # type: ignore[no-untyped-def]
    state = inspect(target)
    changed = [name for name in IMMUTABLE_VERSION_COLUMNS if state.attrs[name].history.has_changes()]
    if changed:
        raise ForbiddenError(
            "Policy version history is append-only; create a new version instead.",
            version_id=target.id,
            field=",".join(changed),
        )


class PolicyVersionEvent(TimestampedModel):
    """Audit fact written in the same transaction as the change it describes.

    Acts as an outbox: an external relay ships undelivered rows to the audit
    log service and stamps ``delivered_at``.
    """

    __tablename__ = "policy_version_events"
    __table_args__ = (
        Index("ix_policy_version_events_policy_id", "policy_id"),
        Index(
            "ix_policy_version_events_undelivered",
            "delivered_at",
            postgresql_where=text("delivered_at IS NULL"),
        ),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("policies.id", ondelete="RESTRICT"), nullable=False
    )
    version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("policy_versions.id", ondelete="RESTRICT"), nullable=False
    )
    event_type: Mapped[PolicyVersionEventType] = mapped_column(
        SAEnum(
            PolicyVersionEventType,
            name="policy_version_event_type",
            native_enum=False,
            length=40,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PolicyVersionEvent(id={self.id}, type={self.event_type.value!r})>"
