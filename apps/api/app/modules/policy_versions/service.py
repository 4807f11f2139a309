"""Policy Version Control service — the append-only version store.

Writes go through ``append_snapshot``, which runs under the policy row lock
taken by ``lock_policy``. The next version number is read from the current
maximum inside the lock and inserted together with its audit fact in a
SAVEPOINT; a unique-constraint collision rolls the savepoint back and the
allocation is retried a bounded number of times.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.middleware.tenant import tenant_filter
from app.models.base import utcnow
from app.models.enums import PolicyVersionEventType, PolicyVersionStatus, VersionBump
from app.models.policies import Policy
from app.models.policy_versions import PolicyVersion, PolicyVersionEvent
from app.modules.policy_versions import content as content_model
from app.modules.policy_versions.content import PolicyContent
from app.modules.policy_versions.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    PolicyNotFoundError,
    VersionConflictError,
    VersionNotFoundError,
)
from app.modules.policy_versions.lifecycle import ensure_creatable, ensure_transition
from app.modules.policy_versions.schemas import PolicyMetadata

logger = structlog.get_logger()

VersionKey = tuple[int, int, int]

FIRST_VERSION: VersionKey = (1, 0, 0)

# PostgreSQL lock_not_available, raised when lock_timeout expires
_LOCK_TIMEOUT_SQLSTATE = "55P03"

_NEWEST_FIRST = (
    PolicyVersion.major.desc(),
    PolicyVersion.minor.desc(),
    PolicyVersion.patch.desc(),
)


# ── Version numbering ─────────────────────────────────────────────────────────


def next_version_key(current: VersionKey | None, bump: VersionBump) -> VersionKey:
    if current is None:
        return FIRST_VERSION
    major, minor, patch = current
    if bump is VersionBump.MAJOR:
        return (major + 1, 0, 0)
    if bump is VersionBump.MINOR:
        return (major, minor + 1, 0)
    return (major, minor, patch + 1)


def infer_bump(latest: PolicyVersion | None, new_content_hash: str) -> VersionBump:
    """Content changes bump minor; metadata-only or identical resubmissions bump patch."""
    if latest is None or latest.content_hash != new_content_hash:
        return VersionBump.MINOR
    return VersionBump.PATCH


async def _max_version_key(db: AsyncSession, policy_id: uuid.UUID) -> VersionKey | None:
    # Soft-deleted rows still own their number, so they count here
    result = await db.execute(
        select(PolicyVersion.major, PolicyVersion.minor, PolicyVersion.patch)
        .where(PolicyVersion.policy_id == policy_id)
        .order_by(*_NEWEST_FIRST)
        .limit(1)
    )
    row = result.first()
    return tuple(row) if row is not None else None  # type: ignore[return-value]


# ── Locking ───────────────────────────────────────────────────────────────────


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _LOCK_TIMEOUT_SQLSTATE or "database is locked" in str(orig)


async def get_policy(db: AsyncSession, policy_id: uuid.UUID, org_id: uuid.UUID) -> Policy:
    stmt = select(Policy).where(Policy.id == policy_id, Policy.is_deleted.is_(False))
    stmt = tenant_filter(stmt, org_id, Policy)
    result = await db.execute(stmt)
    policy = result.scalar_one_or_none()
    if policy is None:
        raise PolicyNotFoundError(policy_id)
    return policy


async def lock_policy(db: AsyncSession, policy_id: uuid.UUID, org_id: uuid.UUID) -> Policy:
    """Take the per-policy write lock for the rest of the transaction."""
    stmt = select(Policy).where(Policy.id == policy_id, Policy.is_deleted.is_(False))
    stmt = tenant_filter(stmt, org_id, Policy).with_for_update()
    try:
        result = await db.execute(stmt)
    except DBAPIError as exc:
        if _is_lock_timeout(exc):
            logger.warning("policy_version.lock_timeout", policy_id=str(policy_id))
            raise VersionConflictError(
                "Another change to this policy is in progress; retry shortly.",
                policy_id=policy_id,
            ) from exc
        raise
    policy = result.scalar_one_or_none()
    if policy is None:
        raise PolicyNotFoundError(policy_id)
    return policy


# ── Reads ─────────────────────────────────────────────────────────────────────


async def get_snapshot(
    db: AsyncSession,
    version_id: uuid.UUID,
    org_id: uuid.UUID,
    include_deleted: bool = False,
    for_update: bool = False,
) -> PolicyVersion:
    stmt = tenant_filter(select(PolicyVersion).where(PolicyVersion.id == version_id), org_id, PolicyVersion)
    if not include_deleted:
        stmt = stmt.where(PolicyVersion.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    version = result.scalar_one_or_none()
    if version is None:
        raise VersionNotFoundError(version_id)
    return version


async def list_snapshots(
    db: AsyncSession,
    policy_id: uuid.UUID,
    org_id: uuid.UUID,
    include_deleted: bool = False,
) -> list[PolicyVersion]:
    """All snapshots of a policy, newest first."""
    await get_policy(db, policy_id, org_id)
    stmt = tenant_filter(
        select(PolicyVersion).where(PolicyVersion.policy_id == policy_id),
        org_id,
        PolicyVersion,
    )
    if not include_deleted:
        stmt = stmt.where(PolicyVersion.deleted_at.is_(None))
    result = await db.execute(stmt.order_by(*_NEWEST_FIRST))
    return list(result.scalars().all())


async def get_latest_snapshot(
    db: AsyncSession, policy_id: uuid.UUID, org_id: uuid.UUID
) -> PolicyVersion | None:
    """The current version: highest number among non-deleted snapshots."""
    stmt = tenant_filter(
        select(PolicyVersion).where(
            PolicyVersion.policy_id == policy_id,
            PolicyVersion.deleted_at.is_(None),
        ),
        org_id,
        PolicyVersion,
    )
    result = await db.execute(stmt.order_by(*_NEWEST_FIRST).limit(1))
    return result.scalar_one_or_none()


async def get_snapshot_by_number(
    db: AsyncSession,
    policy_id: uuid.UUID,
    org_id: uuid.UUID,
    key: VersionKey,
) -> PolicyVersion:
    major, minor, patch = key
    stmt = tenant_filter(
        select(PolicyVersion).where(
            PolicyVersion.policy_id == policy_id,
            PolicyVersion.major == major,
            PolicyVersion.minor == minor,
            PolicyVersion.patch == patch,
            PolicyVersion.deleted_at.is_(None),
        ),
        org_id,
        PolicyVersion,
    )
    result = await db.execute(stmt)
    version = result.scalar_one_or_none()
    if version is None:
        raise VersionNotFoundError(f"{major}.{minor}.{patch}", policy_id=policy_id)
    return version


# ── Writes ────────────────────────────────────────────────────────────────────


def _event(
    version: PolicyVersion,
    event_type: PolicyVersionEventType,
    actor_id: uuid.UUID,
    payload: dict[str, Any],
) -> PolicyVersionEvent:
    return PolicyVersionEvent(
        org_id=version.org_id,
        policy_id=version.policy_id,
        version_id=version.id,
        event_type=event_type,
        actor_id=actor_id,
        payload={"version_number": version.version_number, **payload},
    )


async def append_snapshot(
    db: AsyncSession,
    policy: Policy,
    content: PolicyContent,
    metadata: PolicyMetadata,
    actor_id: uuid.UUID,
    *,
    change_summary: str | None = None,
    status: PolicyVersionStatus = PolicyVersionStatus.DRAFT,
    bump: VersionBump | None = None,
    restored_from_id: uuid.UUID | None = None,
    event_type: PolicyVersionEventType = PolicyVersionEventType.VERSION_CREATED,
    event_payload: dict[str, Any] | None = None,
) -> PolicyVersion:
    """Insert the next snapshot of a locked policy plus its audit fact.

    The caller must already hold the policy lock (``lock_policy``).
    """
    policy_id, org_id = policy.id, policy.org_id
    stored = content.to_stored()
    digest = content_model.content_hash(content)
    words = content_model.word_count(content)
    latest = await get_latest_snapshot(db, policy_id, org_id)
    effective_bump = bump or infer_bump(latest, digest)

    attempts = settings.VERSION_ALLOCATION_MAX_RETRIES + 1
    for attempt in range(1, attempts + 1):
        major, minor, patch = next_version_key(await _max_version_key(db, policy_id), effective_bump)
        version = PolicyVersion(
            id=uuid.uuid4(),
            policy_id=policy_id,
            org_id=org_id,
            major=major,
            minor=minor,
            patch=patch,
            title=metadata.title,
            category=metadata.category,
            jurisdiction_tags=list(metadata.jurisdiction_tags),
            description=metadata.description,
            effective_date=metadata.effective_date,
            content=stored,
            content_hash=digest,
            word_count=words,
            status=status,
            change_summary=change_summary,
            restored_from_id=restored_from_id,
            created_by=actor_id,
            created_at=utcnow(),
        )
        try:
            async with db.begin_nested():
                db.add(version)
                await db.flush()
                db.add(
                    _event(
                        version,
                        event_type,
                        actor_id,
                        {
                            "status": status.value,
                            "bump": effective_bump.value,
                            "content_hash": digest,
                            "change_summary": change_summary,
                            **(event_payload or {}),
                        },
                    )
                )
                await db.flush()
        except IntegrityError:
            logger.warning(
                "policy_version.allocation_collision",
                policy_id=str(policy_id),
                version=f"{major}.{minor}.{patch}",
                attempt=attempt,
            )
            continue
        return version

    raise VersionConflictError(
        "Could not allocate a version number; retry the request.",
        policy_id=policy_id,
        attempts=attempts,
    )


async def create_snapshot(
    db: AsyncSession,
    policy_id: uuid.UUID,
    org_id: uuid.UUID,
    content: PolicyContent | dict[str, Any],
    metadata: PolicyMetadata | dict[str, Any],
    actor_id: uuid.UUID,
    change_summary: str | None = None,
    status: PolicyVersionStatus = PolicyVersionStatus.DRAFT,
    bump: VersionBump | None = None,
) -> PolicyVersion:
    """Persist a new immutable snapshot and return it."""
    if not isinstance(content, PolicyContent):
        content = PolicyContent.model_validate(content)
    if not isinstance(metadata, PolicyMetadata):
        metadata = PolicyMetadata.model_validate(metadata)
    ensure_creatable(status)

    policy = await lock_policy(db, policy_id, org_id)
    version = await append_snapshot(
        db,
        policy,
        content,
        metadata,
        actor_id,
        change_summary=change_summary,
        status=status,
        bump=bump,
    )
    logger.info(
        "policy_version.created",
        policy_id=str(policy_id),
        version=version.version_number,
        org_id=str(org_id),
    )
    return version


async def _has_newer_published(db: AsyncSession, version: PolicyVersion) -> bool:
    result = await db.execute(
        select(PolicyVersion.major, PolicyVersion.minor, PolicyVersion.patch).where(
            PolicyVersion.policy_id == version.policy_id,
            PolicyVersion.id != version.id,
            PolicyVersion.status == PolicyVersionStatus.PUBLISHED,
            PolicyVersion.deleted_at.is_(None),
        )
    )
    return any(tuple(row) > version.version_key for row in result.all())


_STAMPS = {
    PolicyVersionStatus.APPROVED: ("approved_by", "approved_at"),
    PolicyVersionStatus.PUBLISHED: ("published_by", "published_at"),
    PolicyVersionStatus.ARCHIVED: ("archived_by", "archived_at"),
}


async def update_status(
    db: AsyncSession,
    version_id: uuid.UUID,
    org_id: uuid.UUID,
    new_status: PolicyVersionStatus,
    actor_id: uuid.UUID,
) -> PolicyVersion:
    version = await get_snapshot(db, version_id, org_id, for_update=True)
    old_status = version.status
    ensure_transition(old_status, new_status, version_id=version.id)

    if old_status is PolicyVersionStatus.PUBLISHED and not await _has_newer_published(db, version):
        raise InvalidTransitionError(
            "Cannot archive the current published version; publish a newer version first.",
            version_id=version.id,
            from_status=old_status.value,
            to_status=new_status.value,
        )

    now = utcnow()
    version.status = new_status
    if new_status in _STAMPS:
        by_attr, at_attr = _STAMPS[new_status]
        setattr(version, by_attr, actor_id)
        setattr(version, at_attr, now)

    db.add(
        _event(
            version,
            PolicyVersionEventType.VERSION_STATUS_CHANGED,
            actor_id,
            {"from_status": old_status.value, "to_status": new_status.value},
        )
    )
    await db.flush()
    logger.info(
        "policy_version.status_changed",
        version_id=str(version.id),
        from_status=old_status.value,
        to_status=new_status.value,
        org_id=str(org_id),
    )
    return version


async def soft_delete(
    db: AsyncSession,
    version_id: uuid.UUID,
    org_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> PolicyVersion:
    """Hide a snapshot from listings; it keeps its number and can be restored."""
    version = await get_snapshot(db, version_id, org_id, for_update=True)
    if version.status is PolicyVersionStatus.PUBLISHED:
        raise ForbiddenError(
            "Published versions cannot be deleted; publish a newer version and archive this one first.",
            version_id=version.id,
            status=version.status.value,
        )

    version.deleted_at = utcnow()
    version.deleted_by = actor_id
    db.add(_event(version, PolicyVersionEventType.VERSION_DELETED, actor_id, {}))
    await db.flush()
    logger.info("policy_version.deleted", version_id=str(version.id), org_id=str(org_id))
    return version


async def restore_snapshot(
    db: AsyncSession,
    version_id: uuid.UUID,
    org_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> PolicyVersion:
    """Undo a soft delete. Restoring an active snapshot is a no-op."""
    version = await get_snapshot(db, version_id, org_id, include_deleted=True, for_update=True)
    if not version.is_deleted:
        return version

    deleted_at: datetime | None = version.deleted_at
    version.deleted_at = None
    version.deleted_by = None
    db.add(
        _event(
            version,
            PolicyVersionEventType.VERSION_RESTORED,
            actor_id,
            {"deleted_at": deleted_at.isoformat() if deleted_at else None},
        )
    )
    await db.flush()
    logger.info("policy_version.restored", version_id=str(version.id), org_id=str(org_id))
    return version


# ── Audit facts ───────────────────────────────────────────────────────────────


async def list_events(
    db: AsyncSession, policy_id: uuid.UUID, org_id: uuid.UUID
) -> list[PolicyVersionEvent]:
    """Audit facts for a policy, oldest first."""
    await get_policy(db, policy_id, org_id)
    stmt = tenant_filter(
        select(PolicyVersionEvent).where(PolicyVersionEvent.policy_id == policy_id),
        org_id,
        PolicyVersionEvent,
    )
    result = await db.execute(stmt.order_by(PolicyVersionEvent.created_at.asc()))
    return list(result.scalars().all())


async def list_undelivered_events(db: AsyncSession, limit: int = 100) -> list[PolicyVersionEvent]:
    """Outbox rows not yet shipped to the audit log service."""
    result = await db.execute(
        select(PolicyVersionEvent)
        .where(PolicyVersionEvent.delivered_at.is_(None))
        .order_by(PolicyVersionEvent.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def mark_events_delivered(db: AsyncSession, event_ids: list[uuid.UUID]) -> int:
    if not event_ids:
        return 0
    result = await db.execute(select(PolicyVersionEvent).where(PolicyVersionEvent.id.in_(event_ids)))
    events = list(result.scalars().all())
    now = utcnow()
    for evt in events:
        if evt.delivered_at is None:
            evt.delivered_at = now
    await db.flush()
    return len(events)
