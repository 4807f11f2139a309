"""Read-side queries over a policy's history: timeline, comparison, summary."""

from __future__ import annotations

import re
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from app.core.config import settings
from app.middleware.tenant import tenant_filter
from app.models.base import utcnow
from app.models.policy_versions import PolicyVersion
from app.modules.policy_versions import service
from app.modules.policy_versions.diff import DiffEngine, DiffReport
from app.modules.policy_versions.exceptions import InvalidComparisonError

_VERSION_NUMBER_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")


def get_engine() -> DiffEngine:
    return DiffEngine(settings.DIFF_PROXIMITY_WINDOW, settings.DIFF_MIN_SIMILARITY)


async def get_timeline(
    db: AsyncSession, policy_id: uuid.UUID, org_id: uuid.UUID
) -> list[PolicyVersion]:
    """Non-deleted snapshots, newest first, with the content column deferred."""
    await service.get_policy(db, policy_id, org_id)
    stmt = tenant_filter(
        select(PolicyVersion)
        .options(defer(PolicyVersion.content))
        .where(
            PolicyVersion.policy_id == policy_id,
            PolicyVersion.deleted_at.is_(None),
        ),
        org_id,
        PolicyVersion,
    )
    result = await db.execute(
        stmt.order_by(
            PolicyVersion.major.desc(),
            PolicyVersion.minor.desc(),
            PolicyVersion.patch.desc(),
        )
    )
    return list(result.scalars().all())


async def compare(
    db: AsyncSession,
    org_id: uuid.UUID,
    version_a_id: uuid.UUID,
    version_b_id: uuid.UUID,
) -> DiffReport:
    old = await service.get_snapshot(db, version_a_id, org_id)
    new = await service.get_snapshot(db, version_b_id, org_id)
    return get_engine().compare(old, new)


def parse_version_ref(ref: str) -> uuid.UUID | tuple[int, int, int]:
    """A snapshot id or a version number such as ``1.1.0``."""
    text = ref.strip()
    match = _VERSION_NUMBER_RE.match(text)
    if match:
        return tuple(int(part) for part in match.groups())  # type: ignore[return-value]
    try:
        return uuid.UUID(text)
    except ValueError:
        raise InvalidComparisonError(
            f"{ref!r} is neither a version id nor a version number like 1.1.0",
            field="ref",
            value=ref,
        ) from None


async def _resolve(
    db: AsyncSession, org_id: uuid.UUID, policy_id: uuid.UUID, ref: str
) -> PolicyVersion:
    parsed = parse_version_ref(ref)
    if isinstance(parsed, uuid.UUID):
        return await service.get_snapshot(db, parsed, org_id)
    return await service.get_snapshot_by_number(db, policy_id, org_id, parsed)


async def compare_by_reference(
    db: AsyncSession,
    org_id: uuid.UUID,
    policy_id: uuid.UUID,
    ref_a: str,
    ref_b: str,
) -> DiffReport:
    await service.get_policy(db, policy_id, org_id)
    old = await _resolve(db, org_id, policy_id, ref_a)
    new = await _resolve(db, org_id, policy_id, ref_b)
    for snapshot in (old, new):
        if snapshot.policy_id != policy_id:
            raise InvalidComparisonError(
                "Version does not belong to this policy",
                policy_id=policy_id,
                version_id=snapshot.id,
            )
    return get_engine().compare(old, new)


async def get_summary(db: AsyncSession, version_id: uuid.UUID, org_id: uuid.UUID) -> dict[str, Any]:
    version = await service.get_snapshot(db, version_id, org_id)
    return {
        "id": version.id,
        "version_number": version.version_number,
        "status": version.status,
        "word_count": version.word_count,
        "age_seconds": version.age(utcnow()).total_seconds(),
    }
