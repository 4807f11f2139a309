"""Rollback — restore an earlier snapshot's content as a new draft version.

History is never rewritten: the restored content is appended as the next
version, with ``restored_from_id`` pointing at the source snapshot and the
reason recorded as its change summary.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.enums import PolicyVersionEventType, PolicyVersionStatus
from app.models.policy_versions import PolicyVersion
from app.modules.policy_versions import service
from app.modules.policy_versions.content import PolicyContent
from app.modules.policy_versions.diff import DiffEngine
from app.modules.policy_versions.exceptions import InvalidReasonError, VersionNotFoundError
from app.modules.policy_versions.schemas import PolicyMetadata

logger = structlog.get_logger()


def validate_reason(reason: str | None) -> str:
    """Return the stripped reason or raise ``InvalidReasonError``."""
    text = (reason or "").strip()
    min_len = settings.ROLLBACK_REASON_MIN_LENGTH
    max_len = settings.ROLLBACK_REASON_MAX_LENGTH
    if not text:
        raise InvalidReasonError("A rollback reason is required.", field="reason")
    if len(text) < min_len:
        raise InvalidReasonError(
            f"Rollback reason must be at least {min_len} characters.",
            field="reason",
            min_length=min_len,
            length=len(text),
        )
    if len(text) > max_len:
        raise InvalidReasonError(
            f"Rollback reason must be at most {max_len} characters.",
            field="reason",
            max_length=max_len,
            length=len(text),
        )
    return text


async def rollback(
    db: AsyncSession,
    policy_id: uuid.UUID,
    target_version_id: uuid.UUID,
    reason: str,
    actor_id: uuid.UUID,
    org_id: uuid.UUID,
) -> PolicyVersion:
    reason = validate_reason(reason)

    policy = await service.lock_policy(db, policy_id, org_id)
    target = await service.get_snapshot(db, target_version_id, org_id)
    if target.policy_id != policy.id:
        raise VersionNotFoundError(target_version_id, policy_id=policy_id)

    latest = await service.get_latest_snapshot(db, policy.id, org_id)
    engine = DiffEngine(settings.DIFF_PROXIMITY_WINDOW, settings.DIFF_MIN_SIMILARITY)
    report = engine.compare(latest, target) if latest is not None else None

    version = await service.append_snapshot(
        db,
        policy,
        PolicyContent.from_stored(target.content),
        PolicyMetadata.from_snapshot(target),
        actor_id,
        change_summary=reason,
        status=PolicyVersionStatus.DRAFT,
        restored_from_id=target.id,
        event_type=PolicyVersionEventType.VERSION_ROLLBACK,
        event_payload={
            "from_version": latest.version_number if latest is not None else None,
            "from_version_id": str(latest.id) if latest is not None else None,
            "restored_from": target.version_number,
            "restored_from_id": str(target.id),
            "reason": reason,
            "stats": (
                {
                    "additions": report.stats.additions,
                    "deletions": report.stats.deletions,
                    "modifications": report.stats.modifications,
                    "percent_changed": report.stats.percent_changed,
                    "changed_fields": report.changed_fields,
                }
                if report is not None
                else None
            ),
        },
    )
    logger.info(
        "policy_version.rollback",
        policy_id=str(policy_id),
        restored_from=target.version_number,
        version=version.version_number,
        org_id=str(org_id),
    )
    return version
