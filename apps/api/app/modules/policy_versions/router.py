"""Policy Version Control API router."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import ensure_permission, get_current_user, require_permission
from app.auth.rbac import Action, Resource
from app.core.database import get_db, get_readonly_db
from app.models.enums import PolicyVersionStatus
from app.modules.policy_versions import rollback as rollback_manager
from app.modules.policy_versions import service, timeline
from app.modules.policy_versions.diff import DiffReport
from app.modules.policy_versions.schemas import (
    CreateVersionRequest,
    DiffReportResponse,
    PolicyVersionEventListResponse,
    PolicyVersionEventResponse,
    PolicyVersionListResponse,
    PolicyVersionResponse,
    RollbackRequest,
    TimelineEntry,
    TimelineResponse,
    UpdateStatusRequest,
    VersionSummaryResponse,
)
from app.schemas.auth import CurrentUser

router = APIRouter(prefix="/policies", tags=["policy-versions"])

_VIEW = require_permission(Action.VIEW, Resource.POLICY_VERSION)

# Action a caller needs to move a version into each status
STATUS_ACTIONS: dict[PolicyVersionStatus, str] = {
    PolicyVersionStatus.DRAFT: Action.EDIT,
    PolicyVersionStatus.UNDER_REVIEW: Action.EDIT,
    PolicyVersionStatus.APPROVED: Action.APPROVE,
    PolicyVersionStatus.PUBLISHED: Action.PUBLISH,
    PolicyVersionStatus.ARCHIVED: Action.PUBLISH,
}


def _report_response(report: DiffReport) -> DiffReportResponse:
    response = DiffReportResponse.model_validate(report)
    response.unified_diff = report.to_unified()
    return response


# ── Version-scoped routes (declared before /{policy_id}/... to win matching) ──


@router.get("/versions/compare", response_model=DiffReportResponse)
async def compare_versions(
    v1: uuid.UUID = Query(..., description="Older version id"),
    v2: uuid.UUID = Query(..., description="Newer version id"),
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    """Line and field diff between two versions of the same policy."""
    report = await timeline.compare(db, current_user.org_id, v1, v2)
    return _report_response(report)


@router.get("/versions/{version_id}", response_model=PolicyVersionResponse)
async def get_version(
    version_id: uuid.UUID,
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    version = await service.get_snapshot(db, version_id, current_user.org_id)
    return PolicyVersionResponse.model_validate(version)


@router.get("/versions/{version_id}/summary", response_model=VersionSummaryResponse)
async def get_version_summary(
    version_id: uuid.UUID,
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    summary = await timeline.get_summary(db, version_id, current_user.org_id)
    return VersionSummaryResponse(**summary)


@router.patch("/versions/{version_id}/status", response_model=PolicyVersionResponse)
async def update_version_status(
    version_id: uuid.UUID,
    body: UpdateStatusRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Move a version through draft → under_review → approved → published → archived."""
    ensure_permission(current_user, STATUS_ACTIONS[body.status], Resource.POLICY_VERSION)
    version = await service.update_status(
        db,
        version_id,
        current_user.org_id,
        body.status,
        actor_id=current_user.user_id,
    )
    await db.commit()
    await db.refresh(version)
    return PolicyVersionResponse.model_validate(version)


@router.delete("/versions/{version_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_version(
    version_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission(Action.DELETE, Resource.POLICY_VERSION)),
    db: AsyncSession = Depends(get_db),
):
    """Soft-delete a version. Published versions cannot be deleted."""
    await service.soft_delete(db, version_id, current_user.org_id, actor_id=current_user.user_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/versions/{version_id}/restore", response_model=PolicyVersionResponse)
async def restore_version(
    version_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission(Action.RESTORE, Resource.POLICY_VERSION)),
    db: AsyncSession = Depends(get_db),
):
    version = await service.restore_snapshot(db, version_id, current_user.org_id, actor_id=current_user.user_id)
    await db.commit()
    await db.refresh(version)
    return PolicyVersionResponse.model_validate(version)


# ── Policy-scoped routes ──────────────────────────────────────────────────────


@router.post(
    "/{policy_id}/versions",
    response_model=PolicyVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_version(
    policy_id: uuid.UUID,
    body: CreateVersionRequest,
    current_user: CurrentUser = Depends(require_permission(Action.CREATE, Resource.POLICY_VERSION)),
    db: AsyncSession = Depends(get_db),
):
    """Record a snapshot of the policy after a committed edit."""
    version = await service.create_snapshot(
        db,
        policy_id=policy_id,
        org_id=current_user.org_id,
        content=body.content,
        metadata=body.metadata,
        actor_id=current_user.user_id,
        change_summary=body.change_summary,
        status=body.status,
        bump=body.bump,
    )
    await db.commit()
    await db.refresh(version)
    return PolicyVersionResponse.model_validate(version)


@router.get("/{policy_id}/versions", response_model=PolicyVersionListResponse)
async def list_versions(
    policy_id: uuid.UUID,
    include_deleted: bool = Query(False),
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    """List all versions of a policy, newest first."""
    versions = await service.list_snapshots(db, policy_id, current_user.org_id, include_deleted=include_deleted)
    return PolicyVersionListResponse(
        items=[PolicyVersionResponse.model_validate(v) for v in versions],
        total=len(versions),
    )


@router.get("/{policy_id}/timeline", response_model=TimelineResponse)
async def get_timeline(
    policy_id: uuid.UUID,
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    """Version history without content bodies."""
    versions = await timeline.get_timeline(db, policy_id, current_user.org_id)
    latest_id = versions[0].id if versions else None
    items = [
        TimelineEntry.model_validate(v).model_copy(update={"is_latest": v.id == latest_id})
        for v in versions
    ]
    return TimelineResponse(policy_id=policy_id, latest_version_id=latest_id, items=items, total=len(items))


@router.get("/{policy_id}/compare", response_model=DiffReportResponse)
async def compare_by_reference(
    policy_id: uuid.UUID,
    v1: str = Query(..., description="Version id or number, e.g. 1.0.0"),
    v2: str = Query(..., description="Version id or number, e.g. 1.1.0"),
    current_user: CurrentUser = Depends(_VIEW),
    db: AsyncSession = Depends(get_readonly_db),
):
    report = await timeline.compare_by_reference(db, current_user.org_id, policy_id, v1, v2)
    return _report_response(report)


@router.post(
    "/{policy_id}/rollback",
    response_model=PolicyVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def rollback_policy(
    policy_id: uuid.UUID,
    body: RollbackRequest,
    current_user: CurrentUser = Depends(require_permission(Action.ROLLBACK, Resource.POLICY_VERSION)),
    db: AsyncSession = Depends(get_db),
):
    """Restore an earlier version's content as a new draft version."""
    version = await rollback_manager.rollback(
        db,
        policy_id=policy_id,
        target_version_id=body.target_version_id,
        reason=body.reason,
        actor_id=current_user.user_id,
        org_id=current_user.org_id,
    )
    await db.commit()
    await db.refresh(version)
    return PolicyVersionResponse.model_validate(version)


@router.get("/{policy_id}/events", response_model=PolicyVersionEventListResponse)
async def list_version_events(
    policy_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission(Action.VIEW, Resource.AUDIT_LOG)),
    db: AsyncSession = Depends(get_readonly_db),
):
    """Audit trail of version changes, oldest first."""
    events = await service.list_events(db, policy_id, current_user.org_id)
    return PolicyVersionEventListResponse(
        items=[PolicyVersionEventResponse.model_validate(e) for e in events],
        total=len(events),
    )
