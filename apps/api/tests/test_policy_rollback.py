"""Tests for policy rollback: restoring content by appending a new version."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import PolicyVersionEventType, PolicyVersionStatus, VersionBump
from app.models.policies import Policy
from app.modules.policy_versions import service
from app.modules.policy_versions.exceptions import (
    InvalidReasonError,
    PolicyNotFoundError,
    VersionNotFoundError,
)
from app.modules.policy_versions.rollback import rollback, validate_reason
from tests.conftest import (
    OTHER_USER_ID,
    SAMPLE_ORG_ID,
    SAMPLE_POLICY_ID,
    SAMPLE_USER_ID,
    make_content,
    make_metadata,
)

pytestmark = pytest.mark.anyio

REASON = "Restoring original wording per legal review"


@pytest.fixture
async def history(db: AsyncSession, sample_policy):
    """Versions 1.0.0 ("line1\\nline2") and 2.0.0 ("line1\\nline2 modified\\nline3")."""
    v1 = await service.create_snapshot(
        db, SAMPLE_POLICY_ID, SAMPLE_ORG_ID, make_content("line1\nline2"), make_metadata(), SAMPLE_USER_ID
    )
    v2 = await service.create_snapshot(
        db,
        SAMPLE_POLICY_ID,
        SAMPLE_ORG_ID,
        make_content("line1\nline2 modified\nline3"),
        make_metadata(category="Compliance"),
        SAMPLE_USER_ID,
        bump=VersionBump.MAJOR,
    )
    await db.commit()
    return v1, v2


class TestRollback:
    async def test_creates_new_draft_with_target_content(self, db, history):
        v1, v2 = history
        restored = await rollback(db, SAMPLE_POLICY_ID, v1.id, REASON, OTHER_USER_ID, SAMPLE_ORG_ID)
        await db.commit()

        assert restored.id not in (v1.id, v2.id)
        assert restored.status == PolicyVersionStatus.DRAFT
        assert restored.content == v1.content
        assert restored.content_hash == v1.content_hash
        assert restored.category == v1.category
        assert restored.restored_from_id == v1.id
        assert restored.change_summary == REASON
        assert restored.created_by == OTHER_USER_ID
        assert restored.version_key > v2.version_key
        assert restored.version_number == "2.1.0"

    async def test_audit_fact_records_restored_from(self, db, history):
        v1, v2 = history
        restored = await rollback(db, SAMPLE_POLICY_ID, v1.id, REASON, OTHER_USER_ID, SAMPLE_ORG_ID)
        await db.commit()

        events = await service.list_events(db, SAMPLE_POLICY_ID, SAMPLE_ORG_ID)
        rollback_events = [e for e in events if e.event_type == PolicyVersionEventType.VERSION_ROLLBACK]
        assert len(rollback_events) == 1
        fact = rollback_events[0]
        assert fact.version_id == restored.id
        assert fact.actor_id == OTHER_USER_ID
        assert fact.payload["restored_from"] == "1.0.0"
        assert fact.payload["from_version"] == "2.0.0"
        assert fact.payload["reason"] == REASON
        # Going back from 2.0.0 to 1.0.0 removes line3 and reverts line2
        assert fact.payload["stats"]["deletions"] == 1
        assert fact.payload["stats"]["modifications"] == 1
        assert fact.payload["stats"]["changed_fields"] == ["category"]

    async def test_history_is_never_mutated(self, db, history):
        v1, v2 = history
        before = {v.id: (v.version_number, v.content_hash, v.status) for v in history}

        await rollback(db, SAMPLE_POLICY_ID, v1.id, REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)
        await db.commit()

        listed = await service.list_snapshots(db, SAMPLE_POLICY_ID, SAMPLE_ORG_ID)
        assert len(listed) == 3
        for version in listed:
            if version.id in before:
                assert before[version.id] == (version.version_number, version.content_hash, version.status)

    async def test_rollback_to_latest_content_bumps_patch(self, db, history):
        _, v2 = history
        restored = await rollback(db, SAMPLE_POLICY_ID, v2.id, REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)
        assert restored.version_number == "2.0.1"

    async def test_reason_is_stripped(self, db, history):
        v1, _ = history
        restored = await rollback(db, SAMPLE_POLICY_ID, v1.id, f"  {REASON}  ", SAMPLE_USER_ID, SAMPLE_ORG_ID)
        assert restored.change_summary == REASON

    async def test_target_from_other_policy_not_found(self, db, history):
        other = Policy(org_id=SAMPLE_ORG_ID, reference="POL-002", created_by=SAMPLE_USER_ID)
        db.add(other)
        await db.flush()
        foreign = await service.create_snapshot(
            db, other.id, SAMPLE_ORG_ID, make_content("other"), make_metadata(title="Other"), SAMPLE_USER_ID
        )
        with pytest.raises(VersionNotFoundError):
            await rollback(db, SAMPLE_POLICY_ID, foreign.id, REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)

    async def test_deleted_target_not_found(self, db, history):
        v1, _ = history
        await service.soft_delete(db, v1.id, SAMPLE_ORG_ID, SAMPLE_USER_ID)
        with pytest.raises(VersionNotFoundError):
            await rollback(db, SAMPLE_POLICY_ID, v1.id, REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)

    async def test_unknown_target(self, db, history):
        with pytest.raises(VersionNotFoundError):
            await rollback(db, SAMPLE_POLICY_ID, uuid.uuid4(), REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)

    async def test_unknown_policy(self, db, history):
        v1, _ = history
        with pytest.raises(PolicyNotFoundError):
            await rollback(db, uuid.uuid4(), v1.id, REASON, SAMPLE_USER_ID, SAMPLE_ORG_ID)


class TestReasonValidation:
    @pytest.mark.parametrize("reason", ["", "   ", "ok", "too short", None])
    async def test_weak_reasons_rejected(self, db, history, reason):
        v1, _ = history
        with pytest.raises(InvalidReasonError) as exc:
            await rollback(db, SAMPLE_POLICY_ID, v1.id, reason, SAMPLE_USER_ID, SAMPLE_ORG_ID)
        assert exc.value.detail["field"] == "reason"
        listed = await service.list_snapshots(db, SAMPLE_POLICY_ID, SAMPLE_ORG_ID)
        assert len(listed) == 2

    async def test_reason_checked_before_database_access(self):
        with pytest.raises(InvalidReasonError):
            await rollback(None, SAMPLE_POLICY_ID, uuid.uuid4(), "ok", SAMPLE_USER_ID, SAMPLE_ORG_ID)

    def test_overlong_reason_rejected(self):
        with pytest.raises(InvalidReasonError) as exc:
            validate_reason("x" * 501)
        assert exc.value.detail["max_length"] == 500

    def test_boundaries_accepted(self):
        assert validate_reason("x" * 10) == "x" * 10
        assert validate_reason("x" * 500) == "x" * 500

    def test_qualifying_reason(self):
        reason = "Reverting due to incorrect compliance reference found on review"
        assert validate_reason(reason) == reason
