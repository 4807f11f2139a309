"""HTTP tests for the policy version endpoints."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.models.enums import UserRole
from tests.conftest import (
    OTHER_ORG_ID,
    SAMPLE_POLICY_ID,
    SAMPLE_USER_ID,
    identity_headers,
)

pytestmark = pytest.mark.anyio

BASE = f"/v1/policies/{SAMPLE_POLICY_ID}"
REASON = "Restoring original wording per legal review"


def _body(text: str, title: str = "Policy A", **extra) -> dict:
    return {
        "content": {"blocks": [{"type": "paragraph", "text": line} for line in text.splitlines()]},
        "metadata": {"title": title},
        **extra,
    }


async def _create(client: AsyncClient, text: str, **extra) -> dict:
    resp = await client.post(f"{BASE}/versions", json=_body(text, **extra))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _set_status(client: AsyncClient, version_id: str, status: str, role=UserRole.ADMIN):
    return await client.patch(
        f"/v1/policies/versions/{version_id}/status",
        json={"status": status},
        headers=identity_headers(role),
    )


class TestCreateAndRead:
    async def test_create_returns_first_version(self, client, sample_policy):
        resp = await client.post(
            f"{BASE}/versions", json=_body("line1\nline2", change_summary="Initial draft")
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["version_number"] == "1.0.0"
        assert data["status"] == "draft"
        assert data["created_by"] == str(SAMPLE_USER_ID)
        assert data["word_count"] == 2
        assert data["change_summary"] == "Initial draft"

    async def test_content_change_bumps_minor(self, client, sample_policy):
        await _create(client, "line1")
        second = await _create(client, "line1\nline2")
        assert second["version_number"] == "1.1.0"

    async def test_viewer_cannot_create(self, client, sample_policy):
        resp = await client.post(
            f"{BASE}/versions", json=_body("x"), headers=identity_headers(UserRole.VIEWER)
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "http_403"

    async def test_unknown_policy_returns_envelope(self, client, sample_policy):
        resp = await client.post(f"/v1/policies/{uuid.uuid4()}/versions", json=_body("x"))
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "not_found"
        assert "policy_id" in body["detail"]

    async def test_cannot_create_as_published(self, client, sample_policy):
        resp = await client.post(f"{BASE}/versions", json=_body("x", status="published"))
        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_transition"

    async def test_get_version_and_summary(self, client, sample_policy):
        created = await _create(client, "retain records for five years")
        resp = await client.get(f"/v1/policies/versions/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["content"]["blocks"][0]["text"] == "retain records for five years"

        summary = (await client.get(f"/v1/policies/versions/{created['id']}/summary")).json()
        assert summary["version_number"] == "1.0.0"
        assert summary["word_count"] == 5
        assert summary["age_seconds"] >= 0

    async def test_other_org_sees_nothing(self, client, sample_policy):
        created = await _create(client, "x")
        headers = identity_headers(org_id=OTHER_ORG_ID)
        assert (await client.get(f"/v1/policies/versions/{created['id']}", headers=headers)).status_code == 404
        assert (await client.get(f"{BASE}/versions", headers=headers)).status_code == 404

    async def test_response_carries_api_version_header(self, client, sample_policy):
        resp = await client.get(f"{BASE}/versions")
        assert resp.headers["X-API-Version"] == "v1"


class TestListing:
    async def test_list_newest_first(self, client, sample_policy):
        await _create(client, "a")
        await _create(client, "a\nb")
        data = (await client.get(f"{BASE}/versions")).json()
        assert data["total"] == 2
        assert [v["version_number"] for v in data["items"]] == ["1.1.0", "1.0.0"]

    async def test_include_deleted(self, client, sample_policy):
        first = await _create(client, "a")
        await _create(client, "a\nb")
        assert (await client.delete(f"/v1/policies/versions/{first['id']}")).status_code == 204

        assert (await client.get(f"{BASE}/versions")).json()["total"] == 1
        data = (await client.get(f"{BASE}/versions", params={"include_deleted": True})).json()
        assert data["total"] == 2

    async def test_timeline_marks_latest(self, client, sample_policy):
        await _create(client, "a")
        latest = await _create(client, "a\nb")
        data = (await client.get(f"{BASE}/timeline")).json()
        assert data["latest_version_id"] == latest["id"]
        assert [entry["is_latest"] for entry in data["items"]] == [True, False]
        assert "content" not in data["items"][0]

    async def test_empty_timeline(self, client, sample_policy):
        data = (await client.get(f"{BASE}/timeline")).json()
        assert data == {
            "policy_id": str(SAMPLE_POLICY_ID),
            "latest_version_id": None,
            "items": [],
            "total": 0,
        }


class TestCompare:
    async def test_compare_by_ids(self, client, sample_policy):
        v1 = await _create(client, "line1\nline2")
        v2 = await _create(client, "line1\nline2 modified\nline3")
        resp = await client.get("/v1/policies/versions/compare", params={"v1": v1["id"], "v2": v2["id"]})
        assert resp.status_code == 200
        report = resp.json()
        assert report["stats"]["additions"] == 1
        assert report["stats"]["modifications"] == 1
        assert [ld["kind"] for ld in report["line_diffs"]] == ["unchanged", "modified", "added"]
        assert report["unified_diff"][:2] == ["--- v1.0.0", "+++ v1.1.0"]

    async def test_compare_by_version_numbers(self, client, sample_policy):
        await _create(client, "line1\nline2")
        await _create(client, "line1\nline2 modified\nline3")
        resp = await client.get(f"{BASE}/compare", params={"v1": "1.1.0", "v2": "v1.0.0"})
        assert resp.status_code == 200
        stats = resp.json()["stats"]
        assert stats["deletions"] == 1
        assert stats["modifications"] == 1

    async def test_malformed_reference(self, client, sample_policy):
        await _create(client, "a")
        resp = await client.get(f"{BASE}/compare", params={"v1": "latest", "v2": "1.0.0"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_comparison"


class TestRollback:
    async def test_rollback_appends_draft(self, client, sample_policy):
        v1 = await _create(client, "line1\nline2")
        await _create(client, "line1\nline2 modified\nline3")
        resp = await client.post(
            f"{BASE}/rollback", json={"target_version_id": v1["id"], "reason": REASON}
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["version_number"] == "1.2.0"
        assert data["status"] == "draft"
        assert data["restored_from_id"] == v1["id"]
        assert data["content_hash"] == v1["content_hash"]

    async def test_short_reason_rejected(self, client, sample_policy):
        v1 = await _create(client, "a")
        resp = await client.post(f"{BASE}/rollback", json={"target_version_id": v1["id"], "reason": "oops"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "invalid_reason"
        assert body["detail"]["field"] == "reason"

    async def test_approver_cannot_rollback(self, client, sample_policy):
        v1 = await _create(client, "a")
        resp = await client.post(
            f"{BASE}/rollback",
            json={"target_version_id": v1["id"], "reason": REASON},
            headers=identity_headers(UserRole.APPROVER),
        )
        assert resp.status_code == 403


class TestStatusFlow:
    async def test_full_publication_path(self, client, sample_policy):
        version = await _create(client, "a")
        resp = await _set_status(client, version["id"], "under_review", UserRole.EDITOR)
        assert resp.status_code == 200
        assert resp.json()["status"] == "under_review"

        assert (await _set_status(client, version["id"], "approved", UserRole.EDITOR)).status_code == 403

        resp = await _set_status(client, version["id"], "approved", UserRole.APPROVER)
        assert resp.json()["approved_by"] == str(SAMPLE_USER_ID)

        resp = await _set_status(client, version["id"], "published", UserRole.APPROVER)
        assert resp.json()["status"] == "published"
        assert resp.json()["published_at"] is not None

    async def test_invalid_transition(self, client, sample_policy):
        version = await _create(client, "a")
        resp = await _set_status(client, version["id"], "published")
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "invalid_transition"
        assert body["detail"]["from_status"] == "draft"

    async def test_published_version_cannot_be_deleted(self, client, sample_policy):
        version = await _create(client, "a", status="under_review")
        await _set_status(client, version["id"], "approved")
        await _set_status(client, version["id"], "published")

        resp = await client.delete(f"/v1/policies/versions/{version['id']}")
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    async def test_delete_and_restore(self, client, sample_policy):
        version = await _create(client, "a")
        assert (await client.delete(f"/v1/policies/versions/{version['id']}")).status_code == 204
        assert (await client.get(f"/v1/policies/versions/{version['id']}")).status_code == 404

        resp = await client.post(f"/v1/policies/versions/{version['id']}/restore")
        assert resp.status_code == 200
        assert resp.json()["deleted_at"] is None
        assert (await client.get(f"/v1/policies/versions/{version['id']}")).status_code == 200

    async def test_editor_cannot_delete(self, client, sample_policy):
        version = await _create(client, "a")
        resp = await client.delete(
            f"/v1/policies/versions/{version['id']}", headers=identity_headers(UserRole.EDITOR)
        )
        assert resp.status_code == 403


class TestEvents:
    async def test_audit_trail_oldest_first(self, client, sample_policy):
        version = await _create(client, "a")
        await _set_status(client, version["id"], "under_review")
        data = (await client.get(f"{BASE}/events")).json()
        assert [e["event_type"] for e in data["items"]] == ["version_created", "version_status_changed"]
        assert data["items"][1]["payload"]["to_status"] == "under_review"
        assert data["items"][0]["delivered_at"] is None

    async def test_viewer_cannot_read_audit_trail(self, client, sample_policy):
        resp = await client.get(f"{BASE}/events", headers=identity_headers(UserRole.VIEWER))
        assert resp.status_code == 403


class TestIdentity:
    async def test_missing_headers_401(self, client, sample_policy):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as anon:
            resp = await anon.get(f"{BASE}/versions")
        assert resp.status_code == 401
        assert resp.json()["error"] == "http_401"

    async def test_malformed_role_401(self, client, sample_policy):
        headers = {**identity_headers(), "X-User-Role": "root"}
        resp = await client.get(f"{BASE}/versions", headers=headers)
        assert resp.status_code == 401


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["service"] == "policy-versions-api"
