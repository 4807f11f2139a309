"""Domain enums shared by models, services and schemas."""

import enum


# ── Identity ─────────────────────────────────────────────────────────────────


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    APPROVER = "approver"
    EDITOR = "editor"
    VIEWER = "viewer"


# ── Policy versions ──────────────────────────────────────────────────────────


class PolicyVersionStatus(str, enum.Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class VersionBump(str, enum.Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class PolicyVersionEventType(str, enum.Enum):
    VERSION_CREATED = "version_created"
    VERSION_ROLLBACK = "version_rollback"
    VERSION_STATUS_CHANGED = "version_status_changed"
    VERSION_DELETED = "version_deleted"
    VERSION_RESTORED = "version_restored"
