"""SQLAlchemy models package — import all models so Base.metadata is populated."""

from app.models.base import AuditMixin, BaseModel, ModelMixin, TimestampedModel
from app.models.enums import (
    PolicyVersionEventType,
    PolicyVersionStatus,
    UserRole,
    VersionBump,
)
from app.models.policies import Policy
from app.models.policy_versions import PolicyVersion, PolicyVersionEvent

__all__ = [
    "AuditMixin",
    "BaseModel",
    "ModelMixin",
    "Policy",
    "PolicyVersion",
    "PolicyVersionEvent",
    "PolicyVersionEventType",
    "PolicyVersionStatus",
    "TimestampedModel",
    "UserRole",
    "VersionBump",
]
