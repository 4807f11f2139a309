"""Governed documents (policies) whose history is tracked."""

import uuid

from sqlalchemy import Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import AuditMixin, BaseModel


class Policy(BaseModel, AuditMixin):
    """Owning document of a version history.

    Title, category and other metadata live on the snapshots, so a
    historical version always shows the metadata it was created with. The row
    itself is the per-policy lock target for version allocation.
    """

    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("org_id", "reference", name="uq_policies_org_reference"),
        Index("ix_policies_org_id", "org_id"),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Policy(id={self.id}, reference={self.reference!r})>"
