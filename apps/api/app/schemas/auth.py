"""Auth schemas: CurrentUser."""

import uuid

from pydantic import BaseModel

from app.models.enums import UserRole


class CurrentUser(BaseModel):
    """Actor context taken from the identity headers set by the gateway."""

    user_id: uuid.UUID
    org_id: uuid.UUID
    role: UserRole
