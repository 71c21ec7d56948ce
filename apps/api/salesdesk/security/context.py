from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


@dataclass(slots=True)
class ActorUser:
    """The authenticated requester every CRM operation runs on behalf of."""

    user_id: uuid.UUID
    role: Role
    correlation_id: str | None = None

    @property
    def audit_id(self) -> str:
        return str(self.user_id)
