from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql import Select

from salesdesk import audit
from salesdesk.core.errors import AuthorizationError
from salesdesk.metrics import observe_access_denied
from salesdesk.security.context import ActorUser
from salesdesk.security.policies import AccessScope, AllRecords, OwnedBy, Resource, ResourceAction, can_access


def apply_access_scope(
    query: Select[Any],
    owner_column: InstrumentedAttribute[Any],
    scope: AccessScope,
) -> Select[Any]:
    """Narrow ``query`` to the rows ``scope`` allows."""

    match scope:
        case AllRecords():
            return query
        case OwnedBy(user_id=user_id):
            return query.where(owner_column == user_id)
    raise TypeError(f"unsupported access scope: {scope!r}")


def enforce_access(
    actor: ActorUser,
    resource: Resource,
    owner_id: uuid.UUID | None,
    action: ResourceAction,
    *,
    entity_id: uuid.UUID | str,
) -> None:
    if not can_access(actor, resource, owner_id, action):
        raise deny(actor, resource, action, entity_id=entity_id)


def deny(
    actor: ActorUser,
    resource: Resource,
    action: ResourceAction,
    *,
    entity_id: uuid.UUID | str,
    message: str | None = None,
) -> AuthorizationError:
    """Record a denial and return the error for the caller to raise."""

    observe_access_denied(resource=resource.value, action=action.value)
    audit.record(
        actor_user_id=actor.audit_id,
        entity_type=resource.value,
        entity_id=str(entity_id),
        action="access.denied",
        before=None,
        after={"action": action.value, "role": actor.role.value},
        correlation_id=actor.correlation_id,
    )
    return AuthorizationError(message or f"{actor.role.value.lower()} may not {action.value} this {resource.value}")
