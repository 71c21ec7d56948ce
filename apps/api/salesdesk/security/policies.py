"""Role and ownership rules for CRM records.

Visibility is expressed as an ``AccessScope`` computed once per request:
``AllRecords`` leaves a query untouched, ``OwnedBy`` restricts it to rows whose
owner column (lead owner, client account manager, deal owner, meeting organizer)
matches the requester.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum

from salesdesk.security.context import ActorUser, Role


class Resource(StrEnum):
    LEAD = "crm.lead"
    CLIENT = "crm.client"
    DEAL = "crm.deal"
    MEETING = "crm.meeting"


class ResourceAction(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    CONVERT = "convert"
    ASSIGN = "assign"


@dataclass(frozen=True, slots=True)
class AllRecords:
    pass


@dataclass(frozen=True, slots=True)
class OwnedBy:
    user_id: uuid.UUID


AccessScope = AllRecords | OwnedBy


_OWNER_SCOPED_RESOURCES: dict[Role, frozenset[Resource]] = {
    Role.ADMIN: frozenset(),
    Role.MANAGER: frozenset({Resource.DEAL}),
    Role.EMPLOYEE: frozenset(Resource),
}

_EMPLOYEE_FORBIDDEN: frozenset[tuple[Resource, ResourceAction]] = frozenset(
    {
        (Resource.LEAD, ResourceAction.DELETE),
        (Resource.DEAL, ResourceAction.DELETE),
        (Resource.DEAL, ResourceAction.RESTORE),
    }
)


def scope_for(actor: ActorUser, resource: Resource) -> AccessScope:
    if resource in _OWNER_SCOPED_RESOURCES[actor.role]:
        return OwnedBy(actor.user_id)
    return AllRecords()


def scope_permits(scope: AccessScope, owner_id: uuid.UUID | None) -> bool:
    match scope:
        case AllRecords():
            return True
        case OwnedBy(user_id=user_id):
            return owner_id is not None and owner_id == user_id
    return False


def can_access(
    actor: ActorUser,
    resource: Resource,
    owner_id: uuid.UUID | None,
    action: ResourceAction = ResourceAction.READ,
) -> bool:
    if actor.role == Role.EMPLOYEE and (resource, action) in _EMPLOYEE_FORBIDDEN:
        return False
    return scope_permits(scope_for(actor, resource), owner_id)


def can_list_archived(actor: ActorUser) -> bool:
    return actor.role != Role.EMPLOYEE


def can_assign_owner(
    actor: ActorUser,
    resource: Resource,
    assignee_id: uuid.UUID,
    assignee_role: Role | None,
) -> bool:
    """Whether ``actor`` may hand a lead or deal to ``assignee_id``.

    Employees never choose a lead owner and may only name themselves on deals.
    Managers may pick themselves or an employee. Admins may pick anyone.
    """

    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.MANAGER:
        return assignee_id == actor.user_id or assignee_role == Role.EMPLOYEE
    return resource == Resource.DEAL and assignee_id == actor.user_id
