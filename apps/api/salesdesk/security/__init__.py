from salesdesk.security.context import ActorUser, Role
from salesdesk.security.policies import (
    AccessScope,
    AllRecords,
    OwnedBy,
    Resource,
    ResourceAction,
    can_access,
    can_assign_owner,
    can_list_archived,
    scope_for,
    scope_permits,
)
from salesdesk.security.repository import BaseRepository
from salesdesk.security.scoping import apply_access_scope, deny, enforce_access

__all__ = [
    "AccessScope",
    "ActorUser",
    "AllRecords",
    "BaseRepository",
    "OwnedBy",
    "Resource",
    "ResourceAction",
    "Role",
    "apply_access_scope",
    "can_access",
    "can_assign_owner",
    "can_list_archived",
    "deny",
    "enforce_access",
    "scope_for",
    "scope_permits",
]
