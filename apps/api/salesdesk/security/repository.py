from __future__ import annotations

import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session
from sqlalchemy.sql import Select

from salesdesk.core.errors import NotFoundError
from salesdesk.security.context import ActorUser
from salesdesk.security.policies import Resource, ResourceAction, scope_for
from salesdesk.security.scoping import apply_access_scope, enforce_access

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]
    resource: Resource
    owner_field = "owner_id"
    entity_label = "record"

    def owner_column(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.owner_field)

    def apply_scope_query(self, query: Select[Any], ctx: ActorUser) -> Select[Any]:
        return apply_access_scope(query, self.owner_column(), scope_for(ctx, self.resource))

    def scoped_select(self, ctx: ActorUser) -> Select[Any]:
        return self.apply_scope_query(select(self.model), ctx)

    def get(self, session: Session, entity_id: uuid.UUID) -> ModelT | None:
        return session.get(self.model, entity_id)

    def get_for(
        self,
        session: Session,
        ctx: ActorUser,
        entity_id: uuid.UUID,
        action: ResourceAction = ResourceAction.READ,
    ) -> ModelT:
        """Load a record, then check the requester may act on it.

        A missing record is reported before any access decision.
        """

        record = self.get(session, entity_id)
        if record is None:
            raise NotFoundError(self.entity_label, entity_id)
        enforce_access(ctx, self.resource, getattr(record, self.owner_field), action, entity_id=entity_id)
        return record
