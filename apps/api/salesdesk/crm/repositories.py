from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import InstrumentedAttribute, Session, selectinload

from salesdesk.crm.models import CRMClient, CRMDeal, CRMLead, CRMMeeting, User
from salesdesk.crm.enums import LeadStatus
from salesdesk.security.context import ActorUser
from salesdesk.security.policies import Resource
from salesdesk.security.repository import BaseRepository


class UserRepository:
    def get_active(self, session: Session, user_id: uuid.UUID) -> User | None:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user


class LeadRepository(BaseRepository[CRMLead]):
    model = CRMLead
    resource = Resource.LEAD
    owner_field = "owner_id"
    entity_label = "lead"

    def list_active(self, session: Session, ctx: ActorUser) -> list[CRMLead]:
        stmt = (
            self.scoped_select(ctx)
            .where(CRMLead.is_converted.is_(False))
            .options(selectinload(CRMLead.owner))
            .order_by(CRMLead.created_at.desc())
        )
        return list(session.scalars(stmt))

    def count(self, session: Session, ctx: ActorUser, *, converted: bool) -> int:
        stmt = self.apply_scope_query(select(func.count(CRMLead.id)), ctx).where(
            CRMLead.is_converted.is_(converted)
        )
        return int(session.scalar(stmt) or 0)

    def count_by(self, session: Session, ctx: ActorUser, column: InstrumentedAttribute[Any]) -> dict[str, int]:
        """Grouped counts of the caller's active leads keyed by ``column``."""

        stmt = (
            self.apply_scope_query(select(column, func.count(CRMLead.id)), ctx)
            .where(CRMLead.is_converted.is_(False))
            .group_by(column)
        )
        return {str(key): int(total) for key, total in session.execute(stmt).all()}

    def claim_for_conversion(
        self,
        session: Session,
        lead_id: uuid.UUID,
        *,
        client_id: uuid.UUID,
        estimated_value: Decimal,
        converted_at: datetime,
    ) -> bool:
        """Mark the lead converted unless another transaction already did.

        Returns ``False`` when no unconverted row matched.
        """

        result = session.execute(
            update(CRMLead)
            .where(CRMLead.id == lead_id, CRMLead.is_converted.is_(False))
            .values(
                is_converted=True,
                converted_at=converted_at,
                converted_client_id=client_id,
                status=LeadStatus.CONVERTED.value,
                estimated_value=estimated_value,
                updated_at=converted_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ClientRepository(BaseRepository[CRMClient]):
    model = CRMClient
    resource = Resource.CLIENT
    owner_field = "account_manager_id"
    entity_label = "client"

    def list_with_deals(self, session: Session, ctx: ActorUser) -> list[CRMClient]:
        stmt = (
            self.scoped_select(ctx)
            .options(selectinload(CRMClient.deals), selectinload(CRMClient.account_manager))
            .order_by(CRMClient.created_at.desc())
        )
        return list(session.scalars(stmt))

    def adjust_lifetime_value(self, session: Session, client_id: uuid.UUID, delta: Decimal) -> None:
        """Apply a relative change, flooring the stored value at zero."""

        session.execute(
            update(CRMClient)
            .where(CRMClient.id == client_id)
            .values(
                lifetime_value=case(
                    (CRMClient.lifetime_value + delta < 0, 0),
                    else_=CRMClient.lifetime_value + delta,
                )
            )
            .execution_options(synchronize_session=False)
        )


class DealRepository(BaseRepository[CRMDeal]):
    model = CRMDeal
    resource = Resource.DEAL
    owner_field = "owner_id"
    entity_label = "deal"

    def list_for_board(self, session: Session, ctx: ActorUser, *, include_archived: bool) -> list[CRMDeal]:
        stmt = self.scoped_select(ctx).options(selectinload(CRMDeal.owner)).order_by(CRMDeal.created_at.desc())
        if not include_archived:
            stmt = stmt.where(CRMDeal.is_deleted.is_(False))
        return list(session.scalars(stmt))

    def claim_stage_transition(
        self,
        session: Session,
        deal_id: uuid.UUID,
        *,
        from_stage: str,
        to_stage: str,
        expected_value: Decimal,
    ) -> bool:
        """Move the deal to ``to_stage`` only if its stage and value are still the ones read.

        Returns ``False`` when another transaction changed the row first.
        """

        result = session.execute(
            update(CRMDeal)
            .where(
                CRMDeal.id == deal_id,
                CRMDeal.stage == from_stage,
                CRMDeal.value == expected_value,
                CRMDeal.is_deleted.is_(False),
            )
            .values(stage=to_stage)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def list_archived(self, session: Session, ctx: ActorUser) -> list[CRMDeal]:
        stmt = (
            self.scoped_select(ctx)
            .where(CRMDeal.is_deleted.is_(True))
            .options(selectinload(CRMDeal.owner))
            .order_by(CRMDeal.deleted_at.desc())
        )
        return list(session.scalars(stmt))


class MeetingRepository(BaseRepository[CRMMeeting]):
    model = CRMMeeting
    resource = Resource.MEETING
    owner_field = "organizer_id"
    entity_label = "meeting"

    def list_by_start_time(self, session: Session, ctx: ActorUser) -> list[CRMMeeting]:
        stmt = self.scoped_select(ctx).options(selectinload(CRMMeeting.client)).order_by(CRMMeeting.start_time.asc())
        return list(session.scalars(stmt))
