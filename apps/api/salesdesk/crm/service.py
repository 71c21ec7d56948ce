from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from salesdesk import audit, events
from salesdesk.core.config import get_settings
from salesdesk.core.database import atomic
from salesdesk.core.errors import ConflictError, NotFoundError, OperationFailedError, ValidationError
from salesdesk.crm.enums import (
    CLOSED_DEAL_STAGES,
    ActivityType,
    ClientStatus,
    DealStage,
    LeadPipelineStage,
    LeadSource,
    LeadStatus,
    Priority,
)
from salesdesk.crm.models import (
    CRMActivity,
    CRMClient,
    CRMDeal,
    CRMDocument,
    CRMExternalLink,
    CRMLead,
    CRMMeeting,
    CRMNote,
    CRMTask,
)
from salesdesk.crm.reporting import build_deal_board, fill_counts, summarize_client_deals
from salesdesk.crm.repositories import (
    ClientRepository,
    DealRepository,
    LeadRepository,
    MeetingRepository,
    UserRepository,
)
from salesdesk.crm.schemas import (
    ActivityRead,
    ClientDetailRead,
    ClientRead,
    ClientSummaryRead,
    ClientUpdate,
    DealArchiveRequest,
    DealBoardRead,
    DealCreate,
    DealRead,
    DealUpdate,
    DocumentLinkCreate,
    DocumentRead,
    ExternalLinkCreate,
    ExternalLinkRead,
    LeadConversionRead,
    LeadConvertRequest,
    LeadCreate,
    LeadListRead,
    LeadRead,
    LeadStatsRead,
    LeadUpdate,
    MeetingCreate,
    MeetingRead,
    NoteCreate,
    NoteRead,
    TaskCreate,
    TaskRead,
    UserSummary,
)
from salesdesk.metrics import (
    observe_deal_stage_transition,
    observe_lead_conversion,
    observe_lifetime_value_adjustment,
)
from salesdesk.otel import get_tracer
from salesdesk.security import (
    ActorUser,
    Resource,
    ResourceAction,
    Role,
    can_assign_owner,
    can_list_archived,
    deny,
)


logger = logging.getLogger("salesdesk.crm")
tracer = get_tracer("salesdesk.crm")

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in values.items()}


def _publish(event_type: str, actor_user: ActorUser, payload: dict[str, Any]) -> None:
    envelope = events.build_envelope(event_type, actor_user.audit_id, payload)
    envelope["correlation_id"] = actor_user.correlation_id
    events.publish(envelope)


def lifetime_value_delta(
    old_stage: DealStage,
    new_stage: DealStage,
    *,
    existing_value: Decimal,
    patched_value: Decimal | None = None,
) -> Decimal:
    """Signed change a stage transition makes to the client's lifetime value.

    Entering CLOSED_WON adds the deal value (the patched one when the same
    update changes it), leaving CLOSED_WON removes the value that was won, and
    every other transition, including WON to WON, is neutral.
    """

    if old_stage != DealStage.CLOSED_WON and new_stage == DealStage.CLOSED_WON:
        return patched_value if patched_value is not None else existing_value
    if old_stage == DealStage.CLOSED_WON and new_stage != DealStage.CLOSED_WON:
        return -existing_value
    return ZERO


class OwnerAssignment:
    """Resolves an explicitly requested owner against the assignment policy."""

    def __init__(self, users: UserRepository | None = None) -> None:
        self.users = users or UserRepository()

    def resolve(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: Resource,
        owner_id: uuid.UUID,
        *,
        entity_id: uuid.UUID | str,
    ) -> uuid.UUID:
        assignee = self.users.get_active(session, owner_id)
        assignee_role = Role(assignee.role) if assignee is not None else None
        if not can_assign_owner(actor_user, resource, owner_id, assignee_role):
            raise deny(
                actor_user,
                resource,
                ResourceAction.ASSIGN,
                entity_id=entity_id,
                message=f"{actor_user.role.value.lower()} may not assign this owner",
            )
        if assignee is None:
            raise ValidationError("owner must be an active user", field="owner_id")
        return assignee.id


class LeadService:
    entity_type = "crm.lead"

    def __init__(self) -> None:
        self.leads = LeadRepository()
        self.owners = OwnerAssignment()

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate) -> LeadRead:
        owner_id = actor_user.user_id
        if dto.owner_id is not None:
            owner_id = self.owners.resolve(session, actor_user, Resource.LEAD, dto.owner_id, entity_id="new")

        lead = CRMLead(**_column_values(dto.model_dump(exclude={"owner_id"})), owner_id=owner_id)
        with atomic(session, "lead creation"):
            session.add(lead)

        lead_read = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=lead_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        _publish(
            "crm.lead.created",
            actor_user,
            {"lead_id": str(lead.id), "owner_id": str(lead.owner_id), "status": lead.status},
        )
        return lead_read

    def get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(self.leads.get_for(session, actor_user, lead_id))

    def list_leads(self, session: Session, actor_user: ActorUser) -> LeadListRead:
        leads = self.leads.list_active(session, actor_user)
        return LeadListRead(
            leads=[LeadRead.model_validate(lead) for lead in leads],
            total=len(leads),
            count_by_stage=fill_counts(
                LeadPipelineStage,
                self.leads.count_by(session, actor_user, CRMLead.pipeline_stage),
            ),
        )

    def lead_stats(self, session: Session, actor_user: ActorUser) -> LeadStatsRead:
        return LeadStatsRead(
            total=self.leads.count(session, actor_user, converted=False),
            converted=self.leads.count(session, actor_user, converted=True),
            by_status=fill_counts(LeadStatus, self.leads.count_by(session, actor_user, CRMLead.status)),
            by_source=fill_counts(LeadSource, self.leads.count_by(session, actor_user, CRMLead.source)),
            by_priority=fill_counts(Priority, self.leads.count_by(session, actor_user, CRMLead.priority)),
            by_stage=fill_counts(
                LeadPipelineStage,
                self.leads.count_by(session, actor_user, CRMLead.pipeline_stage),
            ),
        )

    def update_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadUpdate,
    ) -> LeadRead:
        lead = self.leads.get_for(session, actor_user, lead_id, ResourceAction.UPDATE)
        changes = _column_values(dto.model_dump(exclude_unset=True))

        if changes.get("status") == LeadStatus.CONVERTED.value:
            raise ValidationError("a lead becomes CONVERTED only through conversion", field="status")
        if lead.is_converted and {"status", "pipeline_stage"} & changes.keys():
            raise ConflictError(
                "converted leads keep their final stage and status",
                details={"converted_client_id": str(lead.converted_client_id)},
            )

        before = LeadRead.model_validate(lead).model_dump(mode="json")
        with atomic(session, "lead update"):
            for field_name, value in changes.items():
                setattr(lead, field_name, value)
            # Any edit counts as contact with the lead.
            lead.last_contacted_at = utcnow()

        lead_read = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="update",
            before=before,
            after=lead_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        _publish(
            "crm.lead.updated",
            actor_user,
            {"lead_id": str(lead.id), "changed_fields": sorted(changes)},
        )
        return lead_read

    def delete_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> None:
        lead = self.leads.get_for(session, actor_user, lead_id, ResourceAction.DELETE)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        with atomic(session, "lead deletion"):
            session.delete(lead)

        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        _publish("crm.lead.deleted", actor_user, {"lead_id": str(lead_id)})

    def convert_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadConvertRequest,
    ) -> LeadConversionRead:
        with tracer.start_as_current_span("crm.lead.convert") as span:
            span.set_attribute("crm.lead_id", str(lead_id))
            lead = self.leads.get_for(session, actor_user, lead_id, ResourceAction.CONVERT)
            if lead.is_converted:
                observe_lead_conversion("conflict")
                raise ConflictError(
                    "lead is already converted",
                    details={"converted_client_id": str(lead.converted_client_id)},
                )

            converted_at = utcnow()
            client = CRMClient(
                company_name=lead.company_name or lead.name,
                primary_contact=lead.name,
                email=lead.email,
                mobile=lead.mobile,
                status=ClientStatus.ACTIVE.value,
                lifetime_value=dto.estimated_value,
                estimated_value=dto.estimated_value,
                account_manager_id=lead.owner_id,
            )
            try:
                with atomic(session, "lead conversion"):
                    session.add(client)
                    session.flush()
                    claimed = self.leads.claim_for_conversion(
                        session,
                        lead.id,
                        client_id=client.id,
                        estimated_value=dto.estimated_value,
                        converted_at=converted_at,
                    )
                    if not claimed:
                        raise ConflictError("lead was converted by a concurrent request")
                    session.add(
                        CRMActivity(
                            type=ActivityType.LEAD_CONVERTED.value,
                            title=f"Converted from lead: {lead.name}",
                            description=f"Estimated value: {dto.estimated_value}",
                            created_by_id=actor_user.user_id,
                            client_id=client.id,
                            lead_id=lead.id,
                        )
                    )
            except ConflictError:
                observe_lead_conversion("conflict")
                raise
            except OperationFailedError:
                observe_lead_conversion("failed")
                raise

            session.refresh(lead)
            result = LeadConversionRead(lead=LeadRead.model_validate(lead), client=ClientRead.model_validate(client))
            span.set_attribute("crm.client_id", str(client.id))

        observe_lead_conversion("converted")
        logger.info(
            "lead_converted",
            extra={"lead_id": str(lead.id), "client_id": str(client.id), "actor_user_id": actor_user.audit_id},
        )
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="convert",
            before={"is_converted": False},
            after={"is_converted": True, "converted_client_id": str(client.id), "status": LeadStatus.CONVERTED.value},
            correlation_id=actor_user.correlation_id,
        )
        _publish(
            "crm.lead.converted",
            actor_user,
            {
                "lead_id": str(lead.id),
                "client_id": str(client.id),
                "estimated_value": str(dto.estimated_value),
            },
        )
        return result


class DealService:
    entity_type = "crm.deal"

    def __init__(self) -> None:
        self.deals = DealRepository()
        self.clients = ClientRepository()
        self.owners = OwnerAssignment()

    def create_deal(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        dto: DealCreate,
    ) -> DealRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        owner_id = client.account_manager_id
        if dto.owner_id is not None:
            owner_id = self.owners.resolve(session, actor_user, Resource.DEAL, dto.owner_id, entity_id="new")

        values = _column_values(dto.model_dump(exclude={"owner_id", "currency", "industry"}))
        deal = CRMDeal(
            **values,
            currency=dto.currency or get_settings().default_currency,
            industry=dto.industry or client.industry,
            client_id=client.id,
            owner_id=owner_id,
        )
        if dto.stage in CLOSED_DEAL_STAGES:
            deal.actual_close_date = utcnow()

        delta = lifetime_value_delta(DealStage.QUALIFICATION, dto.stage, existing_value=dto.value)
        with atomic(session, "deal creation"):
            session.add(deal)
            session.flush()
            if delta:
                self.clients.adjust_lifetime_value(session, client.id, delta)
            session.add(
                CRMActivity(
                    type=ActivityType.DEAL_CREATED.value,
                    title=f"Deal created: {deal.title}",
                    description=f"Value: {deal.currency} {deal.value}",
                    created_by_id=actor_user.user_id,
                    client_id=client.id,
                )
            )

        if delta:
            self._log_adjustment(client.id, deal.id, delta)
        deal_read = DealRead.model_validate(deal)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="create",
            before=None,
            after=deal_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        _publish(
            "crm.deal.created",
            actor_user,
            {"deal_id": str(deal.id), "client_id": str(client.id), "stage": deal.stage, "value": str(deal.value)},
        )
        return deal_read

    def get_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID) -> DealRead:
        return DealRead.model_validate(self.deals.get_for(session, actor_user, deal_id))

    def list_deals(self, session: Session, actor_user: ActorUser, include_archived: bool = False) -> DealBoardRead:
        include_archived = include_archived and can_list_archived(actor_user)
        return build_deal_board(self.deals.list_for_board(session, actor_user, include_archived=include_archived))

    def list_archived_deals(self, session: Session, actor_user: ActorUser) -> list[DealRead]:
        if not can_list_archived(actor_user):
            raise deny(actor_user, Resource.DEAL, ResourceAction.READ, entity_id="archived")
        return [DealRead.model_validate(deal) for deal in self.deals.list_archived(session, actor_user)]

    def update_deal(
        self,
        session: Session,
        actor_user: ActorUser,
        deal_id: uuid.UUID,
        dto: DealUpdate,
    ) -> DealRead:
        with tracer.start_as_current_span("crm.deal.update") as span:
            span.set_attribute("crm.deal_id", str(deal_id))
            deal = self.deals.get_for(session, actor_user, deal_id, ResourceAction.UPDATE)
            if deal.is_deleted:
                raise ConflictError("archived deals must be restored before they can be edited")

            changes = _column_values(dto.model_dump(exclude_unset=True))
            if "owner_id" in changes and changes["owner_id"] != deal.owner_id:
                self.owners.resolve(session, actor_user, Resource.DEAL, changes["owner_id"], entity_id=deal.id)

            old_stage = DealStage(deal.stage)
            new_stage = DealStage(changes.get("stage", old_stage))
            delta = lifetime_value_delta(
                old_stage,
                new_stage,
                existing_value=deal.value,
                patched_value=changes.get("value"),
            )
            span.set_attribute("crm.deal.from_stage", old_stage.value)
            span.set_attribute("crm.deal.to_stage", new_stage.value)

            before = DealRead.model_validate(deal).model_dump(mode="json")
            with atomic(session, "deal update"):
                if old_stage != new_stage and not self.deals.claim_stage_transition(
                    session,
                    deal.id,
                    from_stage=old_stage.value,
                    to_stage=new_stage.value,
                    expected_value=deal.value,
                ):
                    raise ConflictError("deal was changed by another request; reload and retry")
                for field_name, value in changes.items():
                    setattr(deal, field_name, value)
                if new_stage in CLOSED_DEAL_STAGES:
                    deal.actual_close_date = utcnow()
                if delta:
                    self.clients.adjust_lifetime_value(session, deal.client_id, delta)
                if old_stage != new_stage:
                    session.add(
                        CRMActivity(
                            type=ActivityType.DEAL_STAGE_CHANGED.value,
                            title=f"Deal stage changed: {deal.title}",
                            description=f"{old_stage.value} -> {new_stage.value}",
                            created_by_id=actor_user.user_id,
                            client_id=deal.client_id,
                        )
                    )

        observe_deal_stage_transition(old_stage.value, new_stage.value)
        if delta:
            self._log_adjustment(deal.client_id, deal.id, delta)
        deal_read = DealRead.model_validate(deal)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="update",
            before=before,
            after=deal_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        if old_stage != new_stage:
            logger.info(
                "deal_stage_changed",
                extra={"deal_id": str(deal.id), "from_stage": old_stage.value, "to_stage": new_stage.value},
            )
            _publish(
                "crm.deal.stage_changed",
                actor_user,
                {
                    "deal_id": str(deal.id),
                    "client_id": str(deal.client_id),
                    "from_stage": old_stage.value,
                    "to_stage": new_stage.value,
                    "lifetime_value_delta": str(delta),
                },
            )
        return deal_read

    def soft_delete_deal(
        self,
        session: Session,
        actor_user: ActorUser,
        deal_id: uuid.UUID,
        dto: DealArchiveRequest | None = None,
    ) -> DealRead:
        deal = self.deals.get_for(session, actor_user, deal_id, ResourceAction.DELETE)
        if deal.is_deleted:
            raise ConflictError("deal is already archived")
        if deal.stage not in CLOSED_DEAL_STAGES:
            raise ValidationError("only closed deals can be archived", field="stage")

        reason = dto.reason if dto is not None else None
        with atomic(session, "deal archive"):
            deal.is_deleted = True
            deal.deleted_at = utcnow()
            deal.deleted_by_id = actor_user.user_id
            deal.deletion_reason = reason
            session.add(
                CRMActivity(
                    type=ActivityType.DEAL_ARCHIVED.value,
                    title=f"Deal archived: {deal.title}",
                    description=reason,
                    created_by_id=actor_user.user_id,
                    client_id=deal.client_id,
                )
            )

        logger.info("deal_archived", extra={"deal_id": str(deal.id), "actor_user_id": actor_user.audit_id})
        return self._after_archive_change(actor_user, deal, "archive", "crm.deal.archived")

    def restore_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID) -> DealRead:
        deal = self.deals.get_for(session, actor_user, deal_id, ResourceAction.RESTORE)
        if not deal.is_deleted:
            raise ConflictError("deal is not archived")

        with atomic(session, "deal restore"):
            deal.is_deleted = False
            deal.deleted_at = None
            deal.deleted_by_id = None
            deal.deletion_reason = None
            session.add(
                CRMActivity(
                    type=ActivityType.DEAL_RESTORED.value,
                    title=f"Deal restored: {deal.title}",
                    created_by_id=actor_user.user_id,
                    client_id=deal.client_id,
                )
            )

        logger.info("deal_restored", extra={"deal_id": str(deal.id), "actor_user_id": actor_user.audit_id})
        return self._after_archive_change(actor_user, deal, "restore", "crm.deal.restored")

    def _after_archive_change(self, actor_user: ActorUser, deal: CRMDeal, action: str, event_type: str) -> DealRead:
        deal_read = DealRead.model_validate(deal)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action=action,
            before={"is_deleted": action != "archive"},
            after={"is_deleted": deal_read.is_deleted, "deletion_reason": deal_read.deletion_reason},
            correlation_id=actor_user.correlation_id,
        )
        _publish(event_type, actor_user, {"deal_id": str(deal.id), "client_id": str(deal.client_id)})
        return deal_read

    @staticmethod
    def _log_adjustment(client_id: uuid.UUID, deal_id: uuid.UUID, delta: Decimal) -> None:
        observe_lifetime_value_adjustment(delta)
        logger.info(
            "client_lifetime_value_adjusted",
            extra={"client_id": str(client_id), "deal_id": str(deal_id), "delta": str(delta)},
        )


class ClientService:
    entity_type = "crm.client"

    def __init__(self) -> None:
        self.clients = ClientRepository()

    def list_clients(self, session: Session, actor_user: ActorUser) -> list[ClientSummaryRead]:
        return [self._summary(client) for client in self.clients.list_with_deals(session, actor_user)]

    def get_client(self, session: Session, actor_user: ActorUser, client_id: uuid.UUID) -> ClientDetailRead:
        client = self.clients.get_for(session, actor_user, client_id)
        live_deals = [deal for deal in client.deals if not deal.is_deleted]
        return ClientDetailRead(
            **self._summary(client).model_dump(),
            origin_lead_id=client.origin_lead.id if client.origin_lead is not None else None,
            deals=[DealRead.model_validate(deal) for deal in live_deals],
            tasks=[TaskRead.model_validate(task) for task in client.tasks],
            meetings=[MeetingRead.model_validate(meeting) for meeting in client.meetings],
            notes=[NoteRead.model_validate(note) for note in client.notes],
            documents=[DocumentRead.model_validate(document) for document in client.documents],
            external_links=[ExternalLinkRead.model_validate(link) for link in client.external_links],
            activities=[ActivityRead.model_validate(activity) for activity in client.activities],
        )

    def update_client(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        dto: ClientUpdate,
    ) -> ClientRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.UPDATE)
        changes = _column_values(dto.model_dump(exclude_unset=True))
        if "lifetime_value" in changes and actor_user.role != Role.ADMIN:
            raise deny(
                actor_user,
                Resource.CLIENT,
                ResourceAction.UPDATE,
                entity_id=client.id,
                message="only administrators may override lifetime value",
            )
        if changes.get("website") is not None:
            changes["website"] = str(changes["website"])

        before = ClientRead.model_validate(client).model_dump(mode="json")
        with atomic(session, "client update"):
            for field_name, value in changes.items():
                setattr(client, field_name, value)

        client_read = ClientRead.model_validate(client)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=self.entity_type,
            entity_id=str(client.id),
            action="update",
            before=before,
            after=client_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        _publish(
            "crm.client.updated",
            actor_user,
            {"client_id": str(client.id), "changed_fields": sorted(changes)},
        )
        return client_read

    @staticmethod
    def _summary(client: CRMClient) -> ClientSummaryRead:
        summary = summarize_client_deals(client.deals)
        manager = client.account_manager
        return ClientSummaryRead(
            **ClientRead.model_validate(client).model_dump(),
            account_manager=UserSummary.model_validate(manager) if manager is not None else None,
            total_deals_value=summary.total_deals_value,
            active_deals_count=summary.active_deals_count,
        )


class ClientRecordService:
    """Tasks, meetings, notes, documents and external links hanging off a client."""

    def __init__(self) -> None:
        self.clients = ClientRepository()
        self.meetings = MeetingRepository()
        self.users = UserRepository()

    def add_task(self, session: Session, actor_user: ActorUser, client_id: uuid.UUID, dto: TaskCreate) -> TaskRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        assigned_to_id = actor_user.user_id
        if dto.assigned_to_id is not None:
            if self.users.get_active(session, dto.assigned_to_id) is None:
                raise ValidationError("assignee must be an active user", field="assigned_to_id")
            assigned_to_id = dto.assigned_to_id

        task = CRMTask(
            **_column_values(dto.model_dump(exclude={"assigned_to_id"})),
            assigned_to_id=assigned_to_id,
            client_id=client.id,
        )
        with atomic(session, "task creation"):
            session.add(task)
            self._activity(session, actor_user, client.id, ActivityType.TASK_CREATED, f"Task created: {task.title}")
        return TaskRead.model_validate(task)

    def add_meeting(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        dto: MeetingCreate,
    ) -> MeetingRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        end_time = dto.end_time or dto.start_time + timedelta(minutes=get_settings().meeting_default_duration_minutes)
        meeting = CRMMeeting(
            title=dto.title,
            description=dto.description,
            location=dto.location,
            meeting_url=str(dto.meeting_url) if dto.meeting_url is not None else None,
            start_time=dto.start_time,
            end_time=end_time,
            organizer_id=actor_user.user_id,
            client_id=client.id,
        )
        with atomic(session, "meeting creation"):
            session.add(meeting)
            self._activity(
                session,
                actor_user,
                client.id,
                ActivityType.MEETING_SCHEDULED,
                f"Meeting scheduled: {meeting.title}",
            )
        return MeetingRead.model_validate(meeting)

    def add_note(self, session: Session, actor_user: ActorUser, client_id: uuid.UUID, dto: NoteCreate) -> NoteRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        note = CRMNote(content=dto.content, is_pinned=dto.is_pinned, author_id=actor_user.user_id, client_id=client.id)
        with atomic(session, "note creation"):
            session.add(note)
            self._activity(session, actor_user, client.id, ActivityType.NOTE_ADDED, "Note added")
        return NoteRead.model_validate(note)

    def add_document(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        dto: DocumentLinkCreate,
    ) -> DocumentRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        document = CRMDocument(name=dto.name, url=str(dto.url), category=dto.category, client_id=client.id)
        with atomic(session, "document creation"):
            session.add(document)
            self._activity(
                session,
                actor_user,
                client.id,
                ActivityType.DOCUMENT_UPLOAD,
                f"Document added: {document.name}",
            )
        return DocumentRead.model_validate(document)

    def delete_document(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        document_id: uuid.UUID,
    ) -> None:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.UPDATE)
        document = session.get(CRMDocument, document_id)
        if document is None or document.client_id != client.id:
            raise NotFoundError("document", document_id)
        before = DocumentRead.model_validate(document).model_dump(mode="json")
        with atomic(session, "document deletion"):
            session.delete(document)
        self._audit_removal(actor_user, "crm.document", document_id, before)

    def add_external_link(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        dto: ExternalLinkCreate,
    ) -> ExternalLinkRead:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.CREATE)
        link = CRMExternalLink(title=dto.title, url=str(dto.url), client_id=client.id)
        with atomic(session, "external link creation"):
            session.add(link)
        link_read = ExternalLinkRead.model_validate(link)
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type="crm.external_link",
            entity_id=str(link.id),
            action="create",
            before=None,
            after=link_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        return link_read

    def delete_external_link(
        self,
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        link_id: uuid.UUID,
    ) -> None:
        client = self.clients.get_for(session, actor_user, client_id, ResourceAction.UPDATE)
        link = session.get(CRMExternalLink, link_id)
        if link is None or link.client_id != client.id:
            raise NotFoundError("external link", link_id)
        before = ExternalLinkRead.model_validate(link).model_dump(mode="json")
        with atomic(session, "external link deletion"):
            session.delete(link)
        self._audit_removal(actor_user, "crm.external_link", link_id, before)

    def list_meetings(self, session: Session, actor_user: ActorUser) -> list[MeetingRead]:
        return [MeetingRead.model_validate(meeting) for meeting in self.meetings.list_by_start_time(session, actor_user)]

    def delete_meeting(self, session: Session, actor_user: ActorUser, meeting_id: uuid.UUID) -> None:
        meeting = self.meetings.get_for(session, actor_user, meeting_id, ResourceAction.DELETE)
        before = MeetingRead.model_validate(meeting).model_dump(mode="json")
        with atomic(session, "meeting deletion"):
            session.delete(meeting)
        self._audit_removal(actor_user, "crm.meeting", meeting_id, before)

    @staticmethod
    def _audit_removal(actor_user: ActorUser, entity_type: str, entity_id: uuid.UUID, before: dict[str, Any]) -> None:
        audit.record(
            actor_user_id=actor_user.audit_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )

    @staticmethod
    def _activity(
        session: Session,
        actor_user: ActorUser,
        client_id: uuid.UUID,
        activity_type: ActivityType,
        title: str,
    ) -> None:
        session.add(
            CRMActivity(type=activity_type.value, title=title, created_by_id=actor_user.user_id, client_id=client_id)
        )
