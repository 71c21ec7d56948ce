from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from salesdesk.context import get_correlation_id
from salesdesk.core.auth import AuthUser, get_auth_user
from salesdesk.core.database import get_db
from salesdesk.core.errors import CRMError
from salesdesk.crm.schemas import (
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
)
from salesdesk.crm.service import ClientRecordService, ClientService, DealService, LeadService
from salesdesk.security import ActorUser, Role

leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])
clients_router = APIRouter(prefix="/api/crm", tags=["crm.clients"])
deals_router = APIRouter(prefix="/api/crm", tags=["crm.deals"])
meetings_router = APIRouter(prefix="/api/crm", tags=["crm.meetings"])
lead_service = LeadService()
deal_service = DealService()
client_service = ClientService()
record_service = ClientRecordService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def crm_error_response(request: Request, exc: CRMError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    try:
        user_id = uuid.UUID(auth_user.sub)
        role = Role(auth_user.role.upper())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unrecognised user or role") from exc

    return ActorUser(
        user_id=user_id,
        role=role,
        correlation_id=get_correlation_id() or request.headers.get("x-correlation-id"),
    )


@leads_router.get("/leads", response_model=LeadListRead)
def list_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadListRead | JSONResponse:
    try:
        return lead_service.list_leads(db, user)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.get("/leads/stats", response_model=LeadStatsRead)
def lead_stats(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadStatsRead | JSONResponse:
    try:
        return lead_service.lead_stats(db, user)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, user, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.patch("/leads/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, user, lead_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.delete("/leads/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        lead_service.delete_lead(db, user, lead_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@leads_router.post("/leads/{lead_id}/convert", response_model=LeadConversionRead)
def convert_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadConversionRead | JSONResponse:
    try:
        return lead_service.convert_lead(db, user, lead_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.get("/clients", response_model=list[ClientSummaryRead])
def list_clients(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ClientSummaryRead] | JSONResponse:
    try:
        return client_service.list_clients(db, user)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.get("/clients/{client_id}", response_model=ClientDetailRead)
def get_client(
    request: Request,
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ClientDetailRead | JSONResponse:
    try:
        return client_service.get_client(db, user, client_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.patch("/clients/{client_id}", response_model=ClientRead)
def update_client(
    request: Request,
    client_id: uuid.UUID,
    dto: ClientUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ClientRead | JSONResponse:
    try:
        return client_service.update_client(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.post("/clients/{client_id}/deals", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    client_id: uuid.UUID,
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.create_deal(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.post("/clients/{client_id}/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def add_task(
    request: Request,
    client_id: uuid.UUID,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        return record_service.add_task(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.post(
    "/clients/{client_id}/meetings",
    response_model=MeetingRead,
    status_code=status.HTTP_201_CREATED,
)
def add_meeting(
    request: Request,
    client_id: uuid.UUID,
    dto: MeetingCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> MeetingRead | JSONResponse:
    try:
        return record_service.add_meeting(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.post("/clients/{client_id}/notes", response_model=NoteRead, status_code=status.HTTP_201_CREATED)
def add_note(
    request: Request,
    client_id: uuid.UUID,
    dto: NoteCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> NoteRead | JSONResponse:
    try:
        return record_service.add_note(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.post(
    "/clients/{client_id}/documents",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_document(
    request: Request,
    client_id: uuid.UUID,
    dto: DocumentLinkCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DocumentRead | JSONResponse:
    try:
        return record_service.add_document(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.delete("/clients/{client_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    request: Request,
    client_id: uuid.UUID,
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        record_service.delete_document(db, user, client_id, document_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@clients_router.post(
    "/clients/{client_id}/external-links",
    response_model=ExternalLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def add_external_link(
    request: Request,
    client_id: uuid.UUID,
    dto: ExternalLinkCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ExternalLinkRead | JSONResponse:
    try:
        return record_service.add_external_link(db, user, client_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@clients_router.delete("/clients/{client_id}/external-links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_external_link(
    request: Request,
    client_id: uuid.UUID,
    link_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        record_service.delete_external_link(db, user, client_id, link_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@deals_router.get("/deals", response_model=DealBoardRead)
def list_deals(
    request: Request,
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealBoardRead | JSONResponse:
    try:
        return deal_service.list_deals(db, user, include_archived=include_archived)
    except CRMError as exc:
        return crm_error_response(request, exc)


@deals_router.get("/deals/archived", response_model=list[DealRead])
def list_archived_deals(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        return deal_service.list_archived_deals(db, user)
    except CRMError as exc:
        return crm_error_response(request, exc)


@deals_router.get("/deals/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.get_deal(db, user, deal_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@deals_router.patch("/deals/{deal_id}", response_model=DealRead)
def update_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.update_deal(db, user, deal_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@deals_router.delete("/deals/{deal_id}", response_model=DealRead)
def soft_delete_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealArchiveRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.soft_delete_deal(db, user, deal_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@deals_router.post("/deals/{deal_id}/restore", response_model=DealRead)
def restore_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.restore_deal(db, user, deal_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@meetings_router.get("/meetings", response_model=list[MeetingRead])
def list_meetings(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[MeetingRead] | JSONResponse:
    try:
        return record_service.list_meetings(db, user)
    except CRMError as exc:
        return crm_error_response(request, exc)


@meetings_router.delete("/meetings/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_meeting(
    request: Request,
    meeting_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        record_service.delete_meeting(db, user, meeting_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
