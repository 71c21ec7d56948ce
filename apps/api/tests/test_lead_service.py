from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk import audit, events
from salesdesk.core.database import Base
from salesdesk.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OperationFailedError,
    ValidationError,
)
from salesdesk.crm.models import CRMActivity, CRMClient, CRMLead, User
from salesdesk.crm.repositories import LeadRepository
from salesdesk.crm.schemas import LeadConvertRequest, LeadCreate, LeadUpdate
from salesdesk.crm.service import LeadService
from salesdesk.security import ActorUser, Role


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, ActorUser]:
    actors: dict[str, ActorUser] = {}
    for name, role, active in [
        ("admin", Role.ADMIN, True),
        ("manager", Role.MANAGER, True),
        ("manager2", Role.MANAGER, True),
        ("e1", Role.EMPLOYEE, True),
        ("e2", Role.EMPLOYEE, True),
        ("retired", Role.EMPLOYEE, False),
    ]:
        user = User(username=name, full_name=name.title(), role=role.value, is_active=active)
        db_session.add(user)
        db_session.flush()
        actors[name] = ActorUser(user_id=user.id, role=role, correlation_id=f"corr-{name}")
    db_session.commit()
    return actors


@pytest.fixture()
def service() -> LeadService:
    return LeadService()


def _create(service: LeadService, session: Session, actor: ActorUser, **overrides: object) -> uuid.UUID:
    payload = {"name": "Jane Doe", "company_name": "Acme"} | overrides
    return service.create_lead(session, actor, LeadCreate(**payload)).id


def test_create_lead_defaults_owner_to_requester(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead = service.create_lead(db_session, users["e1"], LeadCreate(name="Jane Doe", tags=["vip", " vip ", ""]))

    assert lead.owner_id == users["e1"].user_id
    assert lead.source == "OTHER"
    assert lead.pipeline_stage == "NEW"
    assert lead.status == "NEW"
    assert lead.priority == "MEDIUM"
    assert lead.tags == ["vip"]
    assert lead.is_converted is False

    created = [item for item in events.published_events if item["event_type"] == "crm.lead.created"]
    assert created
    assert created[-1]["correlation_id"] == "corr-e1"


def test_manager_may_assign_lead_to_employee_but_not_another_manager(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead = service.create_lead(
        db_session,
        users["manager"],
        LeadCreate(name="Assigned Lead", owner_id=users["e2"].user_id),
    )
    assert lead.owner_id == users["e2"].user_id

    with pytest.raises(AuthorizationError):
        service.create_lead(
            db_session,
            users["manager"],
            LeadCreate(name="Wrong Owner", owner_id=users["manager2"].user_id),
        )


def test_employee_may_never_choose_lead_owner(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    with pytest.raises(AuthorizationError):
        service.create_lead(db_session, users["e1"], LeadCreate(name="Self Owned", owner_id=users["e1"].user_id))

    assert db_session.scalar(select(func.count(CRMLead.id))) == 0


def test_admin_cannot_assign_inactive_owner(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    with pytest.raises(ValidationError) as exc_info:
        service.create_lead(db_session, users["admin"], LeadCreate(name="Orphan", owner_id=users["retired"].user_id))

    assert exc_info.value.details == {"owner_id": ["owner must be an active user"]}


def test_employee_cannot_read_other_employees_lead(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])

    assert service.get_lead(db_session, users["manager"], lead_id).id == lead_id
    with pytest.raises(AuthorizationError):
        service.get_lead(db_session, users["e2"], lead_id)
    with pytest.raises(NotFoundError):
        service.get_lead(db_session, users["e2"], uuid.uuid4())


def test_update_touches_last_contacted_at(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])

    updated = service.update_lead(
        db_session,
        users["e1"],
        lead_id,
        LeadUpdate(pipeline_stage="PROPOSAL", status="QUALIFIED", score=70),
    )

    assert updated.pipeline_stage == "PROPOSAL"
    assert updated.status == "QUALIFIED"
    assert updated.score == 70
    assert updated.last_contacted_at is not None

    stage_only = service.update_lead(db_session, users["e1"], lead_id, LeadUpdate(pipeline_stage="NEW"))
    assert stage_only.status == "QUALIFIED"


def test_update_cannot_mark_lead_converted(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])

    with pytest.raises(ValidationError):
        service.update_lead(db_session, users["e1"], lead_id, LeadUpdate(status="CONVERTED"))


def test_employee_cannot_delete_even_own_lead(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])

    with pytest.raises(AuthorizationError):
        service.delete_lead(db_session, users["e1"], lead_id)
    assert db_session.get(CRMLead, lead_id) is not None

    service.delete_lead(db_session, users["manager"], lead_id)
    assert db_session.get(CRMLead, lead_id) is None
    assert audit.entries_for("crm.lead", str(lead_id))[-1]["action"] == "delete"


def test_convert_lead_creates_client_with_provenance(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"], email="jane@acme-example.com", mobile="+91-555-0100")

    result = service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("50000")))

    assert result.client.company_name == "Acme"
    assert result.client.primary_contact == "Jane Doe"
    assert result.client.email == "jane@acme-example.com"
    assert result.client.status == "ACTIVE"
    assert result.client.lifetime_value == Decimal("50000")
    assert result.client.account_manager_id == users["e1"].user_id

    assert result.lead.is_converted is True
    assert result.lead.status == "CONVERTED"
    assert result.lead.converted_client_id == result.client.id
    assert result.lead.converted_at is not None
    assert result.lead.estimated_value == Decimal("50000")

    client = db_session.get(CRMClient, result.client.id)
    assert client is not None
    assert client.origin_lead is not None
    assert client.origin_lead.id == lead_id

    activity = db_session.scalar(select(CRMActivity).where(CRMActivity.client_id == result.client.id))
    assert activity is not None
    assert activity.type == "LEAD_CONVERTED"
    assert activity.lead_id == lead_id

    converted = [item for item in events.published_events if item["event_type"] == "crm.lead.converted"]
    assert converted[-1]["payload"]["client_id"] == str(result.client.id)


def test_company_name_falls_back_to_lead_name(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["admin"], company_name=None)

    result = service.convert_lead(db_session, users["admin"], lead_id, LeadConvertRequest(estimated_value=Decimal("0")))

    assert result.client.company_name == "Jane Doe"
    assert result.client.lifetime_value == Decimal("0")


def test_second_conversion_conflicts(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])
    service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("10")))

    with pytest.raises(ConflictError):
        service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("10")))

    assert db_session.scalar(select(func.count(CRMClient.id))) == 1


def test_converted_lead_keeps_status_and_stage(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    lead_id = _create(service, db_session, users["e1"])
    service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("10")))

    with pytest.raises(ConflictError):
        service.update_lead(db_session, users["e1"], lead_id, LeadUpdate(pipeline_stage="NEGOTIATION"))

    renamed = service.update_lead(db_session, users["e1"], lead_id, LeadUpdate(name="Jane D."))
    assert renamed.name == "Jane D."
    assert renamed.status == "CONVERTED"


def test_lost_conversion_race_leaves_no_client(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    lead_id = _create(service, db_session, users["e1"])
    monkeypatch.setattr(LeadRepository, "claim_for_conversion", lambda self, session, lead_id, **kwargs: False)

    with pytest.raises(ConflictError):
        service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("10")))

    assert db_session.scalar(select(func.count(CRMClient.id))) == 0


def test_failed_conversion_rolls_back_client(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    lead_id = _create(service, db_session, users["e1"])

    def broken_claim(self: LeadRepository, session: Session, lead_id: uuid.UUID, **kwargs: object) -> bool:
        raise OperationalError("UPDATE crm_lead", {}, Exception("database is locked"))

    monkeypatch.setattr(LeadRepository, "claim_for_conversion", broken_claim)

    with pytest.raises(OperationFailedError):
        service.convert_lead(db_session, users["e1"], lead_id, LeadConvertRequest(estimated_value=Decimal("10")))

    assert db_session.scalar(select(func.count(CRMClient.id))) == 0
    lead = db_session.get(CRMLead, lead_id)
    assert lead is not None
    assert lead.is_converted is False
    assert lead.converted_client_id is None
    assert not [item for item in events.published_events if item["event_type"] == "crm.lead.converted"]


def test_stats_are_scoped_to_employee(
    db_session: Session,
    users: dict[str, ActorUser],
    service: LeadService,
) -> None:
    _create(service, db_session, users["e1"], source="WEBSITE", priority="HIGH")
    _create(service, db_session, users["e1"], pipeline_stage="CONTACTED")
    converted_id = _create(service, db_session, users["e1"])
    _create(service, db_session, users["e2"], source="WEBSITE")
    service.convert_lead(db_session, users["e1"], converted_id, LeadConvertRequest(estimated_value=Decimal("1")))

    stats = service.lead_stats(db_session, users["e1"])
    assert stats.total == 2
    assert stats.converted == 1
    assert stats.by_source["WEBSITE"] == 1
    assert stats.by_source["LINKEDIN"] == 0
    assert stats.by_priority["HIGH"] == 1
    assert stats.by_stage == {"NEW": 1, "CONTACTED": 1, "PROPOSAL": 0, "NEGOTIATION": 0}

    admin_stats = service.lead_stats(db_session, users["admin"])
    assert admin_stats.total == 3
    assert admin_stats.by_source["WEBSITE"] == 2

    listing = service.list_leads(db_session, users["e1"])
    assert listing.total == 2
    assert converted_id not in {lead.id for lead in listing.leads}
