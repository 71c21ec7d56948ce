from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk import audit, events
from salesdesk.core.database import Base, get_db
from salesdesk.crm.api import get_current_user
from salesdesk.crm.models import User
from salesdesk.main import app
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
def actors(db_session: Session) -> dict[str, ActorUser]:
    result: dict[str, ActorUser] = {}
    for name, role in [("admin", Role.ADMIN), ("manager", Role.MANAGER), ("e1", Role.EMPLOYEE), ("e2", Role.EMPLOYEE)]:
        user = User(username=name, full_name=name.title(), role=role.value)
        db_session.add(user)
        db_session.flush()
        result[name] = ActorUser(user_id=user.id, role=role, correlation_id="corr-client")
    db_session.commit()
    return result


@pytest.fixture()
def client(
    db_session: Session,
    actors: dict[str, ActorUser],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "e1"}

    def override_get_current_user() -> ActorUser:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _converted(test_client: TestClient, name: str = "Jane Doe", estimated_value: int = 0) -> dict:
    lead = test_client.post("/api/crm/leads", json={"name": name, "company_name": f"{name} Ltd"})
    assert lead.status_code == 201
    converted = test_client.post(f"/api/crm/leads/{lead.json()['id']}/convert", json={"estimated_value": estimated_value})
    assert converted.status_code == 200
    return converted.json()


def test_client_list_is_scoped_and_summarised(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    mine = _converted(test_client)["client"]
    test_client.post(f"/api/crm/clients/{mine['id']}/deals", json={"title": "Open", "value": 100})
    test_client.post(f"/api/crm/clients/{mine['id']}/deals", json={"title": "Won", "value": 400, "stage": "CLOSED_WON"})

    set_actor("e2")
    _converted(test_client, name="Other Person")
    listing = test_client.get("/api/crm/clients").json()
    assert [item["company_name"] for item in listing] == ["Other Person Ltd"]

    set_actor("e1")
    listing = test_client.get("/api/crm/clients").json()
    assert len(listing) == 1
    summary = listing[0]
    assert float(summary["total_deals_value"]) == 500
    assert summary["active_deals_count"] == 1
    assert summary["account_manager"]["username"] == "e1"

    set_actor("manager")
    assert len(test_client.get("/api/crm/clients").json()) == 2


def test_client_detail_includes_provenance_and_records(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    converted = _converted(test_client, estimated_value=1500)
    client_id = converted["client"]["id"]

    task = test_client.post(
        f"/api/crm/clients/{client_id}/tasks",
        json={"title": "Call back", "due_date": "2026-11-01T10:00:00Z", "type": "CALL"},
    )
    assert task.status_code == 201
    assert task.json()["status"] == "PENDING"

    meeting = test_client.post(
        f"/api/crm/clients/{client_id}/meetings",
        json={"title": "Kickoff", "start_time": "2026-11-02T09:00:00Z"},
    )
    assert meeting.status_code == 201
    assert meeting.json()["end_time"].startswith("2026-11-02T10:00:00")

    note = test_client.post(f"/api/crm/clients/{client_id}/notes", json={"content": "Prefers email", "is_pinned": True})
    assert note.status_code == 201

    document = test_client.post(
        f"/api/crm/clients/{client_id}/documents",
        json={"name": "Proposal", "url": "https://files.example.com/proposal.pdf"},
    )
    assert document.status_code == 201
    assert document.json()["is_link"] is True

    detail = test_client.get(f"/api/crm/clients/{client_id}")
    assert detail.status_code == 200
    body = detail.json()
    assert body["origin_lead_id"] == converted["lead"]["id"]
    assert float(body["lifetime_value"]) == 1500
    assert [item["title"] for item in body["tasks"]] == ["Call back"]
    assert [item["title"] for item in body["meetings"]] == ["Kickoff"]
    assert body["notes"][0]["is_pinned"] is True
    assert {item["type"] for item in body["activities"]} >= {
        "LEAD_CONVERTED",
        "TASK_CREATED",
        "MEETING_SCHEDULED",
        "NOTE_ADDED",
        "DOCUMENT_UPLOAD",
    }

    set_actor("e2")
    assert test_client.get(f"/api/crm/clients/{client_id}").status_code == 403
    assert test_client.post(f"/api/crm/clients/{client_id}/notes", json={"content": "x"}).status_code == 403


def test_meeting_window_validated(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    client_id = _converted(test_client)["client"]["id"]

    response = test_client.post(
        f"/api/crm/clients/{client_id}/meetings",
        json={
            "title": "Backwards",
            "start_time": "2026-11-02T09:00:00Z",
            "end_time": "2026-11-02T08:00:00Z",
        },
    )
    assert response.status_code == 422


def test_meetings_listed_by_organizer_and_deleted(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    client_id = _converted(test_client)["client"]["id"]
    late = test_client.post(
        f"/api/crm/clients/{client_id}/meetings",
        json={"title": "Late", "start_time": "2026-11-05T09:00:00Z"},
    ).json()
    test_client.post(
        f"/api/crm/clients/{client_id}/meetings",
        json={"title": "Early", "start_time": "2026-11-03T09:00:00Z"},
    )

    meetings = test_client.get("/api/crm/meetings").json()
    assert [item["title"] for item in meetings] == ["Early", "Late"]
    assert meetings[0]["client"]["company_name"] == "Jane Doe Ltd"

    set_actor("e2")
    assert test_client.get("/api/crm/meetings").json() == []
    assert test_client.delete(f"/api/crm/meetings/{late['id']}").status_code == 403

    set_actor("e1")
    assert test_client.delete(f"/api/crm/meetings/{late['id']}").status_code == 204
    assert [item["title"] for item in test_client.get("/api/crm/meetings").json()] == ["Early"]


def test_lifetime_value_override_is_admin_only(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    client_id = _converted(test_client)["client"]["id"]

    renamed = test_client.patch(f"/api/crm/clients/{client_id}", json={"industry": "Retail", "status": "PAUSED"})
    assert renamed.status_code == 200
    assert renamed.json()["status"] == "PAUSED"

    denied = test_client.patch(f"/api/crm/clients/{client_id}", json={"lifetime_value": 99})
    assert denied.status_code == 403

    set_actor("admin")
    overridden = test_client.patch(f"/api/crm/clients/{client_id}", json={"lifetime_value": 99})
    assert overridden.status_code == 200
    assert float(overridden.json()["lifetime_value"]) == 99

    updated_events = [item for item in events.published_events if item["event_type"] == "crm.client.updated"]
    assert updated_events[-1]["payload"]["changed_fields"] == ["lifetime_value"]


def test_documents_and_external_links_removed_within_client(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    client_id = _converted(test_client)["client"]["id"]
    other_client_id = _converted(test_client, name="Other Person")["client"]["id"]

    document = test_client.post(
        f"/api/crm/clients/{client_id}/documents",
        json={"name": "Proposal", "url": "https://files.example.com/proposal.pdf"},
    ).json()
    link = test_client.post(
        f"/api/crm/clients/{client_id}/external-links",
        json={"title": "Shared drive", "url": "https://drive.example.com/acme"},
    )
    assert link.status_code == 201
    link_body = link.json()
    assert link_body["title"] == "Shared drive"

    detail = test_client.get(f"/api/crm/clients/{client_id}").json()
    assert [item["id"] for item in detail["external_links"]] == [link_body["id"]]

    assert test_client.post(
        f"/api/crm/clients/{client_id}/external-links",
        json={"title": "", "url": "not a url"},
    ).status_code == 422

    wrong_client = test_client.delete(f"/api/crm/clients/{other_client_id}/documents/{document['id']}")
    assert wrong_client.status_code == 404
    assert wrong_client.json()["code"] == "not_found"

    set_actor("e2")
    assert test_client.delete(f"/api/crm/clients/{client_id}/documents/{document['id']}").status_code == 403
    assert test_client.delete(f"/api/crm/clients/{client_id}/external-links/{link_body['id']}").status_code == 403

    set_actor("e1")
    assert test_client.delete(f"/api/crm/clients/{client_id}/documents/{document['id']}").status_code == 204
    assert test_client.delete(f"/api/crm/clients/{client_id}/external-links/{link_body['id']}").status_code == 204
    assert test_client.delete(f"/api/crm/clients/{client_id}/external-links/{link_body['id']}").status_code == 404

    detail = test_client.get(f"/api/crm/clients/{client_id}").json()
    assert detail["documents"] == []
    assert detail["external_links"] == []
    assert [entry["action"] for entry in audit.entries_for("crm.document", document["id"])] == ["delete"]
