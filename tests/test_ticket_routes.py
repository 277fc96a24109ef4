from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from helpdesk.core.config import Settings
from helpdesk.dependencies.tickets import get_ticket_service
from helpdesk.main import create_app
from helpdesk.tickets.errors import ConcurrentTicketUpdateError, TicketForbiddenError, TicketPersistenceError

L1 = {"Authorization": "Bearer l1-token"}
L2 = {"Authorization": "Bearer l2-token"}
L3 = {"Authorization": "Bearer l3-token"}


def _ticket_payload(**overrides):
    payload = {
        "title": "Printer offline",
        "description": "Third floor printer does not respond to jobs.",
        "category": "Hardware",
        "priority": "High",
        "expected_completion_date": (datetime.now(timezone.utc) + timedelta(days=5)).isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client():
    app = create_app(Settings(database_url="", otel_enabled=False))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mocked_client():
    app = create_app(Settings(database_url="", otel_enabled=False))
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[get_ticket_service] = override_service
    test_client = TestClient(app)
    try:
        yield test_client, service
    finally:
        app.dependency_overrides.clear()


def _create(client: TestClient) -> dict:
    response = client.post("/tickets", json=_ticket_payload(), headers=L1)
    assert response.status_code == 201
    return response.json()


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_ticket_starts_at_l1(client):
    body = _create(client)

    assert body["status"] == "New"
    assert body["current_level"] == "L1"
    assert body["critical_value"] is None
    assert body["created_by"] == "agent-l1"
    assert body["action_logs"][0]["action"] == "Ticket created"
    assert body["action_logs"][0]["details"] == "Ticket created with priority High"


def test_create_ticket_without_token_is_unauthenticated(client):
    response = client.post("/tickets", json=_ticket_payload())

    assert response.status_code == 401
    assert response.json()["detail"]["message"] == "Authentication required"


def test_unknown_token_is_rejected(client):
    response = client.get("/tickets", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_create_ticket_forbidden_for_l2(client):
    response = client.post("/tickets", json=_ticket_payload(), headers=L2)

    assert response.status_code == 403
    assert response.json()["detail"] == {
        "message": "Only L1 agents can create tickets",
        "reason": "role not permitted",
    }


def test_create_ticket_rejects_past_completion_date(client):
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

    response = client.post("/tickets", json=_ticket_payload(expected_completion_date=past), headers=L1)

    assert response.status_code == 422


def test_create_ticket_rejects_overlong_title(client):
    response = client.post("/tickets", json=_ticket_payload(title="x" * 201), headers=L1)

    assert response.status_code == 422


def test_get_unknown_ticket_returns_404(client):
    response = client.get("/tickets/missing", headers=L1)

    assert response.status_code == 404
    assert response.json()["detail"]["message"] == "Ticket missing not found"


def test_list_tickets_filters_by_status_query(client):
    created = _create(client)
    client.patch(f"/tickets/{created['id']}/status", json={"status": "Attending"}, headers=L1)
    _create(client)

    attending = client.get("/tickets", params={"status": "Attending"}, headers=L1)
    everything = client.get("/tickets", headers=L1)

    assert attending.status_code == 200
    assert [ticket["id"] for ticket in attending.json()] == [created["id"]]
    assert len(everything.json()) == 2
    assert client.get("/tickets", headers=L3).json() == []


def test_escalation_flow_and_criticality_gate(client):
    ticket_id = _create(client)["id"]

    escalated = client.post(
        f"/tickets/{ticket_id}/escalate",
        json={"to_level": "L2", "reason": "Needs network team"},
        headers=L1,
    )
    assert escalated.status_code == 200
    assert escalated.json()["status"] == "Escalated"
    assert escalated.json()["current_level"] == "L2"
    assert escalated.json()["escalation_history"][0]["from_level"] == "L1"

    classified = client.patch(f"/tickets/{ticket_id}/critical-value", json={"critical_value": "C3"}, headers=L2)
    assert classified.status_code == 200
    assert classified.json()["critical_value"] == "C3"

    blocked = client.post(
        f"/tickets/{ticket_id}/escalate",
        json={"to_level": "L3", "reason": "Vendor bug"},
        headers=L2,
    )
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == {
        "message": "C3 tickets cannot be escalated to L3",
        "reason": "criticality missing or C3",
    }

    hidden = client.get(f"/tickets/{ticket_id}", headers=L3)
    assert hidden.status_code == 403
    assert hidden.json()["detail"]["message"] == "Access denied"


def test_l1_escalating_to_l3_is_invalid_transition(client):
    ticket_id = _create(client)["id"]

    response = client.post(
        f"/tickets/{ticket_id}/escalate",
        json={"to_level": "L3", "reason": "Skip a tier"},
        headers=L1,
    )

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "escalation target invalid"


def test_action_log_endpoint_returns_new_entry(client):
    ticket_id = _create(client)["id"]

    response = client.post(
        f"/tickets/{ticket_id}/action-log",
        json={"action": "Restarted spooler", "details": "No change"},
        headers=L1,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["action"] == "Restarted spooler"
    assert body["details"] == "No change"
    assert body["performed_by"] == "agent-l1"


def test_resolve_then_resolve_again_is_rejected(client):
    ticket_id = _create(client)["id"]

    resolved = client.post(f"/tickets/{ticket_id}/resolve", json={"resolution": "Replaced cable"}, headers=L1)
    again = client.post(f"/tickets/{ticket_id}/resolve", json={"resolution": "Again"}, headers=L1)

    assert resolved.status_code == 200
    assert resolved.json()["status"] == "Resolved"
    assert resolved.json()["action_logs"][-1]["details"] == "Resolution: Replaced cable"
    assert again.status_code == 400


def test_status_update_cannot_set_resolved(client):
    ticket_id = _create(client)["id"]

    response = client.patch(f"/tickets/{ticket_id}/status", json={"status": "Resolved"}, headers=L1)

    assert response.status_code == 400


def test_status_update_sets_resolved_when_statuses_are_not_reserved():
    app = create_app(Settings(database_url="", otel_enabled=False, reserve_workflow_statuses=False))
    with TestClient(app) as client:
        ticket_id = _create(client)["id"]

        response = client.patch(f"/tickets/{ticket_id}/status", json={"status": "Resolved"}, headers=L1)

    assert response.status_code == 200
    assert response.json()["status"] == "Resolved"
    assert response.json()["action_logs"][-1]["action"] == "Status updated from New to Resolved"


def test_concurrent_update_maps_to_conflict(mocked_client):
    client, service = mocked_client
    service.resolve = AsyncMock(side_effect=ConcurrentTicketUpdateError("Ticket t-1 was modified concurrently"))

    response = client.post("/tickets/t-1/resolve", json={"resolution": "done"}, headers=L1)

    assert response.status_code == 409
    service.resolve.assert_awaited_once()


def test_persistence_failure_maps_to_service_unavailable(mocked_client):
    client, service = mocked_client
    service.get_ticket = AsyncMock(side_effect=TicketPersistenceError("Failed to load ticket t-1"))

    response = client.get("/tickets/t-1", headers=L2)

    assert response.status_code == 503
    assert response.json()["detail"]["message"] == "Failed to load ticket t-1"


def test_resolve_rejects_resolution_longer_than_details_allow(client):
    ticket_id = _create(client)["id"]

    response = client.post(f"/tickets/{ticket_id}/resolve", json={"resolution": "x" * 5000}, headers=L1)

    assert response.status_code == 422
    assert client.get(f"/tickets/{ticket_id}", headers=L1).json()["status"] == "New"


def test_foreign_ticket_denial_reports_creator_mismatch(mocked_client):
    client, service = mocked_client
    service.get_ticket = AsyncMock(side_effect=TicketForbiddenError("Access denied", reason="not ticket creator"))

    response = client.get("/tickets/t-1", headers=L1)

    assert response.status_code == 403
    assert response.json()["detail"] == {"message": "Access denied", "reason": "not ticket creator"}
