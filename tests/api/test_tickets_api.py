from uuid import uuid4

TICKET = {
    "business_id": "biz-1",
    "customer_id": "cust-1",
    "customer_name": "Sam Lee",
    "title": "Charged twice",
    "description": "Two charges for order 1042",
    "priority": "high",
    "category": "billing",
}


def _create(client, **overrides) -> dict:
    response = client.post("/api/v1/tickets", json={**TICKET, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_ticket(client) -> None:
    response = client.post("/api/v1/tickets", json=TICKET)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    ticket = body["data"]
    assert ticket["ticket_number"].startswith("TK-")
    assert ticket["status"] == "open"
    assert ticket["sla_status"] == "soon"
    assert ticket["metadata"]["sla_hours"] == 4
    assert body["message"] == f"Ticket {ticket['ticket_number']} created"


def test_create_ticket_validation_errors(client) -> None:
    response = client.post("/api/v1/tickets", json={**TICKET, "priority": "critical"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "priority"


def test_escalation_flow(client) -> None:
    ticket = _create(client, assigned_to="agent-1")
    base = f"/api/v1/tickets/{ticket['id']}"

    escalated = client.put(
        f"{base}/escalate",
        json={"escalation_note": "Needs refund approval", "escalated_by": "agent-1"},
    )
    again = client.put(f"{base}/escalate", json={"escalation_note": "Again"})
    blocked_assign = client.put(f"{base}/assign", json={"assigned_to": "agent-2"})
    completed = client.put(
        f"{base}/complete-escalation",
        json={"admin_response": "Refund approved", "reassign_to": "agent-2"},
    )
    history = client.get(f"{base}/escalations")

    assert escalated.status_code == 200
    assert escalated.json()["data"]["status"] == "escalated"
    assert escalated.json()["data"]["escalation_level"] == 1
    assert again.status_code == 400
    assert "already escalated" in again.json()["error"]
    assert blocked_assign.status_code == 400
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "in_progress"
    assert completed.json()["data"]["assigned_to"] == "agent-2"
    assert [event["kind"] for event in history.json()["data"]] == ["escalated", "completed"]


def test_complete_escalation_on_plain_ticket_fails(client) -> None:
    ticket = _create(client)

    response = client.put(
        f"/api/v1/tickets/{ticket['id']}/complete-escalation",
        json={"admin_response": "ok", "reassign_to": "agent-2"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_status_transitions(client) -> None:
    ticket = _create(client)
    base = f"/api/v1/tickets/{ticket['id']}"

    skipped = client.put(f"{base}/status", json={"status": "resolved"})
    started = client.put(f"{base}/status", json={"status": "in_progress"})
    resolved = client.put(f"{base}/status", json={"status": "resolved"})
    closed = client.put(f"{base}/status", json={"status": "closed"})
    reopened = client.put(f"{base}/status", json={"status": "open"})

    assert skipped.status_code == 400
    assert started.json()["data"]["status"] == "in_progress"
    assert resolved.json()["data"]["resolved_at"] is not None
    assert closed.json()["data"]["status"] == "closed"
    assert reopened.status_code == 400


def test_list_stats_and_lookup(client) -> None:
    first = _create(client)
    _create(client, priority="low", category="general", title="Question")
    _create(client, business_id="biz-2")
    client.put(
        f"/api/v1/tickets/{first['id']}/escalate", json={"escalation_note": "Needs admin"}
    )

    listed = client.get("/api/v1/tickets/business/biz-1", params={"escalation": "escalated"})
    by_priority = client.get("/api/v1/tickets/business/biz-1", params={"priority": "low"})
    stats = client.get("/api/v1/tickets/business/biz-1/stats")
    by_number = client.get(f"/api/v1/tickets/business/biz-1/number/{first['ticket_number']}")
    sla = client.get("/api/v1/tickets/business/biz-1/sla")

    assert [item["id"] for item in listed.json()["data"]["items"]] == [first["id"]]
    assert by_priority.json()["data"]["total"] == 1
    assert stats.json()["data"]["total"] == 2
    assert stats.json()["data"]["escalated"] == 1
    assert by_number.json()["data"]["id"] == first["id"]
    assert sla.json()["data"]["total"] == 2
    assert sla.json()["data"]["counts"]["overdue"] == 0


def test_list_rejects_oversized_page(client) -> None:
    response = client.get("/api/v1/tickets/business/biz-1", params={"limit": 500})

    assert response.status_code == 400


def test_unknown_ticket(client) -> None:
    response = client.get(f"/api/v1/tickets/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_delete_ticket(client) -> None:
    ticket = _create(client)

    deleted = client.delete(f"/api/v1/tickets/{ticket['id']}")
    missing = client.get(f"/api/v1/tickets/{ticket['id']}")

    assert deleted.json()["data"] == {"id": ticket["id"], "deleted": True}
    assert missing.status_code == 404
