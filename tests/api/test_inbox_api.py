from uuid import uuid4

from omnidesk.domain.enums import Channel


def _chat(client, text: str, message_id: str, customer_id: str = "visitor-1") -> None:
    response = client.post(
        "/api/v1/webhooks/web_chat/shop-1",
        json={
            "customer_id": customer_id,
            "message_id": message_id,
            "text": text,
            "customer_name": "Visitor One",
        },
    )
    assert response.status_code == 200


def _only_conversation_id(provider) -> str:
    [conversation] = provider.database.conversations.values()
    return str(conversation.id)


def test_list_and_detail(client, provider) -> None:
    _chat(client, "do you sell gift cards?", "w-1")
    conversation_id = _only_conversation_id(provider)

    listed = client.get("/api/v1/inbox/businesses/shop-1/conversations")
    detail = client.get(
        f"/api/v1/inbox/conversations/{conversation_id}", params={"mark_as_read": True}
    )

    items = listed.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["conversation"]["customer_name"] == "Visitor One"
    assert items[0]["preview"] == "Thanks, checking that for you."
    assert items[0]["unread_count"] == 1
    assert detail.json()["data"]["unread_count"] == 0
    assert [message["sender"] for message in detail.json()["data"]["messages"]] == [
        "customer",
        "ai_agent",
    ]


def test_list_rejects_unknown_sort(client) -> None:
    response = client.get(
        "/api/v1/inbox/businesses/shop-1/conversations", params={"sort_by": "secret_column"}
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_search_and_stats(client) -> None:
    _chat(client, "my parcel never arrived", "w-1")
    _chat(client, "hello", "w-2", customer_id="visitor-2")

    found = client.get("/api/v1/inbox/businesses/shop-1/search", params={"q": "parcel"})
    too_short = client.get("/api/v1/inbox/businesses/shop-1/search", params={"q": "p"})
    stats = client.get("/api/v1/inbox/businesses/shop-1/stats")

    assert len(found.json()["data"]) == 1
    assert too_short.status_code == 400
    assert stats.json()["data"]["total_conversations"] == 2
    assert stats.json()["data"]["active"] == 2
    assert stats.json()["data"]["channel_distribution"] == {"web_chat": 2}


def test_agent_workflow(client, provider, sender) -> None:
    _chat(client, "where is my refund?", "w-1")
    conversation_id = _only_conversation_id(provider)
    base = f"/api/v1/inbox/conversations/{conversation_id}"

    taken = client.put(f"{base}/ai-handling", json={"is_ai_handling": False, "agent_id": "kim"})
    assigned = client.put(f"{base}/assign", json={"assigned_to": "kim"})
    tagged = client.post(f"{base}/tags", json={"tags": ["refund", "vip"]})
    untagged = client.delete(f"{base}/tags/vip")
    prioritized = client.put(f"{base}/priority", json={"priority": "high"})
    note = client.post(f"{base}/note", json={"content": "Refund issued in Stripe"})
    sent = client.post(f"{base}/send-message", json={"content": "Your refund is on its way"})

    assert taken.json()["data"]["is_ai_handling"] is False
    assert assigned.json()["data"]["assigned_to"] == "kim"
    assert tagged.json()["data"]["tags"] == ["refund", "vip"]
    assert untagged.json()["data"]["tags"] == ["refund"]
    assert prioritized.json()["data"]["priority"] == "high"
    assert note.json()["data"]["channel_data"] == {"internal_note": True}
    assert sent.json()["data"]["delivered"] is True
    assert sent.json()["data"]["message"]["sender"] == "human_agent"
    assert sender.sent[-1] == (Channel.WEB_CHAT, "visitor-1", "Your refund is on its way")


def test_reset_and_delete(client, provider) -> None:
    _chat(client, "hi", "w-1")
    conversation_id = _only_conversation_id(provider)
    base = f"/api/v1/inbox/conversations/{conversation_id}"
    client.put(f"{base}/ai-handling", json={"is_ai_handling": False})

    reset = client.post(f"{base}/reset")
    session = client.get(f"/api/v1/sessions/{conversation_id}")
    deleted = client.delete(base)
    missing = client.get(base)

    assert reset.json()["data"]["is_ai_handling"] is True
    assert provider.database.messages == {}
    assert session.json()["data"]["is_active"] is False
    assert deleted.json()["data"]["deleted"] is True
    assert missing.status_code == 404


def test_reopen_conflict(client, provider) -> None:
    _chat(client, "hi", "w-1")
    first_id = _only_conversation_id(provider)
    client.put(f"/api/v1/inbox/conversations/{first_id}/status", json={"status": "closed"})
    _chat(client, "back again", "w-2")

    response = client.put(
        f"/api/v1/inbox/conversations/{first_id}/status", json={"status": "active"}
    )

    assert response.status_code == 400
    assert "is already open" in response.json()["error"]


def test_conversation_tickets(client, provider) -> None:
    _chat(client, "hi", "w-1")
    conversation_id = _only_conversation_id(provider)
    client.post(
        "/api/v1/tickets",
        json={
            "business_id": "shop-1",
            "customer_id": "visitor-1",
            "title": "Gift card not received",
            "description": "Bought last week",
            "parent_conversation_id": conversation_id,
        },
    )

    response = client.get(f"/api/v1/inbox/conversations/{conversation_id}/tickets")

    [ticket] = response.json()["data"]
    assert ticket["title"] == "Gift card not received"
    assert ticket["parent_conversation_id"] == conversation_id


def test_unknown_conversation(client) -> None:
    response = client.put(
        f"/api/v1/inbox/conversations/{uuid4()}/assign", json={"assigned_to": "kim"}
    )

    assert response.status_code == 404
