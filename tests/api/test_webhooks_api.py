import hashlib
import hmac
import json

import pytest

from omnidesk.domain.enums import Channel, MessageSender

APP_SECRET = "test-app-secret"


def _signed(payload: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    digest = hmac.new(APP_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Hub-Signature-256": f"sha256={digest}", "Content-Type": "application/json"}


def _instagram_payload(mid: str = "m-1", text: str = "Is the blue one in stock?") -> dict:
    return {
        "object": "instagram",
        "entry": [
            {
                "id": "ig-business",
                "messaging": [
                    {
                        "sender": {"id": "ig-user-1"},
                        "recipient": {"id": "ig-business"},
                        "timestamp": 1760000000000,
                        "message": {"mid": mid, "text": text},
                    }
                ],
            }
        ],
    }


def test_verification_handshake(client) -> None:
    response = client.get(
        "/api/v1/webhooks/instagram/biz-1",
        params={
            "hub.mode": "subscribe",
            "hub.verify_token": "test-verify-token",
            "hub.challenge": "1158201444",
        },
    )

    assert response.status_code == 200
    assert response.text == "1158201444"


def test_verification_with_wrong_token_is_forbidden(client) -> None:
    response = client.get(
        "/api/v1/webhooks/whatsapp/biz-1",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
    )

    assert response.status_code == 403
    assert response.text == "Forbidden"


def test_channels_without_webhooks_are_not_found(client) -> None:
    response = client.get("/api/v1/webhooks/sms/biz-1")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_inbound_message_is_stored_and_answered(client, provider, sender, reply_generator) -> None:
    body, headers = _signed(_instagram_payload())

    response = client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)

    assert response.status_code == 200
    assert response.text == "EVENT_RECEIVED"
    [conversation] = provider.database.conversations.values()
    assert conversation.business_id == "biz-1"
    assert conversation.channel == Channel.INSTAGRAM
    senders = sorted(message.sender.value for message in provider.database.messages.values())
    assert senders == [MessageSender.AI_AGENT.value, MessageSender.CUSTOMER.value]
    assert reply_generator.contexts[0].text == "Is the blue one in stock?"
    assert sender.sent == [(Channel.INSTAGRAM, "ig-user-1", "Thanks, checking that for you.")]


def test_replayed_webhook_is_acknowledged_once(client, provider, sender) -> None:
    body, headers = _signed(_instagram_payload())

    first = client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)
    second = client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)

    assert first.status_code == second.status_code == 200
    assert len(provider.database.messages) == 2
    assert len(sender.sent) == 1


def test_bad_signature_is_rejected(client, provider) -> None:
    body, _ = _signed(_instagram_payload())

    response = client.post(
        "/api/v1/webhooks/instagram/biz-1",
        content=body,
        headers={"X-Hub-Signature-256": "sha256=forged", "Content-Type": "application/json"},
    )

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid signature"}
    assert provider.database.messages == {}


def test_invalid_json_is_rejected(client) -> None:
    body = b"{not json"
    digest = hmac.new(APP_SECRET.encode(), body, hashlib.sha256).hexdigest()

    response = client.post(
        "/api/v1/webhooks/facebook/biz-1",
        content=body,
        headers={"X-Hub-Signature-256": f"sha256={digest}"},
    )

    assert response.status_code == 400


def test_malformed_payload_is_still_acknowledged(client, provider) -> None:
    body, headers = _signed({"object": "instagram", "entry": {"id": "x"}})

    response = client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)

    assert response.status_code == 200
    assert provider.database.conversations == {}


@pytest.mark.parametrize(
    ("channel", "payload"),
    [
        (
            "instagram",
            {
                "object": "instagram",
                "entry": [
                    {"messaging": [{"sender": "ig-user-1", "message": {"mid": "m-1", "text": "hi"}}]}
                ],
            },
        ),
        (
            "whatsapp",
            {
                "object": "whatsapp_business_account",
                "entry": [
                    {
                        "changes": [
                            {
                                "value": {
                                    "messages": [
                                        {"from": "1555", "id": "w-1", "type": "text", "text": "hello"}
                                    ]
                                }
                            }
                        ]
                    }
                ],
            },
        ),
        (
            "web_chat",
            {"customer_id": "visitor-1", "message_id": "w-1", "text": "hi", "timestamp": 10**20},
        ),
    ],
)
def test_unexpected_field_shapes_are_still_acknowledged(
    client, provider, sender, channel: str, payload: dict
) -> None:
    body, headers = _signed(payload)

    response = client.post(f"/api/v1/webhooks/{channel}/biz-1", content=body, headers=headers)

    assert response.status_code == 200
    assert provider.database.conversations == {}
    assert sender.sent == []


def test_human_handled_conversation_gets_no_ai_reply(client, provider, sender) -> None:
    body, headers = _signed(_instagram_payload())
    client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)
    [conversation] = provider.database.conversations.values()

    handoff = client.put(
        f"/api/v1/inbox/conversations/{conversation.id}/ai-handling",
        json={"is_ai_handling": False, "agent_id": "agent-1"},
    )
    body, headers = _signed(_instagram_payload(mid="m-2", text="hello?"))
    client.post("/api/v1/webhooks/instagram/biz-1", content=body, headers=headers)

    assert handoff.status_code == 200
    assert handoff.json()["data"]["is_ai_handling"] is False
    assert len(sender.sent) == 1
    customer_messages = [
        message
        for message in provider.database.messages.values()
        if message.sender == MessageSender.CUSTOMER
    ]
    assert len(customer_messages) == 2


def test_web_chat_needs_no_signature(client, provider) -> None:
    response = client.post(
        "/api/v1/webhooks/web_chat/shop-9",
        json={"customer_id": "visitor-1", "message_id": "w-1", "text": "hi"},
    )

    assert response.status_code == 200
    [conversation] = provider.database.conversations.values()
    assert conversation.channel == Channel.WEB_CHAT
