from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from amana.config import settings
from amana.dependencies import get_message_processor, get_store
from amana.main import app
from amana.services.conversation_store import InMemoryConversationStore

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


def webhook_payload(messages=None, statuses=None, obj="whatsapp_business_account"):
    return {
        "object": obj,
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"display_phone_number": "2348000000000", "phone_number_id": "12345"},
                            "messages": messages or [],
                            "statuses": statuses or [],
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def processor():
    return MagicMock()


@pytest.fixture
def memory_store():
    return InMemoryConversationStore()


@pytest.fixture
def client(processor, memory_store):
    app.dependency_overrides[get_message_processor] = lambda: processor
    app.dependency_overrides[get_store] = lambda: memory_store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestVerifyWebhook:
    def test_challenge_echoed(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": settings.whatsapp_verify_token,
                "hub.challenge": "1158201444",
            },
        )
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_wrong_token(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_missing_params(self, client):
        assert client.get("/webhook/whatsapp").status_code == 403


class TestReceiveWebhook:
    def test_messages_are_queued(self, client, processor):
        messages = [
            {"from": "2348012345678", "id": "wamid.1", "timestamp": "1700000000", "type": "text", "text": {"body": "hi"}},
            {"from": "2348012345678", "id": "wamid.2", "timestamp": "1700000001", "type": "text", "text": {"body": "help"}},
        ]
        response = client.post("/webhook/whatsapp", json=webhook_payload(messages))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "EVENT_RECEIVED", "accepted": 2}
        assert processor.process.call_count == 2
        first = processor.process.call_args_list[0][0][0]
        assert first.from_ == "2348012345678"
        assert first.text.body == "hi"

    def test_status_only_event(self, client, processor):
        statuses = [{"id": "wamid.out", "status": "delivered", "timestamp": "1700000000", "recipient_id": "234801"}]
        response = client.post("/webhook/whatsapp", json=webhook_payload(statuses=statuses))
        assert response.json()["accepted"] == 0
        processor.process.assert_not_called()

    def test_other_object_rejected(self, client, processor):
        response = client.post("/webhook/whatsapp", json=webhook_payload(obj="page"))
        assert response.status_code == 404
        processor.process.assert_not_called()

    def test_malformed_payload(self, client, processor):
        payload = {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": {}}]}]}
        response = client.post("/webhook/whatsapp", json=payload)
        assert response.status_code == 200
        assert response.json()["success"] is False
        processor.process.assert_not_called()


class TestResetConversation:
    def test_requires_token(self, client):
        assert client.post("/conversations/234801/reset").status_code == 401
        assert client.post("/conversations/234801/reset", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_unknown_conversation(self, client):
        response = client.post("/conversations/234801/reset", headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_reset(self, client, memory_store):
        memory_store.create_if_absent("234801")
        memory_store.apply_patch("234801", {"last_error": "timeout", "retry_count": 2})

        response = client.post("/conversations/234801/reset", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        state = memory_store.get("234801")
        assert state.last_error is None
        assert state.retry_count == 0


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "conversation_store": "memory"}
