import hashlib
import hmac
import json

import httpx
import pytest
import pytest_asyncio
from pydantic import SecretStr

from remi.config.prompt_templates import HEALTH_MESSAGE
from remi.config.settings import settings
from remi.src.main import create_app


class _RecordingDispatcher:
    def __init__(self) -> None:
        self.submitted: list[tuple[str, str]] = []

    def submit(self, user_id: str, message_text: str) -> None:
        self.submitted.append((user_id, message_text))

    @property
    def in_flight(self) -> int:
        return len(self.submitted)


def _payload(*messages: dict, obj: str = "whatsapp_business_account") -> dict:
    return {"object": obj, "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": {"messaging_product": "whatsapp", "messages": list(messages)}}]}]}


def _text(sender: str, body: str) -> dict:
    return {"from": sender, "id": "wamid.x", "timestamp": "1700000000", "type": "text", "text": {"body": body}}


@pytest.fixture()
def dispatcher() -> _RecordingDispatcher:
    return _RecordingDispatcher()


@pytest_asyncio.fixture()
async def client(dispatcher):
    app = create_app()
    app.state.dispatcher = dispatcher
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.mark.asyncio
async def test_handshake_echoes_challenge(client):
    response = await client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "12345"})

    assert response.status_code == 200
    assert response.text == "12345"


@pytest.mark.asyncio
async def test_handshake_rejects_wrong_token(client):
    response = await client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"})

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_handshake_rejects_wrong_mode(client):
    response = await client.get("/webhook", params={"hub.mode": "unsubscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "12345"})

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_handshake_requires_mode_and_token(client):
    response = await client.get("/webhook", params={"hub.challenge": "12345"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_text_message_is_dispatched(client, dispatcher):
    response = await client.post("/webhook", json=_payload(_text("919235527628", "  What is my  friend's name?\u200b ")))

    assert response.status_code == 200
    assert response.json() == {"status": "received"}
    assert dispatcher.submitted == [("919235527628", "What is my friend's name?")]


@pytest.mark.asyncio
async def test_non_text_and_empty_messages_are_dropped(client, dispatcher):
    image = {"from": "919235527628", "id": "wamid.y", "type": "image", "image": {"id": "media-1"}}

    response = await client.post("/webhook", json=_payload(image, _text("919235527628", "   "), _text("15550001111", "hi")))

    assert response.status_code == 200
    assert dispatcher.submitted == [("15550001111", "hi")]


@pytest.mark.asyncio
async def test_status_callback_is_acknowledged(client, dispatcher):
    status_only = {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.z", "status": "read"}]}}]}]}

    response = await client.post("/webhook", json=status_only)

    assert response.json() == {"status": "received"}
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_foreign_object_is_ignored(client, dispatcher):
    response = await client.post("/webhook", json=_payload(_text("919235527628", "hi"), obj="page"))

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_invalid_json_is_rejected(client, dispatcher):
    response = await client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_message_missing_sender_or_type_is_acknowledged(client, dispatcher):
    no_type = {"from": "919235527628", "id": "wamid.a", "text": {"body": "hi"}}
    no_sender = {"id": "wamid.b", "type": "text", "text": {"body": "hi"}}

    response = await client.post("/webhook", json=_payload(no_type, no_sender, _text("15550001111", "still here")))

    assert response.status_code == 200
    assert response.json() == {"status": "received"}
    assert dispatcher.submitted == [("15550001111", "still here")]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"[]", b'{"object": "whatsapp_business_account", "entry": "oops"}', b'{"object": "whatsapp_business_account", "entry": [{"changes": [{"value": {"messages": [{"from": 5}]}}]}]}'], ids=["array", "entry-not-list", "sender-not-string"])
async def test_well_formed_json_with_unexpected_shape_is_acknowledged(client, dispatcher, body):
    response = await client.post("/webhook", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_signature_is_enforced_when_app_secret_set(client, dispatcher, monkeypatch):
    monkeypatch.setattr(settings, "APP_SECRET", SecretStr("app-secret"))
    body = json.dumps(_payload(_text("919235527628", "hi"))).encode("utf-8")
    good = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

    missing = await client.post("/webhook", content=body, headers={"Content-Type": "application/json"})
    forged = await client.post("/webhook", content=body, headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=" + "0" * 64})
    signed = await client.post("/webhook", content=body, headers={"Content-Type": "application/json", "X-Hub-Signature-256": good})

    assert missing.status_code == 403
    assert forged.status_code == 403
    assert signed.status_code == 200
    assert dispatcher.submitted == [("919235527628", "hi")]


@pytest.mark.asyncio
async def test_health_endpoints(client):
    root = await client.get("/")
    health = await client.get("/healthz")

    assert root.text == HEALTH_MESSAGE
    assert health.json() == {"status": "ok", "in_flight": 0}
