from fastapi.testclient import TestClient

from gemini_relay.agents.conversation_loop import ConversationLoop
from gemini_relay.api.web import create_app
from gemini_relay.domain.exceptions import ConfigurationError
from gemini_relay.domain.outcomes import Blocked, CapabilityRequest, FinalAnswer, ProviderError
from gemini_relay.tools.definitions import CapabilityDeclaration
from gemini_relay.tools.registry import Capability, CapabilityRegistry


class Cfg:
    public_url = None
    telegram_bot_token = None
    telegram_webhook_path = "/telegram-webhook"
    static_dir = "does-not-exist"


class ScriptedGateway:
    name = "scripted"

    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.seen = []

    def query(self, turns, declarations):
        self.seen.append(list(turns))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(outcomes, telegram_handler=None, uploads=None):
    def upload(args, context):
        if uploads is not None:
            uploads.append(context.media)
        return {"url": "https://res.example/x.jpg"}

    registry = CapabilityRegistry([
        Capability(CapabilityDeclaration(name="uploadImageToCloudinary", description="upload"), upload),
    ])
    gateway = ScriptedGateway(outcomes)
    app = create_app(loop=ConversationLoop(gateway, registry), telegram_handler=telegram_handler, cfg=Cfg)
    return TestClient(app, raise_server_exceptions=False), gateway


def test_healthz():
    client, _ = _client([])
    assert client.get("/healthz").json() == {"status": "ok"}


def test_chat_final_response():
    client, gateway = _client([FinalAnswer(text="Hi there")])
    history = [
        {"role": "user", "parts": [{"text": "earlier"}]},
        {"role": "model", "parts": [{"text": "reply"}]},
    ]
    resp = client.post("/api/chat", json={"prompt": "hello", "history": history})
    assert resp.status_code == 200
    body = resp.json()
    assert body["response"] == "Hi there"
    assert len(body["updatedHistory"]) == 4
    assert body["updatedHistory"][-1] == {"role": "model", "parts": [{"text": "Hi there"}]}
    assert len(gateway.seen[0]) == 3


def test_chat_with_image_and_capability():
    uploads = []
    client, _ = _client(
        [CapabilityRequest(name="uploadImageToCloudinary", arguments={}), FinalAnswer(text="Uploaded.")],
        uploads=uploads,
    )
    resp = client.post("/api/chat", json={"prompt": "upload", "imageData": "QUJD", "mimeType": "image/png"})
    assert resp.status_code == 200
    history = resp.json()["updatedHistory"]
    assert [t["role"] for t in history] == ["user", "model", "user", "model"]
    assert history[0]["parts"][1] == {"inlineData": {"mimeType": "image/png", "data": "QUJD"}}
    assert history[2]["parts"][0]["functionResponse"]["response"] == {"url": "https://res.example/x.jpg"}
    assert uploads[0].data == "QUJD"


def test_chat_empty_input_is_400():
    client, gateway = _client([])
    resp = client.post("/api/chat", json={"history": []})
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert gateway.seen == []


def test_chat_image_without_mime_type_is_400():
    client, _ = _client([])
    resp = client.post("/api/chat", json={"imageData": "QUJD"})
    assert resp.status_code == 400


def test_chat_malformed_history_is_400():
    client, _ = _client([])
    resp = client.post("/api/chat", json={"prompt": "hi", "history": [{"role": "system", "parts": [{"text": "x"}]}]})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid history")


def test_chat_blocked():
    client, _ = _client([Blocked(reason="SAFETY")])
    resp = client.post("/api/chat", json={"prompt": "bad"})
    assert resp.status_code == 400
    assert "SAFETY" in resp.json()["error"]
    assert len(resp.json()["updatedHistory"]) == 1


def test_chat_provider_error_status():
    client, _ = _client([ProviderError(status=429, detail="quota")])
    resp = client.post("/api/chat", json={"message": "hi"})
    assert resp.status_code == 429
    assert resp.json()["error"] == "Gemini API error: 429 - quota"


def test_missing_api_key_is_500():
    client, _ = _client([ConfigurationError("Gemini API Key not configured.")])
    resp = client.post("/api/chat", json={"prompt": "hi"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Gemini API Key not configured."}


def test_unexpected_error_is_500():
    client, _ = _client([RuntimeError("boom")])
    resp = client.post("/api/chat", json={"prompt": "hi"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Server error: boom"}


def test_generate():
    client, gateway = _client([FinalAnswer(text="generated")])
    resp = client.post("/api/generate", json={"message": "write a haiku"})
    assert resp.json() == {"response": "generated"}
    assert len(gateway.seen[0]) == 1


def test_two_step_flow():
    uploads = []
    client, gateway = _client(
        [CapabilityRequest(name="uploadImageToCloudinary", arguments={"folder": "pets"}), FinalAnswer(text="Done.")],
        uploads=uploads,
    )
    start = client.post("/api/chat/start", json={"prompt": "save", "imageData": "QUJD", "mimeType": "image/png"}).json()
    assert start["type"] == "tool_use"
    assert start["functionCall"] == {"name": "uploadImageToCloudinary", "args": {"folder": "pets"}}
    assert start["modelContentForHistory"]["role"] == "model"

    resp = client.post("/api/chat/execute-tool", json={
        "functionCall": start["functionCall"],
        "history": start["updatedHistory"],
        "imageData": "QUJD",
        "mimeType": "image/png",
    })
    body = resp.json()
    assert body["type"] == "final_response"
    assert body["response"] == "Done."
    assert [t["role"] for t in body["updatedHistory"]] == ["user", "model", "user", "model"]
    assert uploads[0].data == "QUJD"
    assert len(gateway.seen) == 2


def test_execute_tool_requires_function_call():
    client, _ = _client([])
    resp = client.post("/api/chat/execute-tool", json={"history": []})
    assert resp.status_code == 400


def test_telegram_webhook_not_configured(monkeypatch):
    monkeypatch.setattr("gemini_relay.api.service.get_telegram_handler", lambda: None)
    client, _ = _client([])
    resp = client.post("/telegram-webhook", json={"update_id": 1})
    assert resp.status_code == 503


def test_telegram_webhook_runs_in_background():
    class Handler:
        def __init__(self):
            self.updates = []

        def handle_update(self, update):
            self.updates.append(update)

    handler = Handler()
    client, _ = _client([], telegram_handler=handler)
    update = {"update_id": 5, "message": {"chat": {"id": 1}, "text": "hi"}}
    resp = client.post("/telegram-webhook", json=update)
    assert resp.status_code == 200
    assert resp.text == "OK"
    assert handler.updates == [update]


def test_service_singletons(monkeypatch):
    from gemini_relay.api import service

    for name in ("_store", "_loop", "_chat", "_telegram"):
        monkeypatch.setattr(service, name, None)
    monkeypatch.setattr(service.settings, "history_backend", "memory")
    monkeypatch.setattr(service.settings, "telegram_bot_token", None)
    chat = service.get_chat_service()
    assert service.get_chat_service() is chat
    assert service.get_conversation_loop() is service.get_conversation_loop()
    assert service.get_telegram_handler() is None

    monkeypatch.setattr(service.settings, "telegram_bot_token", "123456:secret-token")
    handler = service.get_telegram_handler()
    assert handler is not None
    assert service.get_telegram_handler() is handler
