import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from gemini_relay.config.settings import RelaySettings


def test_yaml_config_is_loaded_and_env_wins(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        cfg = Path(d) / "relay.yaml"
        cfg.write_text("history_backend: json\nport: 8080\ndefault_model: chat-legacy\n", encoding="utf-8")
        monkeypatch.setenv("RELAY_CONFIG_FILE", str(cfg))
        monkeypatch.setenv("PORT", "9000")
        s = RelaySettings()
        assert s.history_backend == "json"
        assert s.default_model == "chat-legacy"
        assert s.port == 9000


def test_defaults():
    s = RelaySettings(_env_file=None)
    assert s.history_key_prefix == "chat:"
    assert s.telegram_webhook_path == "/telegram-webhook"
    assert s.serialize_conversations is True


def test_short_api_key_rejected():
    with pytest.raises(ValidationError):
        RelaySettings(gemini_api_key="short")
