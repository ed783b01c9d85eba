import json
import tempfile
import threading
from pathlib import Path

import pytest
import redis

from gemini_relay.domain.exceptions import ConfigurationError, StoreError
from gemini_relay.domain.models import CapabilityCallPart, TextPart, Turn
from gemini_relay.infrastructure.storage import create_history_store
from gemini_relay.infrastructure.storage.json_store import JsonHistoryStore
from gemini_relay.infrastructure.storage.locks import KeyedLock
from gemini_relay.infrastructure.storage.memory_store import MemoryHistoryStore
from gemini_relay.infrastructure.storage.redis_store import RedisHistoryStore


def _history():
    return [
        Turn(role="user", parts=[TextPart(text="hi")]),
        Turn(role="model", parts=[CapabilityCallPart(name="getCurrentWeather", arguments={"city": "Rome"})]),
        Turn.capability_result("getCurrentWeather", {"temperature_c": "25"}),
        Turn.model_text("Warm."),
    ]


def test_memory_store_roundtrip_and_isolation():
    store = MemoryHistoryStore()
    assert store.load("c1") == []
    history = _history()
    store.save("c1", history)
    history.append(Turn.model_text("mutated later"))
    loaded = store.load("c1")
    assert len(loaded) == 4
    loaded[0].parts.append(TextPart(text="x"))
    assert len(store.load("c1")[0].parts) == 1
    store.clear("c1")
    assert store.load("c1") == []


def test_json_store_roundtrip_and_clear():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root)
        store.save("123456", _history())
        path = root / "histories" / "123456.json"
        assert path.exists()
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw[2]["role"] == "user"
        assert store.load("123456") == _history()
        assert not list((root / "histories").glob("*.tmp"))
        store.clear("123456")
        assert not path.exists()
        store.clear("123456")


def test_json_store_sanitizes_ids():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=d)
        store.save("../escape", _history())
        assert store.load("../escape") == _history()
        assert all(p.parent.name == "histories" for p in Path(d).rglob("*.json"))


def test_json_store_corrupt_file():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=d)
        (Path(d) / "histories" / "bad.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreError) as ei:
            store.load("bad")
        assert ei.value.code == "STORE_READ_ERROR"


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.data.pop(key, None)


def test_redis_store_uses_chat_prefix():
    client = FakeRedis()
    store = RedisHistoryStore(client)
    store.save("777", _history())
    assert "chat:777" in client.data
    assert store.load("777") == _history()
    store.clear("777")
    assert store.load("777") == []


def test_redis_store_ttl():
    client = FakeRedis()
    RedisHistoryStore(client, key_prefix="h:", ttl_seconds=60).save("1", _history())
    assert client.ttls == {"h:1": 60}


def test_redis_errors_become_store_errors():
    class Down(FakeRedis):
        def get(self, key):
            raise redis.ConnectionError("down")

    with pytest.raises(StoreError) as ei:
        RedisHistoryStore(Down()).load("1")
    assert ei.value.http_status == 500


def test_create_history_store_backends():
    class Cfg:
        history_backend = "memory"
        storage_root = ".storage"
        redis_url = None
        history_key_prefix = "chat:"
        history_ttl_seconds = None

    assert isinstance(create_history_store(Cfg()), MemoryHistoryStore)

    with tempfile.TemporaryDirectory() as d:
        Cfg.history_backend = "json"
        Cfg.storage_root = d
        assert isinstance(create_history_store(Cfg()), JsonHistoryStore)

    Cfg.history_backend = "redis"
    with pytest.raises(ConfigurationError):
        create_history_store(Cfg())


def test_keyed_lock_serializes_same_key_and_cleans_up():
    locks = KeyedLock()
    inside = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with locks.hold("k"):
            order.append("first-in")
            inside.set()
            release.wait(2)
            order.append("first-out")

    def second():
        inside.wait(2)
        with locks.hold("k"):
            order.append("second-in")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    inside.wait(2)
    with locks.hold("other"):
        order.append("other")
    release.set()
    t1.join(2)
    t2.join(2)
    assert order.index("first-out") < order.index("second-in")
    assert "other" in order
    assert locks.active_keys() == []
