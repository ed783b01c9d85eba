import threading
import time

import pytest

from gemini_relay.agents.chat_service import ChatService
from gemini_relay.agents.conversation_loop import ConversationLoop
from gemini_relay.domain.exceptions import EmptyInputError
from gemini_relay.domain.models import UserInput
from gemini_relay.domain.outcomes import Blocked, FinalAnswer
from gemini_relay.infrastructure.storage.memory_store import MemoryHistoryStore
from gemini_relay.tools.registry import CapabilityRegistry


class EchoGateway:
    name = "echo"

    def __init__(self, barrier=None, delay=0.0):
        self._barrier = barrier
        self._delay = delay

    def query(self, turns, declarations):
        if self._barrier is not None:
            self._barrier.wait()
        if self._delay:
            time.sleep(self._delay)
        return FinalAnswer(text=f"echo: {turns[-1].text}")


def _service(gateway, serialize=True, store=None):
    loop = ConversationLoop(gateway, CapabilityRegistry([]))
    return ChatService(loop, store or MemoryHistoryStore(), serialize=serialize)


def test_exchange_persists_history():
    svc = _service(EchoGateway())
    first = svc.exchange("c1", UserInput.build(text="one"))
    second = svc.exchange("c1", UserInput.build(text="two"))
    assert first.final_text == "echo: one"
    assert second.final_text == "echo: two"
    stored = svc.store.load("c1")
    assert [t.text for t in stored] == ["one", "echo: one", "two", "echo: two"]
    assert svc.store.load("c2") == []


def test_failed_exchange_still_persists_user_turn():
    class BlockingGateway:
        name = "blocked"

        def query(self, turns, declarations):
            return Blocked(reason="SAFETY")

    svc = _service(BlockingGateway())
    result = svc.exchange("c1", UserInput.build(text="bad"))
    assert not result.ok
    assert [t.role for t in svc.store.load("c1")] == ["user"]


def test_empty_input_does_not_touch_store():
    class ExplodingStore(MemoryHistoryStore):
        def load(self, conversation_id):
            raise AssertionError("store should not be read")

    svc = _service(EchoGateway(), store=ExplodingStore())
    with pytest.raises(EmptyInputError):
        svc.exchange("c1", UserInput.build())


def test_clear():
    svc = _service(EchoGateway())
    svc.exchange("c1", UserInput.build(text="one"))
    svc.clear("c1")
    assert svc.store.load("c1") == []


def _race(svc):
    results = []

    def run(text):
        results.append(svc.exchange("shared", UserInput.build(text=text)))

    threads = [threading.Thread(target=run, args=(t,)) for t in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    return results


def test_concurrent_exchanges_without_locking_last_write_wins():
    # 两个交换都在任何一方写回之前读到空历史
    svc = _service(EchoGateway(barrier=threading.Barrier(2, timeout=5)), serialize=False)
    results = _race(svc)
    assert len(results) == 2
    stored = svc.store.load("shared")
    assert len(stored) == 2
    assert stored[0].text in ("a", "b")


def test_concurrent_exchanges_with_locking_are_serialized():
    svc = _service(EchoGateway(delay=0.05), serialize=True)
    results = _race(svc)
    assert len(results) == 2
    stored = svc.store.load("shared")
    assert len(stored) == 4
    assert sorted(t.text for t in stored if t.role == "user") == ["a", "b"]
