import copy
import threading
from typing import Dict, List

from gemini_relay.domain.history import HistoryStore
from gemini_relay.domain.models import Turn


class MemoryHistoryStore(HistoryStore):
    """进程内存中的历史存储，重启即丢失，适合开发和单进程部署。"""

    def __init__(self):
        self._data: Dict[str, List[Turn]] = {}
        self._lock = threading.Lock()

    def load(self, conversation_id: str) -> List[Turn]:
        with self._lock:
            return copy.deepcopy(self._data.get(conversation_id, []))

    def save(self, conversation_id: str, history: List[Turn]) -> None:
        snapshot = copy.deepcopy(list(history))
        with self._lock:
            self._data[conversation_id] = snapshot

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            self._data.pop(conversation_id, None)
