from typing import List, Protocol

from .models import Turn


class HistoryStore(Protocol):
    """按会话 id 持久化会话历史。

    load 在没有记录时返回空列表；save 总是整体覆盖；clear 对不存在的 id 是空操作。
    本协议不保证同一 id 上并发交换的原子性，串行化由 ChatService 负责。
    """

    def load(self, conversation_id: str) -> List[Turn]:
        ...

    def save(self, conversation_id: str, history: List[Turn]) -> None:
        ...

    def clear(self, conversation_id: str) -> None:
        ...
