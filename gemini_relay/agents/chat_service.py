"""带持久化历史的对话服务。

把 HistoryStore 与 ConversationLoop 组合起来：交换开始前读取历史，
结束后（无论成功还是终止性失败）整体写回。循环中途崩溃时不会写入，
存储保留交换前的历史。

同一会话 id 上的并发交换默认串行执行（KeyedLock）；关闭串行化后
两个并发交换读到同一份历史，后写入者覆盖先写入者。
"""

from contextlib import nullcontext
from typing import Optional

from gemini_relay.agents.conversation_loop import ConversationLoop, ExchangeResult
from gemini_relay.domain.exceptions import EmptyInputError
from gemini_relay.domain.history import HistoryStore
from gemini_relay.domain.models import UserInput
from gemini_relay.infrastructure.logging.logger import logger
from gemini_relay.infrastructure.storage.locks import KeyedLock


class ChatService:
    def __init__(
        self,
        loop: ConversationLoop,
        store: HistoryStore,
        serialize: bool = True,
        locks: Optional[KeyedLock] = None,
    ):
        """初始化对话服务。

        Args:
            loop: 对话循环
            store: 历史存储
            serialize: 是否对同一会话 id 加互斥锁
            locks: 可注入的锁表，默认新建
        """
        self._loop = loop
        self._store = store
        self._locks = (locks or KeyedLock()) if serialize else None

    @property
    def store(self) -> HistoryStore:
        return self._store

    def _guard(self, conversation_id: str):
        if self._locks is None:
            return nullcontext()
        return self._locks.hold(conversation_id)

    def exchange(self, conversation_id: str, user_input: UserInput) -> ExchangeResult:
        """读取历史 → 执行交换 → 写回历史。

        输入为空时直接抛出 EmptyInputError，不读也不写存储。
        """
        if user_input.is_empty:
            raise EmptyInputError()
        with self._guard(conversation_id):
            history = self._store.load(conversation_id)
            logger.info(
                "Loaded history",
                extra={"extra": {"conversation_id": conversation_id, "turns": len(history)}},
            )
            result = self._loop.converse(history, user_input, conversation_id=conversation_id)
            self._store.save(conversation_id, result.history)
            logger.info(
                "Saved history",
                extra={"extra": {
                    "conversation_id": conversation_id,
                    "turns": len(result.history),
                    "trace_id": result.trace_id,
                }},
            )
        return result

    def clear(self, conversation_id: str) -> None:
        with self._guard(conversation_id):
            self._store.clear(conversation_id)
        logger.info("Cleared history", extra={"extra": {"conversation_id": conversation_id}})
