"""对外 API 服务模块。

按需构建并缓存进程内共享的组件（单例）：历史存储、对话循环、
对话服务以及 Telegram webhook 处理器。HTTP 层只通过这里取组件。
"""

import threading
from typing import Optional

from gemini_relay.agents.chat_service import ChatService
from gemini_relay.agents.conversation_loop import ConversationLoop
from gemini_relay.config.settings import settings
from gemini_relay.domain.history import HistoryStore
from gemini_relay.infrastructure.logging.logger import logger
from gemini_relay.infrastructure.storage import create_history_store
from gemini_relay.providers import create_provider
from gemini_relay.tools.registry import default_capabilities
from gemini_relay.transports.telegram import TelegramClient, TelegramWebhookHandler


_lock = threading.Lock()
_store: Optional[HistoryStore] = None
_loop: Optional[ConversationLoop] = None
_chat: Optional[ChatService] = None
_telegram: Optional[TelegramWebhookHandler] = None


def get_history_store() -> HistoryStore:
    """获取默认历史存储（单例）。"""
    global _store
    with _lock:
        if _store is None:
            _store = create_history_store(settings)
            logger.info("History store ready", extra={"extra": {"backend": settings.history_backend}})
        return _store


def get_conversation_loop() -> ConversationLoop:
    """获取默认对话循环（单例），注册全部内置能力。"""
    global _loop
    with _lock:
        if _loop is None:
            _loop = ConversationLoop(gateway=create_provider(), registry=default_capabilities(settings))
        return _loop


def get_chat_service() -> ChatService:
    global _chat
    store = get_history_store()
    loop = get_conversation_loop()
    with _lock:
        if _chat is None:
            _chat = ChatService(loop, store, serialize=settings.serialize_conversations)
        return _chat


def get_telegram_client() -> Optional[TelegramClient]:
    if not settings.telegram_bot_token:
        return None
    return TelegramClient(settings.telegram_bot_token, settings)


def get_telegram_handler() -> Optional[TelegramWebhookHandler]:
    """未配置 TELEGRAM_BOT_TOKEN 时返回 None。"""
    global _telegram
    client = get_telegram_client()
    if client is None:
        return None
    chat = get_chat_service()
    with _lock:
        if _telegram is None:
            _telegram = TelegramWebhookHandler(client, chat)
        return _telegram
