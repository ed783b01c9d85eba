"""Telegram 传输层。

- TelegramClient: 通过 httpx 直接调用 Bot API（sendMessage / sendChatAction / setWebhook / getFile）。
- TelegramWebhookHandler: 处理 webhook 推送的 update，会话 id 即 chat.id。

命令：
- /start  固定问候语，不调用模型
- /clear  清空该 chat 的历史
- 其它 /command 忽略
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from gemini_relay.agents.chat_service import ChatService
from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import BusinessError, TelegramError
from gemini_relay.domain.models import UserInput
from gemini_relay.infrastructure.logging.logger import logger


MAX_MESSAGE_CHARS = 4096
GREETING_TEXT = "Hello! I am your Gemini AI assistant. Send me a message to start a conversation."
CLEARED_TEXT = "Conversation history has been cleared."
APOLOGY_TEXT = "Sorry, something went wrong on the server. Please try again later."
EMPTY_REPLY_TEXT = "Sorry, I have no answer to that. Please try rephrasing."
PHOTO_MIME_TYPE = "image/jpeg"


def split_message(text: str, limit: int = MAX_MESSAGE_CHARS) -> List[str]:
    """按 Telegram 单条消息上限切分文本，优先在换行处断开。"""
    if not text:
        return []
    chunks: List[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:].lstrip("\n")
    if rest:
        chunks.append(rest)
    return chunks


class TelegramClient:
    """Telegram Bot API 客户端。"""

    def __init__(self, token: str, cfg=settings):
        if not token:
            raise ValueError("telegram bot token is required")
        self._token = token
        self._settings = cfg

    @property
    def _api_base(self) -> str:
        return str(getattr(self._settings, "telegram_api_base", "https://api.telegram.org")).rstrip("/")

    def call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """调用一个 Bot API 方法，返回 result 字段；失败抛出 TelegramError。"""
        url = f"{self._api_base}/bot{self._token}/{method}"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(url, json=payload or {})
        except httpx.RequestError as e:
            raise TelegramError(code="TELEGRAM_UNREACHABLE", message=str(e), http_status=502, method=method)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400 or not data.get("ok"):
            raise TelegramError(
                code="TELEGRAM_API_ERROR",
                message=data.get("description") or f"HTTP {resp.status_code}",
                http_status=resp.status_code if resp.status_code >= 400 else 502,
                method=method,
            )
        return data.get("result")

    def send_message(self, chat_id: int | str, text: str, parse_mode: Optional[str] = "Markdown") -> None:
        """发送文本，超长时分段；Telegram 拒绝 Markdown 时退回纯文本重发。"""
        for chunk in split_message(text):
            payload: Dict[str, Any] = {"chat_id": chat_id, "text": chunk}
            if parse_mode:
                payload["parse_mode"] = parse_mode
            try:
                self.call("sendMessage", payload)
            except TelegramError as e:
                if not parse_mode or e.http_status != 400:
                    raise
                logger.warning(
                    "Markdown send failed, falling back to plain text",
                    extra={"extra": {"chat_id": chat_id, "error": e.message}},
                )
                self.call("sendMessage", {"chat_id": chat_id, "text": chunk})

    def send_chat_action(self, chat_id: int | str, action: str = "typing") -> None:
        # 只是提示，失败不影响后续回复
        try:
            self.call("sendChatAction", {"chat_id": chat_id, "action": action})
        except TelegramError as e:
            logger.warning("sendChatAction failed", extra={"extra": {"chat_id": chat_id, "error": e.message}})

    def set_webhook(self, url: str) -> None:
        self.call("setWebhook", {"url": url})
        logger.info("Telegram webhook registered", extra={"extra": {"url": url}})

    def download_file(self, file_id: str) -> bytes:
        info = self.call("getFile", {"file_id": file_id}) or {}
        file_path = info.get("file_path")
        if not file_path:
            raise TelegramError(code="TELEGRAM_FILE_ERROR", message="getFile returned no file_path", http_status=502)
        url = f"{self._api_base}/file/bot{self._token}/{file_path}"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TelegramError(code="TELEGRAM_FILE_ERROR", message=str(e), http_status=502)
        return resp.content


class TelegramWebhookHandler:
    def __init__(self, client: TelegramClient, chat_service: ChatService):
        self._client = client
        self._chat = chat_service

    def handle_update(self, update: Dict[str, Any]) -> None:
        """处理一条 webhook update。在后台任务中运行，不向外抛异常。"""
        message = update.get("message")
        if not isinstance(message, dict):
            return
        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None:
            return
        text = message.get("text")
        photos = message.get("photo") or []
        logger.info(
            "Telegram update received",
            extra={"extra": {"update_id": update.get("update_id"), "chat_id": chat_id, "has_photo": bool(photos)}},
        )

        if text and text.startswith("/"):
            self._handle_command(chat_id, text)
            return
        if not text and not photos:
            logger.info("Ignored unsupported Telegram message", extra={"extra": {"chat_id": chat_id}})
            return

        try:
            self._client.send_chat_action(chat_id, "typing")
            user_input = self._build_input(text or message.get("caption"), photos)
            result = self._chat.exchange(str(chat_id), user_input)
            reply = result.reply_text
            if not reply.strip():
                logger.warning("Empty reply from model", extra={"extra": {"chat_id": chat_id}})
                reply = EMPTY_REPLY_TEXT
            self._client.send_message(chat_id, reply)
        except BusinessError as e:
            logger.error(
                "Telegram exchange failed",
                extra={"extra": {"chat_id": chat_id, "code": e.code, "error": e.message}},
            )
            self._reply_safely(chat_id, e.message)
        except Exception:
            logger.exception("Unexpected error while handling Telegram update", extra={"extra": {"chat_id": chat_id}})
            self._reply_safely(chat_id, APOLOGY_TEXT)

    def _handle_command(self, chat_id: int, text: str) -> None:
        command = text.split()[0].split("@")[0].lower()
        if command == "/start":
            self._reply_safely(chat_id, GREETING_TEXT)
        elif command == "/clear":
            try:
                self._chat.clear(str(chat_id))
            except BusinessError as e:
                logger.error("Failed to clear history", extra={"extra": {"chat_id": chat_id, "error": e.message}})
                self._reply_safely(chat_id, APOLOGY_TEXT)
                return
            self._reply_safely(chat_id, CLEARED_TEXT)
        else:
            logger.info("Ignored Telegram command", extra={"extra": {"chat_id": chat_id, "command": command}})

    def _build_input(self, text: Optional[str], photos: List[Dict[str, Any]]) -> UserInput:
        if not photos:
            return UserInput.build(text=text)
        # photo 数组按尺寸升序排列，取最大的一张
        file_id = photos[-1].get("file_id")
        data = self._client.download_file(file_id)
        return UserInput.build(
            text=text,
            media_base64=base64.b64encode(data).decode("ascii"),
            mime_type=PHOTO_MIME_TYPE,
        )

    def _reply_safely(self, chat_id: int, text: str) -> None:
        try:
            self._client.send_message(chat_id, text, parse_mode=None)
        except TelegramError as e:
            logger.error("Failed to send Telegram message", extra={"extra": {"chat_id": chat_id, "error": e.message}})
