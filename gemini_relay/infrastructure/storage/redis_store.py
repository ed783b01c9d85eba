import json
from typing import List, Optional

import redis

from gemini_relay.domain.exceptions import StoreError
from gemini_relay.domain.history import HistoryStore
from gemini_relay.domain.models import Turn, history_from_payload, history_to_payload


class RedisHistoryStore(HistoryStore):
    """Redis 键值存储，key 形如 "chat:<conversation_id>"，值为 JSON 数组。"""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "chat:",
        ttl_seconds: Optional[int] = None,
    ):
        self._client = client
        self._prefix = key_prefix
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "chat:", ttl_seconds: Optional[int] = None) -> "RedisHistoryStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), key_prefix, ttl_seconds)

    def _key(self, conversation_id: str) -> str:
        return f"{self._prefix}{conversation_id}"

    def load(self, conversation_id: str) -> List[Turn]:
        try:
            raw = self._client.get(self._key(conversation_id))
        except redis.RedisError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e), http_status=500)
        if not raw:
            return []
        try:
            return history_from_payload(json.loads(raw))
        except ValueError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e), http_status=500)

    def save(self, conversation_id: str, history: List[Turn]) -> None:
        value = json.dumps(history_to_payload(history), ensure_ascii=False)
        try:
            if self._ttl:
                self._client.setex(self._key(conversation_id), self._ttl, value)
            else:
                self._client.set(self._key(conversation_id), value)
        except redis.RedisError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)

    def clear(self, conversation_id: str) -> None:
        try:
            self._client.delete(self._key(conversation_id))
        except redis.RedisError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e), http_status=500)
