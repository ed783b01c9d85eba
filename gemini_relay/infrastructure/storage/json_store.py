import json
import os
import re
from pathlib import Path
from typing import List
from uuid import uuid4

from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import StoreError
from gemini_relay.domain.history import HistoryStore
from gemini_relay.domain.models import Turn, history_from_payload, history_to_payload


_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class JsonHistoryStore(HistoryStore):
    """每个会话一个 JSON 文件，写入时先写临时文件再 os.replace。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._hist_root = self._root / "histories"
        self._hist_root.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        safe = _SAFE_ID.sub("_", str(conversation_id))
        if not safe:
            raise StoreError(code="STORE_BAD_KEY", message="empty conversation id", http_status=400)
        return self._hist_root / f"{safe}.json"

    def load(self, conversation_id: str) -> List[Turn]:
        path = self._path(conversation_id)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return history_from_payload(data)
        except (OSError, ValueError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e), http_status=500)

    def save(self, conversation_id: str, history: List[Turn]) -> None:
        path = self._path(conversation_id)
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
        try:
            tmp_path.write_text(json.dumps(history_to_payload(history), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)

    def clear(self, conversation_id: str) -> None:
        path = self._path(conversation_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e), http_status=500)
