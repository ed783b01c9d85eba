"""会话历史存储后端：内存、JSON 文件与 Redis。"""

from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import ConfigurationError
from gemini_relay.domain.history import HistoryStore


def create_history_store(cfg=settings) -> HistoryStore:
    """根据 history_backend 配置创建存储实例。"""

    backend = getattr(cfg, "history_backend", "memory")
    if backend == "json":
        from .json_store import JsonHistoryStore

        return JsonHistoryStore(root=cfg.storage_root)
    if backend == "redis":
        if not cfg.redis_url:
            raise ConfigurationError("REDIS_URL must be set when HISTORY_BACKEND=redis.")
        from .redis_store import RedisHistoryStore

        return RedisHistoryStore.from_url(
            cfg.redis_url,
            key_prefix=cfg.history_key_prefix,
            ttl_seconds=cfg.history_ttl_seconds,
        )
    from .memory_store import MemoryHistoryStore

    return MemoryHistoryStore()
