"""LLM Provider 集成层。

该包下的模块负责：
- 定义 LLM Gateway 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (gemini_client)。
"""

from typing import Optional

from gemini_relay.config.settings import settings
from gemini_relay.providers.base import LLMGateway
from gemini_relay.providers.gemini_client import GeminiClient


def create_provider(name: Optional[str] = None, model: Optional[str] = None) -> LLMGateway:
    """根据名称创建 Gateway 实例，目前只有 gemini。"""

    provider_name = (name or "gemini").lower()
    if provider_name != "gemini":
        raise KeyError(f"Unknown provider: {name!r}")
    return GeminiClient(settings, model=model)
