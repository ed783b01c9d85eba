"""LLM Gateway 抽象接口。

ConversationLoop 不直接依赖具体厂商的 HTTP 协议，而是依赖此协议：

- 每个厂商实现一个 LLMGateway（目前只有 GeminiClient）。
- query 负责：把 Turn 序列和能力声明转成具体 API 请求，发出恰好一次网络调用，
  再把响应分类为 Outcome。Gateway 内部不做重试。
"""

from typing import Protocol, Sequence

from gemini_relay.domain.models import Turn
from gemini_relay.domain.outcomes import Outcome
from gemini_relay.tools.definitions import CapabilityDeclaration


class LLMGateway(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - query(turns, declarations): 执行一次非流式调用，返回 Outcome。
    """

    name: str

    def query(self, turns: Sequence[Turn], declarations: Sequence[CapabilityDeclaration]) -> Outcome:
        ...
