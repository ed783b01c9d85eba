"""能力（工具）数据结构定义。

这些 dataclass 描述了“能力调用”的 schema，既用于：
- 将可用能力列表暴露给 LLM（CapabilityDeclaration / CapabilityParam）。
- 在 CapabilityRegistry 中执行模型触发的能力调用（CapabilityContext）。

声明在进程启动时定义一次，之后只读，可以在并发交换之间共享。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from gemini_relay.domain.models import InlineMediaPart


@dataclass(frozen=True)
class CapabilityParam:
    """单个能力参数的定义。"""

    name: str
    description: str
    required: bool
    type: str = "string"


@dataclass(frozen=True)
class CapabilityDeclaration:
    """一个可供 LLM 调用的能力声明。"""

    name: str
    description: str
    params: Mapping[str, CapabilityParam] = field(default_factory=dict)

    @property
    def required_params(self) -> list[str]:
        return [name for name, p in self.params.items() if p.required]


@dataclass(frozen=True)
class CapabilityContext:
    """能力执行时需要、但不属于模型参数的环境数据。

    - media: 原始用户 Turn 附带的图片（只发给能力，不会再次发给模型）。
    - conversation_id: 当前会话 id，Web 无状态调用时为空。
    """

    media: Optional[InlineMediaPart] = None
    conversation_id: Optional[str] = None


CapabilityFunc = Callable[[Dict[str, Any], CapabilityContext], Any]
