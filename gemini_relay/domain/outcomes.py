"""LLM Gateway 单次查询的结果类型。

Outcome 是一个带标签的联合类型，各分支字段互斥：

- FinalAnswer: 模型给出了文本回答。
- CapabilityRequest: 模型请求调用一个能力，model_turn 必须先原样追加到历史。
- Blocked: 模型出于安全/策略原因拒答（或没有候选）。
- ProviderError: 传输失败或响应结构不合法。

调用方应对四个分支做穷尽分发，遇到未知类型直接抛 TypeError。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .models import Turn


@dataclass(frozen=True)
class FinalAnswer:
    text: str
    # Provider 返回的原始 model Turn；为空时由调用方用 text 构造
    model_turn: Optional[Turn] = None


@dataclass(frozen=True)
class CapabilityRequest:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    model_turn: Optional[Turn] = None


@dataclass(frozen=True)
class Blocked:
    reason: str


@dataclass(frozen=True)
class ProviderError:
    status: int
    detail: str


Outcome = Union[FinalAnswer, CapabilityRequest, Blocked, ProviderError]
