"""统一的会话数据模型。

本模块定义了会话历史在系统内部的标准结构：

- Turn: 一条带角色的消息（user / model）。
- Part: Turn 中的一个内容片段，是一个带标签的联合类型：
  TextPart / InlineMediaPart / CapabilityCallPart / CapabilityResultPart。
- UserInput: 一次交换的新用户输入（文本和/或图片）。

同时提供与 Gemini JSON 结构互转的编解码函数。持久化与 Web 客户端
传递的历史都使用这种 JSON 形式，因此它也是历史记录的序列化格式。

能力调用结果按照 Provider 的约定以 role="user" 的 Turn 回传，不能改成 "model"。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from .exceptions import EmptyInputError


Role = Literal["user", "model"]
ROLES = ("user", "model")


@dataclass
class TextPart:
    """纯文本片段。"""

    text: str
    # Provider 返回的、本系统不解释但需要原样回传的字段（如 thoughtSignature）
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InlineMediaPart:
    """用户附带的内联媒体（base64 编码）。"""

    mime_type: str
    data: str
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CapabilityCallPart:
    """模型发起的一次能力调用。"""

    name: str
    arguments: Dict[str, Any]
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CapabilityResultPart:
    """回传给模型的能力调用结果，result 本身可能是 {"error": ...}。"""

    name: str
    result: Dict[str, Any]
    extra: Dict[str, Any] = field(default_factory=dict)


Part = Union[TextPart, InlineMediaPart, CapabilityCallPart, CapabilityResultPart]


@dataclass
class Turn:
    """会话历史中的一条消息。"""

    role: Role
    parts: List[Part]

    @property
    def capability_calls(self) -> List[CapabilityCallPart]:
        return [p for p in self.parts if isinstance(p, CapabilityCallPart)]

    @property
    def capability_results(self) -> List[CapabilityResultPart]:
        return [p for p in self.parts if isinstance(p, CapabilityResultPart)]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @classmethod
    def model_text(cls, text: str) -> "Turn":
        return cls(role="model", parts=[TextPart(text=text)])

    @classmethod
    def capability_result(cls, name: str, result: Dict[str, Any]) -> "Turn":
        return cls(role="user", parts=[CapabilityResultPart(name=name, result=result)])


@dataclass
class UserInput:
    """一次交换的新用户输入。

    text 与 media 至少要有一个；media 只会随用户 Turn 发给模型一次，
    之后需要图片的能力（如上传）通过 CapabilityContext 拿到同一份数据。
    """

    text: Optional[str] = None
    media: Optional[InlineMediaPart] = None

    @classmethod
    def build(
        cls,
        text: Optional[str] = None,
        media_base64: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> "UserInput":
        media = None
        if media_base64 and mime_type:
            media = InlineMediaPart(mime_type=mime_type, data=media_base64)
        return cls(text=text or None, media=media)

    @property
    def is_empty(self) -> bool:
        return not self.text and self.media is None

    def to_turn(self) -> Turn:
        """构造用户 Turn；文本在前，图片在后。"""
        if self.is_empty:
            raise EmptyInputError()
        parts: List[Part] = []
        if self.text:
            parts.append(TextPart(text=self.text))
        if self.media is not None:
            parts.append(self.media)
        return Turn(role="user", parts=parts)


# ---- Gemini JSON 编解码 ----

_KNOWN_KEYS = ("text", "inlineData", "functionCall", "functionResponse")


def part_to_payload(part: Part) -> Dict[str, Any]:
    payload: Dict[str, Any] = dict(part.extra)
    if isinstance(part, TextPart):
        payload["text"] = part.text
    elif isinstance(part, InlineMediaPart):
        payload["inlineData"] = {"mimeType": part.mime_type, "data": part.data}
    elif isinstance(part, CapabilityCallPart):
        payload["functionCall"] = {"name": part.name, "args": part.arguments}
    elif isinstance(part, CapabilityResultPart):
        payload["functionResponse"] = {"name": part.name, "response": part.result}
    else:
        raise TypeError(f"Unsupported part type: {type(part).__name__}")
    return payload


def part_from_payload(payload: Dict[str, Any]) -> Part:
    """把 Gemini 的 part JSON 解析为 Part，无法识别时抛出 ValueError。"""
    if not isinstance(payload, dict):
        raise ValueError(f"part must be an object, got {type(payload).__name__}")
    extra = {k: v for k, v in payload.items() if k not in _KNOWN_KEYS}
    if "functionCall" in payload:
        call = payload["functionCall"] or {}
        if not isinstance(call, dict):
            raise ValueError("functionCall must be an object")
        name = call.get("name")
        if not name:
            raise ValueError("functionCall without a name")
        return CapabilityCallPart(name=name, arguments=dict(call.get("args") or {}), extra=extra)
    if "functionResponse" in payload:
        resp = payload["functionResponse"] or {}
        name = resp.get("name")
        if not name:
            raise ValueError("functionResponse without a name")
        return CapabilityResultPart(name=name, result=dict(resp.get("response") or {}), extra=extra)
    if "inlineData" in payload:
        inline = payload["inlineData"] or {}
        if not inline.get("mimeType") or not inline.get("data"):
            raise ValueError("inlineData requires mimeType and data")
        return InlineMediaPart(mime_type=inline["mimeType"], data=inline["data"], extra=extra)
    if "text" in payload and isinstance(payload["text"], str):
        return TextPart(text=payload["text"], extra=extra)
    raise ValueError(f"unrecognized part keys: {sorted(payload)}")


def turn_to_payload(turn: Turn) -> Dict[str, Any]:
    return {"role": turn.role, "parts": [part_to_payload(p) for p in turn.parts]}


def turn_from_payload(payload: Dict[str, Any]) -> Turn:
    if not isinstance(payload, dict):
        raise ValueError(f"turn must be an object, got {type(payload).__name__}")
    role = payload.get("role")
    if role not in ROLES:
        raise ValueError(f"unsupported role: {role!r}")
    raw_parts = payload.get("parts")
    if not isinstance(raw_parts, list) or not raw_parts:
        raise ValueError("turn must contain a non-empty parts list")
    return Turn(role=role, parts=[part_from_payload(p) for p in raw_parts])


def history_to_payload(history: List[Turn]) -> List[Dict[str, Any]]:
    return [turn_to_payload(t) for t in history]


def history_from_payload(payload: Optional[List[Dict[str, Any]]]) -> List[Turn]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValueError("history must be a list of turns")
    return [turn_from_payload(item) for item in payload]
