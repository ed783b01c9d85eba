from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import CapabilityError
from gemini_relay.infrastructure.logging.logger import logger
from .cloudinary import LIST_DECLARATION, UPLOAD_DECLARATION, make_list_capability, make_upload_capability
from .definitions import CapabilityContext, CapabilityDeclaration, CapabilityFunc
from .search import SEARCH_DECLARATION, make_search_capability
from .weather import WEATHER_DECLARATION, make_weather_capability


@dataclass(frozen=True)
class Capability:
    declaration: CapabilityDeclaration
    handler: CapabilityFunc


def unknown_capability_result(name: str) -> Dict[str, Any]:
    return {"error": f"capability {name} not recognized"}


class CapabilityRegistry:
    """能力名 → (声明, 实现) 的固定映射。

    invoke 永远返回一个 dict，不会向外抛异常：
    未知能力和能力内部故障都会被转换成 {"error": ...}，交给模型用自然语言解释。
    """

    def __init__(self, capabilities: Iterable[Capability]):
        self._capabilities: Dict[str, Capability] = {}
        for cap in capabilities:
            name = cap.declaration.name
            if name in self._capabilities:
                raise ValueError(f"Duplicate capability name: {name!r}")
            self._capabilities[name] = cap
        self._declarations = tuple(c.declaration for c in self._capabilities.values())

    def list_declarations(self) -> tuple[CapabilityDeclaration, ...]:
        return self._declarations

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities

    def invoke(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        context: Optional[CapabilityContext] = None,
    ) -> Dict[str, Any]:
        cap = self._capabilities.get(name)
        if cap is None:
            logger.warning("Unknown capability requested", extra={"extra": {"capability": name}})
            return unknown_capability_result(name)
        try:
            result = cap.handler(dict(arguments or {}), context or CapabilityContext())
        except CapabilityError as e:
            logger.warning("Capability failed", extra={"extra": {"capability": name, "error": e.message}})
            return {"error": e.message}
        except Exception as e:
            logger.exception("Capability raised", extra={"extra": {"capability": name}})
            return {"error": f"{name} failed: {e}"}
        if not isinstance(result, dict):
            result = {"result": result}
        logger.info(
            "Capability finished",
            extra={"extra": {"capability": name, "ok": "error" not in result}},
        )
        return result


def default_capabilities(cfg=settings) -> CapabilityRegistry:
    return CapabilityRegistry([
        Capability(WEATHER_DECLARATION, make_weather_capability(cfg)),
        Capability(SEARCH_DECLARATION, make_search_capability(cfg)),
        Capability(UPLOAD_DECLARATION, make_upload_capability(cfg)),
        Capability(LIST_DECLARATION, make_list_capability(cfg)),
    ])
