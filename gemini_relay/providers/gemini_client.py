"""Gemini Provider 适配器（LLM Gateway 的唯一实现）。

使用 generateContent 端点：
- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key 请求头

响应分类规则：
- promptFeedback.blockReason 存在 → Blocked
- 没有 candidates 数组 → ProviderError；candidates 为空 → Blocked("NO_CANDIDATES")
- 首个候选 finishReason 属于安全类 → Blocked(finishReason)
- 只看首个候选的首个 part：functionCall → CapabilityRequest，text → FinalAnswer，
  其余情况 → ProviderError。多个候选或多个 part 不做合并，这是刻意保留的简化。
"""

import json
from typing import Any, Dict, List, Sequence

import httpx

from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import ConfigurationError
from gemini_relay.domain.models import CapabilityCallPart, TextPart, Turn, part_from_payload, turn_to_payload
from gemini_relay.domain.outcomes import Blocked, CapabilityRequest, FinalAnswer, Outcome, ProviderError
from gemini_relay.infrastructure.logging.logger import logger
from gemini_relay.providers.registry import GEMINI_CONFIG, resolve_model
from gemini_relay.tools.definitions import CapabilityDeclaration


BLOCKING_FINISH_REASONS = frozenset({"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"})
LOG_EXCERPT_CHARS = 500
DETAIL_EXCERPT_CHARS = 200


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings, model: str | None = None):
        self._settings = cfg
        self._model = model or getattr(cfg, "default_model", "chat")

    @property
    def model(self) -> str:
        return resolve_model(self._model).provider_model

    def query(self, turns: Sequence[Turn], declarations: Sequence[CapabilityDeclaration]) -> Outcome:
        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            raise ConfigurationError("Gemini API Key not configured.")
        payload = self._build_payload(turns, declarations)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        url = f"{base}/models/{self.model}:generateContent"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    url,
                    json=payload,
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            logger.error("Gemini request timed out", extra={"extra": {"model": self.model, "error": str(e)}})
            return ProviderError(status=504, detail=f"Gemini request timed out: {e}")
        except httpx.RequestError as e:
            logger.error("Gemini request failed", extra={"extra": {"model": self.model, "error": str(e)}})
            return ProviderError(status=502, detail=f"Network error: {e}")

        if resp.status_code >= 400:
            body = resp.text or ""
            logger.error(
                "Gemini API request failed",
                extra={"extra": {
                    "model": self.model,
                    "status": resp.status_code,
                    "body": body[:LOG_EXCERPT_CHARS],
                }},
            )
            return ProviderError(status=resp.status_code, detail=body[:DETAIL_EXCERPT_CHARS])
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            return ProviderError(status=502, detail="Gemini returned a non-JSON body.")
        return self._classify(data)

    # ---- 辅助方法 ----

    def _build_payload(self, turns: Sequence[Turn], declarations: Sequence[CapabilityDeclaration]) -> dict:
        payload: Dict[str, Any] = {
            "contents": [turn_to_payload(t) for t in turns],
        }
        if declarations:
            payload["tools"] = [
                {"functionDeclarations": [self._serialize_declaration(d) for d in declarations]}
            ]
        instruction = getattr(self._settings, "system_instruction", "")
        if instruction:
            payload["systemInstruction"] = {"parts": [{"text": instruction}]}
        return payload

    def _classify(self, data: Any) -> Outcome:
        if not isinstance(data, dict):
            return ProviderError(status=502, detail="Gemini response is not a JSON object.")

        feedback = data.get("promptFeedback") or {}
        if not isinstance(feedback, dict):
            return ProviderError(status=502, detail="Invalid response format from Gemini: promptFeedback is not an object.")
        block_reason = feedback.get("blockReason")
        if block_reason:
            logger.warning("Gemini blocked the prompt", extra={"extra": {"reason": block_reason}})
            return Blocked(reason=str(block_reason))

        candidates = data.get("candidates")
        if candidates is None or not isinstance(candidates, list):
            return ProviderError(status=502, detail="Gemini response has no candidates array.")
        if not candidates:
            logger.warning(
                "Gemini returned no candidates",
                extra={"extra": {"body": json.dumps(data, ensure_ascii=False)[:LOG_EXCERPT_CHARS]}},
            )
            return Blocked(reason="NO_CANDIDATES")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            return ProviderError(status=502, detail="Invalid response format from Gemini: candidate is not an object.")
        finish_reason = candidate.get("finishReason")
        if finish_reason in BLOCKING_FINISH_REASONS:
            logger.warning("Gemini blocked the candidate", extra={"extra": {"reason": finish_reason}})
            return Blocked(reason=str(finish_reason))

        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            return ProviderError(status=502, detail="Invalid response format from Gemini: content is not an object.")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            return ProviderError(status=502, detail="Invalid response format from Gemini: parts is not an array.")
        if not parts or not isinstance(parts[0], dict):
            return ProviderError(status=502, detail="Invalid response format from Gemini: candidate has no parts.")
        first = parts[0]
        if "functionCall" not in first and "text" not in first:
            return ProviderError(
                status=502,
                detail="Invalid response format from Gemini: candidate has neither text nor functionCall.",
            )
        try:
            part = part_from_payload(first)
        except ValueError as e:
            return ProviderError(status=502, detail=f"Invalid response format from Gemini: {e}")

        # 历史里只记录首个 part，后续 part 不参与分类也不回传
        if len(parts) > 1:
            logger.info("Ignoring extra Gemini parts", extra={"extra": {"ignored": len(parts) - 1}})
        model_turn = Turn(role="model", parts=[part])
        if isinstance(part, CapabilityCallPart):
            logger.info("Gemini requested a capability call", extra={"extra": {"capability": part.name}})
            return CapabilityRequest(name=part.name, arguments=dict(part.arguments), model_turn=model_turn)
        if isinstance(part, TextPart):
            return FinalAnswer(text=part.text, model_turn=model_turn)
        return ProviderError(
            status=502,
            detail="Invalid response format from Gemini: candidate has neither text nor functionCall.",
        )

    @staticmethod
    def _serialize_declaration(decl: CapabilityDeclaration) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        for name, param in decl.params.items():
            properties[name] = {
                "type": param.type.upper(),
                "description": param.description,
            }
        schema: Dict[str, Any] = {"type": "OBJECT", "properties": properties}
        required = decl.required_params
        if required:
            schema["required"] = required
        out: Dict[str, Any] = {"name": decl.name, "description": decl.description}
        if properties:
            out["parameters"] = schema
        return out
