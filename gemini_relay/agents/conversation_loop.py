"""对话循环核心模块。

实现一次“交换”（用户输入 → 最终回答）的状态机：

    AwaitingModel → Final
                  → AwaitingCapability → AwaitingModel
                  → Blocked
                  → ProviderFailed

每轮把完整历史和全部能力声明交给 LLM Gateway；模型请求能力时，
先追加模型 Turn，再追加恰好一个能力结果 Turn（role="user"），然后再次查询。
查询次数上限为 MAX_CAPABILITY_TURNS，超过即以 IterationLimitError 结束。
能力执行严格发生在两次模型调用之间，不与模型调用并发。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4
import logging
import time

from gemini_relay.domain.exceptions import (
    BlockedError,
    ExchangeError,
    IterationLimitError,
    ProviderCallError,
)
from gemini_relay.domain.models import CapabilityCallPart, Turn, UserInput
from gemini_relay.domain.outcomes import Blocked, CapabilityRequest, FinalAnswer, Outcome, ProviderError
from gemini_relay.infrastructure.logging.logger import logger
from gemini_relay.providers.base import LLMGateway
from gemini_relay.tools.definitions import CapabilityContext
from gemini_relay.tools.registry import CapabilityRegistry


MAX_CAPABILITY_TURNS = 5


@dataclass
class ExchangeResult:
    """一次交换的结果。

    - history: 交换结束时的完整历史（成功或终止性失败都会返回，供持久化）。
    - final_text: 成功时模型的最终回答。
    - error: 终止性失败（BlockedError / ProviderCallError / IterationLimitError）。
    - iterations: 实际发起的模型查询次数。
    """

    history: List[Turn]
    final_text: Optional[str] = None
    error: Optional[ExchangeError] = None
    iterations: int = 0
    trace_id: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reply_text(self) -> str:
        """可以直接展示给终端用户的文本。"""
        if self.error is not None:
            return self.error.message
        return self.final_text or ""


@dataclass
class StepResult:
    """单次模型查询（两步式接口）的结果。"""

    outcome: Outcome
    history: List[Turn]


def exchange_error_for(outcome: Outcome) -> ExchangeError:
    """把终止性 Outcome 转为对外的 ExchangeError。"""
    if isinstance(outcome, Blocked):
        return BlockedError(outcome.reason)
    if isinstance(outcome, ProviderError):
        return ProviderCallError(outcome.status, outcome.detail)
    raise TypeError(f"Outcome is not terminal: {outcome!r}")


class ConversationLoop:
    def __init__(
        self,
        gateway: LLMGateway,
        registry: CapabilityRegistry,
        max_turns: int = MAX_CAPABILITY_TURNS,
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._gateway = gateway
        self._registry = registry
        self._max_turns = max_turns

    def converse(
        self,
        history: Sequence[Turn],
        user_input: UserInput,
        conversation_id: Optional[str] = None,
    ) -> ExchangeResult:
        """执行一次完整交换。

        Args:
            history: 之前的会话历史（不会被修改）
            user_input: 新的用户输入，文本和图片都为空时抛出 EmptyInputError
            conversation_id: 会话 id，仅用于日志和能力上下文

        Returns:
            ExchangeResult；终止性失败也以返回值表示，不抛异常
        """
        user_turn = user_input.to_turn()
        start_time = time.time()
        trace_id = f"tr-{uuid4().hex}"
        log_ctx: Dict[str, Any] = {"trace_id": trace_id, "conversation_id": conversation_id}

        working: List[Turn] = list(history)
        working.append(user_turn)
        # 图片只随用户 Turn 发给模型一次，能力通过上下文拿到同一份数据
        context = CapabilityContext(media=user_input.media, conversation_id=conversation_id)
        self._log(logging.INFO, "Exchange started", log_ctx, prior_turns=len(history))

        result: Optional[ExchangeResult] = None
        iterations = 0
        while iterations < self._max_turns:
            iterations += 1
            outcome = self._query(working, log_ctx, iterations)

            if isinstance(outcome, FinalAnswer):
                working.append(self._final_turn_for(outcome))
                result = ExchangeResult(history=working, final_text=outcome.text)
                break
            if isinstance(outcome, CapabilityRequest):
                working.append(self._model_turn_for(outcome))
                working.append(self._run_capability(outcome.name, outcome.arguments, context, log_ctx))
                continue
            if isinstance(outcome, (Blocked, ProviderError)):
                result = ExchangeResult(history=working, error=exchange_error_for(outcome))
                break
            raise TypeError(f"Unhandled gateway outcome: {outcome!r}")

        if result is None:
            self._log(logging.WARNING, "Capability iteration limit reached", log_ctx, max_turns=self._max_turns)
            result = ExchangeResult(history=working, error=IterationLimitError(self._max_turns))

        result.iterations = iterations
        result.trace_id = trace_id
        self._log(
            logging.INFO,
            "Exchange finished",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            iterations=iterations,
            outcome=result.error.code if result.error else "FINAL",
            turns=len(working),
        )
        return result

    # ---- 两步式接口：由客户端驱动循环 ----

    def begin(self, history: Sequence[Turn], user_input: UserInput) -> StepResult:
        """追加用户 Turn 并查询一次模型。"""
        working: List[Turn] = list(history)
        working.append(user_input.to_turn())
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}
        return self._single_step(working, log_ctx)

    def resume(
        self,
        history: Sequence[Turn],
        call: CapabilityCallPart,
        context: Optional[CapabilityContext] = None,
    ) -> StepResult:
        """执行客户端转交回来的能力调用，追加结果后再查询一次模型。

        history 应以请求该能力的模型 Turn 结尾；若客户端没有带上这条 Turn，
        这里补一条只含该调用的模型 Turn，保证调用与结果成对出现。
        """
        working: List[Turn] = list(history)
        last = working[-1] if working else None
        if last is None or last.role != "model" or not any(c.name == call.name for c in last.capability_calls):
            working.append(Turn(role="model", parts=[call]))
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}
        working.append(self._run_capability(call.name, call.arguments, context or CapabilityContext(), log_ctx))
        return self._single_step(working, log_ctx)

    # ---- 辅助方法 ----

    def _single_step(self, working: List[Turn], log_ctx: Dict[str, Any]) -> StepResult:
        outcome = self._query(working, log_ctx, 1)
        if isinstance(outcome, FinalAnswer):
            working.append(self._final_turn_for(outcome))
        elif isinstance(outcome, CapabilityRequest):
            working.append(self._model_turn_for(outcome))
        elif not isinstance(outcome, (Blocked, ProviderError)):
            raise TypeError(f"Unhandled gateway outcome: {outcome!r}")
        return StepResult(outcome=outcome, history=working)

    def _query(self, working: List[Turn], log_ctx: Dict[str, Any], iteration: int) -> Outcome:
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=getattr(self._gateway, "name", "unknown"),
            iteration=iteration,
            turn_count=len(working),
        )
        outcome = self._gateway.query(working, self._registry.list_declarations())
        if isinstance(outcome, (Blocked, ProviderError)):
            self._log(logging.WARNING, "Provider returned a terminal outcome", log_ctx, outcome=repr(outcome))
        return outcome

    @staticmethod
    def _final_turn_for(answer: FinalAnswer) -> Turn:
        # 带能力调用的 Turn 不能作为最终回答写入历史，否则调用没有对应结果
        turn = answer.model_turn
        if turn is None or turn.role != "model" or turn.capability_calls:
            return Turn.model_text(answer.text)
        return turn

    @staticmethod
    def _model_turn_for(request: CapabilityRequest) -> Turn:
        if request.model_turn is not None:
            return request.model_turn
        return Turn(role="model", parts=[CapabilityCallPart(name=request.name, arguments=dict(request.arguments))])

    def _run_capability(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: CapabilityContext,
        log_ctx: Dict[str, Any],
    ) -> Turn:
        self._log(logging.INFO, "Executing capability", log_ctx, capability=name)
        result = self._registry.invoke(name, arguments, context)
        return Turn.capability_result(name, result)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
