"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 HTTP 层或 Telegram 层做统一捕获与用户提示。

注意区分两类错误：
- 抛出的异常：EmptyInputError、ConfigurationError、StoreError 等，交换尚未开始或无法继续。
- 作为值返回的 ExchangeError：模型拒答、Provider 调用失败、能力调用轮数超限，
  由 ConversationLoop 放进 ExchangeResult.error，交给传输层渲染。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "EMPTY_INPUT"）。
        message: 用户可读错误信息，可以直接展示给终端用户。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或请求体校验失败。"""


class EmptyInputError(ValidationError):
    """用户既没有提供文本也没有提供图片，交换不会开始。"""

    def __init__(self, message: str = "Prompt or image must not be empty."):
        super().__init__(code="EMPTY_INPUT", message=message, http_status=400)


class ConfigurationError(BusinessError):
    """缺少必要配置（如 GEMINI_API_KEY）。"""

    def __init__(self, message: str):
        super().__init__(code="MISSING_CONFIG", message=message, http_status=500)


class StoreError(BusinessError):
    """会话历史读写失败。"""


class CapabilityError(BusinessError):
    """能力内部的可预期故障（上游查询失败等）。

    只在能力实现内部抛出，CapabilityRegistry 会把它转换成 {"error": ...} 结果，
    不会传播到 ConversationLoop 之外。
    """

    def __init__(self, message: str, **extra):
        super().__init__(code="CAPABILITY_ERROR", message=message, http_status=502, **extra)


class TelegramError(BusinessError):
    """Telegram Bot API 调用失败。"""


class ExchangeError(BusinessError):
    """一次交换的终止性失败，作为 ExchangeResult.error 返回。"""


class BlockedError(ExchangeError):
    """Provider 出于安全/策略原因拒绝回答。"""

    def __init__(self, reason: str):
        super().__init__(
            code="BLOCKED",
            message=f"Request blocked: {reason}.",
            http_status=400,
            reason=reason,
        )
        self.reason = reason


class ProviderCallError(ExchangeError):
    """Provider 传输失败或返回了结构不合法的响应。"""

    def __init__(self, status: int, detail: str):
        super().__init__(
            code="PROVIDER_ERROR",
            message=f"Gemini API error: {status} - {detail[:200]}",
            http_status=status,
            detail=detail,
        )
        self.status = status
        self.detail = detail


class IterationLimitError(ExchangeError):
    """能力调用链在最大轮数内没有得到最终回答。"""

    def __init__(self, max_turns: int):
        super().__init__(
            code="ITERATION_LIMIT",
            message="Sorry, I could not complete this request: too many capability iterations.",
            http_status=502,
            max_turns=max_turns,
        )
        self.max_turns = max_turns
