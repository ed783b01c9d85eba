"""HTTP 入口（FastAPI）。

路由：
- POST /api/chat                 Web 聊天，历史由客户端携带
- POST /api/generate             单轮纯文本生成
- POST /api/chat/start           两步式：查询一次模型
- POST /api/chat/execute-tool    两步式：执行能力调用后再查询一次
- POST {telegram_webhook_path}   Telegram webhook，立即返回 OK，后台处理
- GET  /healthz

路由函数都是同步函数，由 FastAPI 放到线程池执行。
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from gemini_relay.agents.chat_service import ChatService
from gemini_relay.agents.conversation_loop import ConversationLoop, ExchangeResult, StepResult, exchange_error_for
from gemini_relay.api import service
from gemini_relay.config.settings import settings
from gemini_relay.domain.exceptions import BusinessError, TelegramError, ValidationError
from gemini_relay.domain.models import (
    CapabilityCallPart,
    InlineMediaPart,
    Turn,
    UserInput,
    history_from_payload,
    history_to_payload,
    turn_to_payload,
)
from gemini_relay.domain.outcomes import CapabilityRequest, FinalAnswer
from gemini_relay.infrastructure.logging.logger import logger
from gemini_relay.tools.definitions import CapabilityContext
from gemini_relay.transports.telegram import TelegramClient, TelegramWebhookHandler


class ChatRequest(BaseModel):
    prompt: Optional[str] = None
    message: Optional[str] = None
    history: Optional[List[Dict[str, Any]]] = None
    imageData: Optional[str] = None
    mimeType: Optional[str] = None


class GenerateRequest(BaseModel):
    message: Optional[str] = None


class FunctionCall(BaseModel):
    name: str
    args: Optional[Dict[str, Any]] = None


class ExecuteToolRequest(BaseModel):
    functionCall: FunctionCall
    history: List[Dict[str, Any]]
    imageData: Optional[str] = None
    mimeType: Optional[str] = None


def _parse_history(raw: Optional[List[Dict[str, Any]]]) -> List[Turn]:
    try:
        return history_from_payload(raw)
    except ValueError as e:
        raise ValidationError(code="BAD_HISTORY", message=f"Invalid history: {e}", http_status=400)


def _media_from(image_data: Optional[str], mime_type: Optional[str]) -> Optional[InlineMediaPart]:
    if not image_data:
        return None
    if not mime_type:
        raise ValidationError(code="MISSING_MIME_TYPE", message="mimeType is required with imageData.", http_status=400)
    return InlineMediaPart(mime_type=mime_type, data=image_data)


def _user_input(req: ChatRequest) -> UserInput:
    media = _media_from(req.imageData, req.mimeType)
    return UserInput(text=req.prompt or req.message or None, media=media)


def _render_exchange(result: ExchangeResult) -> JSONResponse:
    history = history_to_payload(result.history)
    if result.error is not None:
        return JSONResponse(
            {"error": result.error.message, "updatedHistory": history},
            status_code=result.error.http_status,
        )
    return JSONResponse({"response": result.final_text, "updatedHistory": history})


def _render_step(step: StepResult) -> JSONResponse:
    history = history_to_payload(step.history)
    outcome = step.outcome
    if isinstance(outcome, FinalAnswer):
        return JSONResponse({"type": "final_response", "response": outcome.text, "updatedHistory": history})
    if isinstance(outcome, CapabilityRequest):
        model_turn = step.history[-1]
        return JSONResponse({
            "type": "tool_use",
            "functionCall": {"name": outcome.name, "args": dict(outcome.arguments)},
            "modelContentForHistory": turn_to_payload(model_turn),
            "updatedHistory": history,
        })
    error = exchange_error_for(outcome)
    return JSONResponse({"error": error.message, "updatedHistory": history}, status_code=error.http_status)


def create_app(
    loop: Optional[ConversationLoop] = None,
    chat_service: Optional[ChatService] = None,
    telegram_handler: Optional[TelegramWebhookHandler] = None,
    cfg=settings,
) -> FastAPI:
    """构建 FastAPI 应用。未注入的组件在首次请求时从 service 模块获取。"""

    def current_loop() -> ConversationLoop:
        return loop or service.get_conversation_loop()

    def current_telegram() -> Optional[TelegramWebhookHandler]:
        if telegram_handler is not None:
            return telegram_handler
        if chat_service is not None and cfg.telegram_bot_token:
            return TelegramWebhookHandler(TelegramClient(cfg.telegram_bot_token, cfg), chat_service)
        return service.get_telegram_handler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if cfg.public_url and cfg.telegram_bot_token:
            webhook_url = f"{str(cfg.public_url).rstrip('/')}{cfg.telegram_webhook_path}"
            try:
                await run_in_threadpool(TelegramClient(cfg.telegram_bot_token, cfg).set_webhook, webhook_url)
            except TelegramError as e:
                logger.error("Failed to set Telegram webhook", extra={"extra": {"url": webhook_url, "error": e.message}})
        yield

    app = FastAPI(title="Gemini Relay", lifespan=lifespan)

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError):
        logger.warning(
            "Request failed",
            extra={"extra": {"path": request.url.path, "code": exc.code, "error": exc.message}},
        )
        return JSONResponse({"error": exc.message}, status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": f"Invalid request body: {exc.errors()}"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled server error", extra={"extra": {"path": request.url.path}})
        return JSONResponse({"error": f"Server error: {exc}"}, status_code=500)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.post("/api/chat")
    def chat(req: ChatRequest):
        history = _parse_history(req.history)
        result = current_loop().converse(history, _user_input(req))
        return _render_exchange(result)

    @app.post("/api/generate")
    def generate(req: GenerateRequest):
        result = current_loop().converse([], UserInput.build(text=req.message))
        if result.error is not None:
            return JSONResponse({"error": result.error.message}, status_code=result.error.http_status)
        return {"response": result.final_text}

    @app.post("/api/chat/start")
    def chat_start(req: ChatRequest):
        history = _parse_history(req.history)
        return _render_step(current_loop().begin(history, _user_input(req)))

    @app.post("/api/chat/execute-tool")
    def chat_execute_tool(req: ExecuteToolRequest):
        history = _parse_history(req.history)
        call = CapabilityCallPart(name=req.functionCall.name, arguments=dict(req.functionCall.args or {}))
        context = CapabilityContext(media=_media_from(req.imageData, req.mimeType))
        return _render_step(current_loop().resume(history, call, context))

    @app.post(cfg.telegram_webhook_path)
    def telegram_webhook(update: Dict[str, Any], background_tasks: BackgroundTasks):
        handler = current_telegram()
        if handler is None:
            return JSONResponse({"error": "Telegram bot is not configured."}, status_code=503)
        background_tasks.add_task(handler.handle_update, update)
        return PlainTextResponse("OK")

    static_dir = Path(cfg.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app
