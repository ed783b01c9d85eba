"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
所有模块都应通过 ``from gemini_relay.config.settings import settings`` 读取配置，
测试中可以用任意带同名属性的桩对象替换。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class RelaySettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- LLM Provider ----
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    default_model: str = Field(
        default="chat",
        description="逻辑模型名，由 registry 映射为具体的 Gemini 模型",
    )
    system_instruction: str = Field(default="", description="可选的系统指令，为空则不发送")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 会话历史 ----
    history_backend: Literal["memory", "json", "redis"] = Field(
        default="memory",
        description="会话历史的存储后端",
    )
    storage_root: str = Field(default=".storage", description="json 后端的存储根目录")
    redis_url: Optional[str] = Field(default=None, description="redis 后端连接串")
    history_key_prefix: str = Field(default="chat:", description="历史记录的 key 前缀")
    history_ttl_seconds: Optional[int] = Field(default=None, ge=1, description="历史记录过期时间")
    serialize_conversations: bool = Field(
        default=True,
        description="同一会话 id 的多次交换是否串行执行",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- Telegram ----
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram Bot Token")
    telegram_api_base: str = Field(default="https://api.telegram.org", description="Bot API 地址")
    telegram_webhook_path: str = Field(default="/telegram-webhook", description="Webhook 路由")
    public_url: Optional[str] = Field(
        default=None,
        description="对外可访问的基础 URL，设置后启动时自动注册 webhook",
    )

    # ---- 能力（工具）----
    weather_base_url: str = Field(default="https://wttr.in", description="天气服务地址")
    google_search_api_key: Optional[str] = Field(default=None, description="Google 搜索 API 密钥")
    google_search_engine_id: Optional[str] = Field(default=None, description="Google 搜索引擎 ID")
    search_base_url: str = Field(
        default="https://www.googleapis.com/customsearch/v1",
        description="搜索服务地址",
    )
    search_max_results: int = Field(default=5, ge=1, le=10, description="单次搜索返回条数")
    cloudinary_cloud_name: Optional[str] = Field(default=None, description="Cloudinary cloud name")
    cloudinary_api_key: Optional[str] = Field(default=None, description="Cloudinary API key")
    cloudinary_api_secret: Optional[str] = Field(default=None, description="Cloudinary API secret")
    cloudinary_default_folder: str = Field(default="gemini-uploads", description="默认上传目录")

    # ---- HTTP 服务 ----
    host: str = Field(default="0.0.0.0", description="监听地址")
    port: int = Field(default=3000, description="监听端口")
    static_dir: str = Field(default="public", description="静态文件目录，不存在则不挂载")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key", "telegram_bot_token", "google_search_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = RelaySettings()
