"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
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
    explicit = os.getenv("ADVISOR_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
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


class Settings(BaseSettings):
    """编排子系统配置。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(default="gateway", description="默认 Provider 名称")
    advisor_model: str = Field(
        default="advisor-chat",
        description="顾问对话使用的逻辑模型名，由 registry 映射为具体模型",
    )
    evaluator_model: str = Field(default="evaluator", description="评分使用的逻辑模型名")
    gateway_api_key: Optional[str] = Field(default=None, description="AI 网关 API 密钥")
    gateway_base_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1",
        description="AI 网关基础URL",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 重试 ----
    retry_max_attempts: int = Field(default=3, ge=1, le=10, description="瞬时错误最大尝试次数")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="重试基础等待（秒）")
    retry_max_delay: float = Field(default=30.0, ge=0.0, description="单次重试等待上限（秒）")
    retry_strategy: Literal["linear", "exponential"] = Field(default="linear")

    # ---- 调度 / 评分 ----
    inter_turn_pause: float = Field(default=0.5, ge=0.0, description="顾问轮次之间的停顿（秒）")
    evaluation_timeout: float = Field(default=60.0, ge=1.0, description="单个评分请求超时（秒）")
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")
    max_pending_frame_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="流式解码器允许缓冲的未完成行上限（字节）",
    )

    # ---- 存储 / 日志 ----
    cache_ttl_hours: float = Field(default=24.0, gt=0, description="本地消息缓存有效期（小时）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gateway_api_key")
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


settings = Settings()
