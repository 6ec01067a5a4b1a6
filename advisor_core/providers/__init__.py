"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供网关的具体实现 (gateway_client)。
- 瞬时错误的重试策略 (retry)。
"""

from typing import Literal, Optional

from advisor_core.config.settings import settings
from advisor_core.providers.base import ChatStream, ProviderClient
from advisor_core.providers.gateway_client import GatewayClient
from advisor_core.providers.retry import RetryPolicy


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "gateway")).lower()
    if provider_name == "gateway":
        return GatewayClient(settings)
    raise KeyError(f"Unknown provider: {provider_name!r}")


DefaultProviderName = Literal["gateway"]

__all__ = ["ChatStream", "GatewayClient", "ProviderClient", "RetryPolicy", "create_provider"]
