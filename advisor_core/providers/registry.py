"""Provider 与模型配置。

本模块将“逻辑模型名”与“网关模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "advisor-chat"、"evaluator"。
- provider_model：网关实际路由到的模型 ID，例如 "google/gemini-2.5-flash"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: Optional[int]
    default_temperature: Optional[float]


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def model(self, logical_name: str) -> ModelConfig:
        """按逻辑名取模型配置；未登记的名称原样透传给网关。"""

        cfg = self.models.get(logical_name)
        if cfg is not None:
            return cfg
        return ModelConfig(
            logical_name=logical_name,
            provider_model=logical_name,
            max_tokens=None,
            default_temperature=None,
        )


# OpenAI 兼容的 AI 网关（顾问对话与评分共用 gemini-2.5-flash）
GATEWAY_CONFIG = ProviderConfig(
    name="gateway",
    base_url="https://ai.gateway.lovable.dev/v1",
    models={
        "advisor-chat": ModelConfig(
            logical_name="advisor-chat",
            provider_model="google/gemini-2.5-flash",
            max_tokens=None,
            default_temperature=0.8,
        ),
        "evaluator": ModelConfig(
            logical_name="evaluator",
            provider_model="google/gemini-2.5-flash",
            max_tokens=None,
            default_temperature=0.3,
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gateway": GATEWAY_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
