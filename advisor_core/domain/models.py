"""统一的请求、结果与流式帧数据模型。

本模块定义了编排子系统在 Provider 与上层组件之间共享的标准数据结构：

- ChatMessage: 一条发给 LLM 的消息（system/user/assistant）。
- ChatRequest: 发给底层 Provider 的完整请求。
- ChatResult: 从 Provider 非流式响应解析后的统一结果。
- ModelInvocation: 一个顾问轮次的调用描述（谁在说、还有谁在场、历史、主题上下文）。
- StreamFrame: 从原始字节流中切分出的一条逻辑事件。

Provider 适配器只依赖这些模型，负责在各自的 API JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

# 顾问回复模式：普通对话 / "展开详细说明"
ResponseMode = Literal["concise", "detailed"]


@dataclass
class ChatMessage:
    """一条对话消息。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Provider 适配层负责把本结构转换成具体 API 的 JSON 请求体。
    meta 中通常带有 participant_id / criterion_key，便于日志与测试替身分派。
    """

    provider: str  # 逻辑 Provider 名，如 "gateway"
    model: str  # 逻辑模型名，如 "advisor-chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    # 评分请求要求模型只返回 JSON 对象
    response_format: Optional[Literal["json_object"]] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前通常只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次非流式调用的最终结果。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def content(self) -> str:
        """第一个候选的文本内容，没有候选时返回空串。"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


@dataclass
class PriorMessage:
    """调用上下文中的一条历史消息。"""

    role: Literal["user", "assistant"]
    content: str


@dataclass
class ModelInvocation:
    """单个顾问轮次发给模型的调用描述。"""

    participant_id: str
    other_participant_ids: List[str]
    prior_messages: List[PriorMessage]
    subject_context: str = ""
    response_mode: ResponseMode = "concise"


@dataclass(frozen=True)
class StreamFrame:
    """流式响应中的一条逻辑事件，仅在解码过程中短暂存在。"""

    raw_line: str
    payload: Optional[Dict[str, Any]] = None
    is_sentinel_end: bool = False
    is_comment: bool = False
