"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

分类约定：
- 单个顾问 / 单个评分维度内部的错误会被就地吸收并降级（兜底内容或中性分数）。
- 限流 / 额度耗尽这类会影响整体正确性的错误需要上抛给调用方，由其向用户提示。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、participant_id 等）。
    """

    #: 需要直接展示给终端用户的提示语；为 None 表示无需特殊提示。
    user_message: Optional[str] = None

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接中断、读取失败等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx 错误时抛出。"""


class TransientGatewayError(ApiError):
    """网关暂时不可用（5xx、连接超时等），可由 RetryPolicy 重试。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，不自动重试，直接上抛给调用方。"""

    user_message = "Rate limit exceeded. Please try again in a moment."


class QuotaExceededError(BusinessError):
    """额度耗尽，终止性错误，不重试。"""

    user_message = "AI credits depleted. Please add credits to continue."


class MalformedResponseError(BusinessError):
    """模型返回内容无法解析（流式帧或评分 JSON）。"""


class ParticipantError(BusinessError):
    """单个顾问轮次失败，仅影响该顾问，本轮调度继续。

    原始异常保存在 ``cause`` 中。
    """

    def __init__(self, participant_id: str, cause: BaseException, **extra):
        self.participant_id = participant_id
        self.cause = cause
        code = getattr(cause, "code", None) or "PARTICIPANT_ERROR"
        super().__init__(
            code="PARTICIPANT_ERROR",
            message=f"{participant_id}: {cause}",
            cause_code=code,
            participant_id=participant_id,
            **extra,
        )


class NetworkAborted(BusinessError):
    """用户主动取消导致的中断；不视为错误，只用于标记。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ConversationStateError(BusinessError):
    """违反会话日志不变量，例如修改已定稿消息。"""

    def __init__(self, code: str, message: str, **extra):
        super().__init__(code=code, message=message, http_status=409, **extra)
