"""瞬时错误重试策略。

只对 TransientGatewayError（5xx / 网关不可用 / 建连超时）重试；
RateLimitError、QuotaExceededError 以及其他业务错误立即上抛，由调用方向用户提示。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, TypeVar

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import TransientGatewayError, ValidationError
from advisor_core.infrastructure.logging.logger import logger

T = TypeVar("T")

BackoffStrategy = Literal["linear", "exponential"]


def calculate_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    strategy: BackoffStrategy = "linear",
) -> float:
    """第 attempt 次失败（从 1 开始）之后的等待秒数，随 attempt 单调不减。"""

    if attempt < 1:
        return 0.0
    if strategy == "exponential":
        delay = base_delay * (2 ** (attempt - 1))
    else:
        delay = base_delay * attempt
    return min(delay, max_delay)


@dataclass
class RetryPolicy:
    max_attempts: int = field(default_factory=lambda: settings.retry_max_attempts)
    base_delay: float = field(default_factory=lambda: settings.retry_base_delay)
    max_delay: float = field(default_factory=lambda: settings.retry_max_delay)
    strategy: BackoffStrategy = field(default_factory=lambda: settings.retry_strategy)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError(code="INVALID_RETRY_POLICY", message="max_attempts must be >= 1")

    def delay_for(self, attempt: int, base_delay: Optional[float] = None) -> float:
        base = self.base_delay if base_delay is None else base_delay
        return calculate_backoff_delay(attempt, base, self.max_delay, self.strategy)

    async def execute(
        self,
        attempt: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> T:
        """执行一次网络调用，瞬时失败时按退避策略重试。

        Args:
            attempt: 无参协程工厂，每次尝试都会重新调用。
            max_attempts: 覆盖默认最大尝试次数。
            base_delay: 覆盖默认基础等待。
            log_ctx: 写入日志的上下文（trace_id 等）。

        Raises:
            最后一次的 TransientGatewayError，或任何非瞬时错误（立即抛出）。
        """

        limit = max_attempts or self.max_attempts
        ctx = dict(log_ctx or {})
        n = 1
        while True:
            try:
                return await attempt()
            except TransientGatewayError as exc:
                if n >= limit:
                    logger.warning(
                        "Retry attempts exhausted",
                        extra={"extra": {**ctx, "attempts": n, "code": exc.code}},
                    )
                    raise
                delay = self.delay_for(n, base_delay)
                logger.info(
                    "Transient gateway failure, retrying",
                    extra={"extra": {**ctx, "attempt": n, "delay": delay, "code": exc.code}},
                )
                await self.sleep(delay)
                n += 1
