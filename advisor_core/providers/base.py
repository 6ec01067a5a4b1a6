"""Provider 抽象接口。

上层组件（TurnScheduler、EvaluationDispatcher）不直接依赖具体的 HTTP 实现，而是依赖此协议：

- open_stream(req): 发起流式调用，状态码检查通过后返回 ChatStream，调用方自行读取原始字节；
- complete(req): 执行一次非流式调用，返回统一的 ChatResult。

帧切分与增量累加由 streaming 包负责，Provider 只搬运字节。
"""

from typing import AsyncIterator, Protocol

from advisor_core.domain.models import ChatRequest, ChatResult


class ChatStream(Protocol):
    """一个已打开的流式响应体。"""

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        ...

    async def aclose(self) -> None:
        """关闭底层连接；重复调用无副作用。"""

        ...


class ProviderClient(Protocol):
    name: str

    async def open_stream(self, req: ChatRequest) -> ChatStream:
        ...

    async def complete(self, req: ChatRequest) -> ChatResult:
        ...
