import asyncio
import json
from typing import Any, Dict, List

import pytest

from advisor_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult


def sse_body(*contents: str, done: bool = True) -> bytes:
    """把若干文本增量编码成网关的流式响应体。"""

    out = []
    for text in contents:
        frame = {"choices": [{"index": 0, "delta": {"content": text}}]}
        out.append(f"data: {json.dumps(frame, ensure_ascii=False)}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


class FakeStream:
    def __init__(self, chunks, error: BaseException = None, hang: bool = False):
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.closed = False
        self.close_calls = 0

    async def aiter_bytes(self):
        for chunk in self.chunks:
            if self.closed:
                return
            yield chunk
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self):
        self.close_calls += 1
        self.closed = True


class FakeProvider:
    """按 participant_id / criterion_key 分派预置响应的 Provider 替身。"""

    name = "fake"

    def __init__(self):
        self.streams: Dict[str, List[Any]] = {}
        self.completions: Dict[str, Any] = {}
        self.requests: List[ChatRequest] = []

    async def open_stream(self, req: ChatRequest):
        self.requests.append(req)
        pending = self.streams[req.meta["participant_id"]]
        item = pending.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def complete(self, req: ChatRequest) -> ChatResult:
        self.requests.append(req)
        item = self.completions[req.meta["criterion_key"]]
        if callable(item):
            item = await item()
        if isinstance(item, BaseException):
            raise item
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=item))],
        )


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sse():
    return sse_body


@pytest.fixture
def make_stream():
    return FakeStream
