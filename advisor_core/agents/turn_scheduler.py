"""多顾问轮次调度器。

同一会话中多个顾问按 participant_order 依次发言，任意时刻只有一个顾问在流式输出：

    IDLE -> DISPATCHING -> STREAMING -> FINALIZING -> DISPATCHING(下一位) ... -> IDLE

每个轮次：
1. 以全部已定稿消息（含本轮前面顾问的回复）构造 ModelInvocation；
2. 通过 RetryPolicy 打开流式响应；
3. 字节块 -> StreamFrameDecoder -> DeltaAccumulator -> ConversationLog；
4. 哨兵 / 自然结束 / 出错 / 取消 任一发生即定稿该消息。

run_round 是异步生成器，逐个产出 TurnEvent，调用方可据此实时刷新界面。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Literal, Optional, Sequence
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Conversation, Message
from advisor_core.domain.exceptions import (
    BusinessError,
    ConversationStateError,
    MalformedResponseError,
    NetworkAborted,
    ParticipantError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
)
from advisor_core.domain.models import ChatRequest, ModelInvocation, PriorMessage
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.prompts import EXPAND_PROMPT, EXPANSION_SEPARATOR, build_advisor_request, display_name
from advisor_core.providers.base import ChatStream, ProviderClient
from advisor_core.providers.retry import RetryPolicy
from advisor_core.streaming import DeltaAccumulator, StreamFrameDecoder

APOLOGY = "Sorry, I encountered an error. Please try again."

TurnEventKind = Literal["turn_start", "delta", "final", "error", "cancelled"]


class SchedulerState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    FINALIZING = "finalizing"


@dataclass
class TurnEvent:
    kind: TurnEventKind
    participant_id: Optional[str] = None
    message_id: Optional[str] = None
    delta: str = ""
    content: str = ""
    error: Optional[BusinessError] = None


@dataclass
class _ActiveRound:
    """某个会话当前轮次的运行状态；轮次结束即丢弃。"""

    state: SchedulerState = SchedulerState.DISPATCHING
    cancel: asyncio.Event = field(default_factory=asyncio.Event)


class TurnScheduler:
    """顺序调度多个顾问的流式回复，保证单写者。"""

    def __init__(
        self,
        provider: ProviderClient,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        inter_turn_pause: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_context_messages: Optional[int] = None,
    ):
        self._provider = provider
        self._model = model or settings.advisor_model
        self._retry = retry_policy or RetryPolicy()
        self._pause = settings.inter_turn_pause if inter_turn_pause is None else inter_turn_pause
        self._sleep = sleep
        self._max_context = max_context_messages or settings.max_context_messages
        # 按会话 ID 记录进行中的轮次，不同会话的轮次可以并发
        self._rounds: Dict[str, _ActiveRound] = {}

    @property
    def state(self) -> SchedulerState:
        """最近开始的那一轮的状态；没有进行中的轮次时为 IDLE。"""

        if not self._rounds:
            return SchedulerState.IDLE
        return next(reversed(self._rounds.values())).state

    def state_of(self, conversation_id: str) -> SchedulerState:
        active = self._rounds.get(conversation_id)
        return active.state if active is not None else SchedulerState.IDLE

    def cancel(self, conversation_id: Optional[str] = None) -> None:
        """请求取消轮次；打开连接、重试等待、分块读取与停顿都会被立即打断。

        指定 conversation_id 时只取消该会话，否则取消全部进行中的轮次。空闲时无效果。
        """

        if conversation_id is None:
            targets = list(self._rounds.values())
        else:
            active = self._rounds.get(conversation_id)
            targets = [active] if active is not None else []
        for active in targets:
            active.cancel.set()

    # ---- 对外入口 ----

    async def run_round(
        self,
        conversation: Conversation,
        user_input: str,
        participants: Optional[Sequence[str]] = None,
        subject_context: str = "",
    ) -> AsyncIterator[TurnEvent]:
        """追加用户消息，然后让各顾问依次回复。

        Raises:
            ValidationError: 输入为空或参与者不在会话中。
            ConversationStateError: 已有轮次在进行中。
            RateLimitError / QuotaExceededError: 会话级错误，当前消息定稿后上抛。
        """

        if not user_input or not user_input.strip():
            raise ValidationError(code="EMPTY_INPUT", message="user_input is empty")
        order = self._resolve_participants(conversation, participants)
        active = self._begin(conversation)

        log_ctx = {"trace_id": f"tr-{uuid4().hex}", "conversation_id": conversation.id}
        try:
            conversation.log.append_final("user", user_input)
            self._log(logging.INFO, "Round started", log_ctx, participants=order)

            queue: "asyncio.Queue[str]" = asyncio.Queue()
            for pid in order:
                queue.put_nowait(pid)

            first = True
            while not queue.empty():
                pid = queue.get_nowait()
                if not first and self._pause > 0:
                    try:
                        await self._race(self._sleep(self._pause), active)
                    except NetworkAborted:
                        pass
                first = False
                if active.cancel.is_set():
                    self._log(logging.INFO, "Round cancelled between turns", log_ctx, next_participant=pid)
                    yield TurnEvent(kind="cancelled", participant_id=pid)
                    break
                invocation = self._build_invocation(conversation, pid, order, subject_context)
                last: Optional[TurnEvent] = None
                turn = self._run_turn(conversation, invocation, active, log_ctx)
                try:
                    async for event in turn:
                        last = event
                        yield event
                finally:
                    await turn.aclose()
                if last is not None and last.kind == "cancelled":
                    break
            self._log(logging.INFO, "Round finished", log_ctx)
        finally:
            self._end(conversation)

    async def expand(
        self,
        conversation: Conversation,
        message_id: str,
        subject_context: str = "",
    ) -> AsyncIterator[TurnEvent]:
        """让某条已定稿顾问消息的作者给出更详细的展开说明。

        新消息以原文加分隔线开头并继续增长，原消息保持不变。
        """

        original = conversation.log.get(message_id)
        if original.role != "agent" or not original.is_final or not original.participant_id:
            raise ValidationError(
                code="NOT_EXPANDABLE",
                message=f"message {message_id} is not a finalized advisor message",
            )
        active = self._begin(conversation)

        log_ctx = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conversation.id,
            "expanded_from": message_id,
        }
        try:
            invocation = ModelInvocation(
                participant_id=original.participant_id,
                other_participant_ids=[],
                prior_messages=[
                    PriorMessage(role="assistant", content=original.content),
                    PriorMessage(role="user", content=EXPAND_PROMPT),
                ],
                subject_context=subject_context,
                response_mode="detailed",
            )
            turn = self._run_turn(
                conversation,
                invocation,
                active,
                log_ctx,
                seed=original.content + EXPANSION_SEPARATOR,
                meta={"expanded_from": message_id},
            )
            try:
                async for event in turn:
                    yield event
            finally:
                await turn.aclose()
        finally:
            self._end(conversation)

    async def collect_round(
        self,
        conversation: Conversation,
        user_input: str,
        participants: Optional[Sequence[str]] = None,
        subject_context: str = "",
    ) -> List[Message]:
        """跑完一整轮并返回本轮产生的顾问消息（均已定稿）。"""

        message_ids: List[str] = []
        async for event in self.run_round(conversation, user_input, participants, subject_context):
            if event.kind == "turn_start" and event.message_id:
                message_ids.append(event.message_id)
        return [conversation.log.get(mid) for mid in message_ids]

    # ---- 单个轮次 ----

    async def _run_turn(
        self,
        conversation: Conversation,
        invocation: ModelInvocation,
        active: _ActiveRound,
        log_ctx: Dict[str, Any],
        seed: str = "",
        meta: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[TurnEvent]:
        log = conversation.log
        pid = invocation.participant_id
        active.state = SchedulerState.DISPATCHING
        message = log.open_tail("agent", participant_id=pid, content=seed, meta=meta)
        turn_ctx = {**log_ctx, "participant_id": pid, "message_id": message.id}
        yield TurnEvent(kind="turn_start", participant_id=pid, message_id=message.id, content=message.content)

        accumulator = DeltaAccumulator(log, message.id)
        decoder = StreamFrameDecoder()
        req = build_advisor_request(invocation, self._model, provider=self._provider.name)
        stream: Optional[ChatStream] = None
        try:
            stream = await self._open_stream(req, active, turn_ctx)
            active.state = SchedulerState.STREAMING
            self._log(logging.INFO, "Turn streaming", turn_ctx)

            chunks = stream.aiter_bytes().__aiter__()
            ended = False
            while not ended:
                chunk = await self._next_chunk(chunks, active)
                if chunk is None:
                    break
                oversized: Optional[MalformedResponseError] = None
                try:
                    frames = decoder.feed(chunk)
                except MalformedResponseError as exc:
                    frames = exc.extra.get("frames", [])
                    oversized = exc
                for frame in frames:
                    # 取消后同一分块里剩余的帧不再应用
                    self._raise_if_cancelled(active)
                    if frame.is_sentinel_end:
                        ended = True
                        break
                    delta = accumulator.apply(frame.payload)
                    if delta:
                        yield TurnEvent(
                            kind="delta",
                            participant_id=pid,
                            message_id=message.id,
                            delta=delta,
                            content=message.content,
                        )
                if oversized is not None:
                    raise oversized
            if not ended:
                try:
                    frames = decoder.finish()
                except MalformedResponseError as exc:
                    frames = exc.extra.get("frames", [])
                    message.meta["warning"] = exc.code
                    self._log(logging.WARNING, "Stream ended with malformed trailing data", turn_ctx, code=exc.code)
                for frame in frames:
                    self._raise_if_cancelled(active)
                    if frame.is_sentinel_end:
                        break
                    delta = accumulator.apply(frame.payload)
                    if delta:
                        yield TurnEvent(
                            kind="delta",
                            participant_id=pid,
                            message_id=message.id,
                            delta=delta,
                            content=message.content,
                        )
        except NetworkAborted:
            await self._close(stream)
            stream = None
            active.state = SchedulerState.FINALIZING
            log.finalize(message.id)
            message.meta["cancelled"] = True
            self._log(logging.INFO, "Turn cancelled", turn_ctx, length=len(message.content))
            yield TurnEvent(kind="cancelled", participant_id=pid, message_id=message.id, content=message.content)
            return
        except (RateLimitError, QuotaExceededError) as exc:
            await self._close(stream)
            stream = None
            self._finalize_failed(log, message, exc, active)
            self._log(logging.WARNING, "Turn stopped by gateway limit", turn_ctx, code=exc.code)
            yield TurnEvent(
                kind="error",
                participant_id=pid,
                message_id=message.id,
                content=message.content,
                error=exc,
            )
            raise
        except BusinessError as exc:
            await self._close(stream)
            stream = None
            self._finalize_failed(log, message, exc, active)
            self._log(logging.ERROR, "Turn failed", turn_ctx, code=exc.code, error=exc.message)
            yield TurnEvent(
                kind="error",
                participant_id=pid,
                message_id=message.id,
                content=message.content,
                error=ParticipantError(pid, exc),
            )
            return
        except Exception as exc:
            # Provider 抛出的非业务异常同样只影响本顾问
            await self._close(stream)
            stream = None
            error = ParticipantError(pid, exc)
            self._finalize_failed(log, message, error, active)
            self._log(
                logging.ERROR,
                "Turn failed with unexpected error",
                turn_ctx,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            yield TurnEvent(
                kind="error",
                participant_id=pid,
                message_id=message.id,
                content=message.content,
                error=error,
            )
            return
        finally:
            await self._close(stream)

        active.state = SchedulerState.FINALIZING
        log.finalize(message.id)
        self._log(logging.INFO, "Turn finalized", turn_ctx, length=len(message.content))
        yield TurnEvent(kind="final", participant_id=pid, message_id=message.id, content=message.content)

    # ---- 辅助方法 ----

    def _resolve_participants(
        self,
        conversation: Conversation,
        participants: Optional[Sequence[str]],
    ) -> List[str]:
        if participants is None:
            return list(conversation.participant_order)
        order = list(participants)
        if not order:
            raise ValidationError(code="NO_PARTICIPANTS", message="participants is empty")
        unknown = [p for p in order if p not in conversation.participant_order]
        if unknown:
            raise ValidationError(
                code="UNKNOWN_PARTICIPANT",
                message=f"participants {unknown} are not in conversation {conversation.id}",
            )
        if len(set(order)) != len(order):
            raise ValidationError(code="DUPLICATE_PARTICIPANT", message=f"duplicate participants in {order}")
        return order

    def _begin(self, conversation: Conversation) -> _ActiveRound:
        if conversation.id in self._rounds:
            raise ConversationStateError(
                code="ROUND_IN_PROGRESS",
                message=f"a round is already in flight for conversation {conversation.id}",
            )
        if conversation.log.in_flight is not None:
            raise ConversationStateError(
                code="TAIL_IN_FLIGHT",
                message=f"message {conversation.log.in_flight.id} is still streaming",
            )
        active = _ActiveRound()
        self._rounds[conversation.id] = active
        return active

    def _end(self, conversation: Conversation) -> None:
        # 调用方提前停止迭代时，尾部消息按已有内容定稿
        tail = conversation.log.in_flight
        if tail is not None:
            tail.meta["cancelled"] = True
            conversation.log.finalize(tail.id)
        self._rounds.pop(conversation.id, None)

    def _build_invocation(
        self,
        conversation: Conversation,
        participant_id: str,
        order: Sequence[str],
        subject_context: str,
    ) -> ModelInvocation:
        """本顾问自己的历史作为 assistant，其余顾问的发言以 [Name]: 前缀作为 user。"""

        history = [m for m in conversation.log.finalized() if "error" not in m.meta]
        prior: List[PriorMessage] = []
        for m in history[-self._max_context:]:
            if m.role == "user":
                prior.append(PriorMessage(role="user", content=m.content))
            elif m.participant_id == participant_id:
                prior.append(PriorMessage(role="assistant", content=m.content))
            else:
                prior.append(PriorMessage(role="user", content=f"[{display_name(m.participant_id or '')}]: {m.content}"))
        return ModelInvocation(
            participant_id=participant_id,
            other_participant_ids=[p for p in order if p != participant_id],
            prior_messages=prior,
            subject_context=subject_context,
        )

    def _finalize_failed(self, log, message: Message, exc: BusinessError, active: _ActiveRound) -> None:
        active.state = SchedulerState.FINALIZING
        message.meta["error"] = exc.code
        if message.content:
            log.finalize(message.id)
        else:
            log.finalize(message.id, APOLOGY)

    async def _next_chunk(self, chunks: AsyncIterator[bytes], active: _ActiveRound) -> Optional[bytes]:
        """读取下一块字节，与取消信号竞争；流自然结束时返回 None。"""

        async def read() -> Optional[bytes]:
            try:
                return await chunks.__anext__()
            except StopAsyncIteration:
                return None

        return await self._race(read(), active)

    async def _open_stream(
        self,
        req: ChatRequest,
        active: _ActiveRound,
        log_ctx: Dict[str, Any],
    ) -> ChatStream:
        """经 RetryPolicy 打开流；建立连接与重试退避都与取消信号竞争。"""

        task = asyncio.ensure_future(
            self._retry.execute(lambda: self._provider.open_stream(req), log_ctx=log_ctx)
        )
        try:
            return await self._race(task, active)
        except NetworkAborted:
            # 取消与连接建立同时完成时，已打开的流同样要关闭
            if task.done() and not task.cancelled() and task.exception() is None:
                await self._close(task.result())
            raise

    @staticmethod
    def _raise_if_cancelled(active: _ActiveRound) -> None:
        if active.cancel.is_set():
            raise NetworkAborted(code="NETWORK_ABORTED", message="cancelled by caller")

    async def _race(self, aw: Awaitable[Any], active: _ActiveRound) -> Any:
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(active.cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            # 取消优先：同时就绪的迟到字节也不再应用
            self._raise_if_cancelled(active)
            return task.result()
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            elif not task.cancelled():
                # 取回被取消信号抢先的读取异常，避免 asyncio 告警
                task.exception()

    @staticmethod
    async def _close(stream: Optional[ChatStream]) -> None:
        if stream is not None:
            await stream.aclose()

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
