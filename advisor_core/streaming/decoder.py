"""流式响应帧解码器。

把任意切分的字节块还原为一条条逻辑事件（StreamFrame），与网络分块边界无关。

内部是一个显式的两字段状态机：

- pending_bytes: 尚未遇到换行符的原始字节；
- pending_line: 已是完整行、但 JSON 解析失败的事件数据，等待后续行补全。

状态转移：

1. feed(chunk) 把字节追加到 pending_bytes，逐条取出完整行（去掉行尾的 \\r）。
2. 若 pending_line 非空，先尝试 ``pending_line + "\\n" + 新行`` 的整体解析：
   成功则产出一帧并清空 pending_line；失败且新行本身是一条新事件时，
   放弃旧的 pending_line（记为 discarded）再按常规处理新行；否则继续累积。
3. 常规处理：空行、注释行（以 ":" 开头）与无法识别的行一律忽略；
   事件行去掉前缀并 trim，等于结束哨兵则产出 is_sentinel_end 帧，
   否则解析 JSON，失败则进入 pending_line。
4. finish() 把剩余字节当作最后一行处理，仍有未解析内容时抛出 MalformedResponseError。
5. 任意一行（无论是否已遇到换行符）超过 max_pending_bytes 都抛出 FRAME_TOO_LARGE，
   与分块边界无关；此前已解出的帧放在异常的 frames 中。
"""

import json
from typing import Any, List, Optional

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import MalformedResponseError
from advisor_core.domain.models import StreamFrame
from advisor_core.infrastructure.logging.logger import logger


DEFAULT_EVENT_PREFIX = "data:"
DEFAULT_SENTINEL = "[DONE]"

_UNPARSED = object()


class StreamFrameDecoder:
    """SSE 风格的增量帧解码器，每个流式响应使用一个实例。"""

    def __init__(
        self,
        event_prefix: str = DEFAULT_EVENT_PREFIX,
        sentinel: str = DEFAULT_SENTINEL,
        max_pending_bytes: Optional[int] = None,
        emit_comments: bool = False,
    ):
        self._prefix = event_prefix
        self._sentinel = sentinel
        self._max_pending = max_pending_bytes or settings.max_pending_frame_bytes
        self._emit_comments = emit_comments
        self._pending_bytes = bytearray()
        self._pending_line: Optional[str] = None
        self.discarded: List[str] = []

    @property
    def pending_bytes(self) -> bytes:
        return bytes(self._pending_bytes)

    @property
    def pending_line(self) -> Optional[str]:
        return self._pending_line

    def feed(self, chunk: bytes) -> List[StreamFrame]:
        frames: List[StreamFrame] = []
        if not chunk:
            return frames
        self._pending_bytes.extend(chunk)
        while True:
            idx = self._pending_bytes.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._pending_bytes[:idx])
            del self._pending_bytes[: idx + 1]
            if len(raw) > self._max_pending:
                self._pending_bytes.clear()
                raise self._too_large(len(raw), frames)
            self._consume_line(self._decode(raw), frames)
        if len(self._pending_bytes) > self._max_pending:
            size = len(self._pending_bytes)
            self._pending_bytes.clear()
            raise self._too_large(size, frames)
        return frames

    def finish(self) -> List[StreamFrame]:
        """流结束时调用：冲刷剩余字节，未能解析的尾部内容以异常形式上报。"""

        frames: List[StreamFrame] = []
        if self._pending_bytes:
            raw = bytes(self._pending_bytes)
            self._pending_bytes.clear()
            self._consume_line(self._decode(raw), frames)
        if self._pending_line is not None:
            trailing = self._pending_line
            self._pending_line = None
            raise MalformedResponseError(
                code="MALFORMED_TRAILING",
                message="stream ended with an unparsable frame",
                trailing=trailing,
                frames=frames,
            )
        return frames

    # ---- 内部状态转移 ----

    def _consume_line(self, line: str, frames: List[StreamFrame]) -> None:
        if self._pending_line is not None:
            candidate = f"{self._pending_line}\n{line}"
            payload = self._try_parse(candidate)
            if payload is not _UNPARSED:
                self._pending_line = None
                self._emit_payload(candidate, payload, frames)
                return
            if not line.startswith(self._prefix):
                self._pending_line = candidate
                if len(candidate.encode("utf-8")) > self._max_pending:
                    self._abandon_pending("pending frame exceeds size limit")
                return
            self._abandon_pending("superseded by a new event")

        if not line.strip():
            return
        if line.startswith(":"):
            if self._emit_comments:
                frames.append(StreamFrame(raw_line=line, is_comment=True))
            return
        if not line.startswith(self._prefix):
            return

        data = line[len(self._prefix):].strip()
        if not data:
            return
        if data == self._sentinel:
            frames.append(StreamFrame(raw_line=line, is_sentinel_end=True))
            return
        payload = self._try_parse(data)
        if payload is _UNPARSED:
            # 分块边界可能落在含换行的 JSON 值内部，等待更多字节
            self._pending_line = data
            return
        self._emit_payload(line, payload, frames)

    def _emit_payload(self, raw_line: str, payload: Any, frames: List[StreamFrame]) -> None:
        if isinstance(payload, dict):
            frames.append(StreamFrame(raw_line=raw_line, payload=payload))
        else:
            logger.debug("Ignored non-object frame", extra={"extra": {"raw": raw_line[:120]}})

    def _too_large(self, size: int, frames: List[StreamFrame]) -> MalformedResponseError:
        # 同一次 feed 中已解出的帧随异常带出，调用方仍可应用
        return MalformedResponseError(
            code="FRAME_TOO_LARGE",
            message=f"line exceeds {self._max_pending} bytes",
            size=size,
            frames=frames,
        )

    def _abandon_pending(self, reason: str) -> None:
        dropped = self._pending_line or ""
        self._pending_line = None
        self.discarded.append(dropped)
        logger.warning(
            "Discarded malformed stream frame",
            extra={"extra": {"reason": reason, "preview": dropped[:120]}},
        )

    @staticmethod
    def _decode(raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode("utf-8", errors="replace")

    @staticmethod
    def _try_parse(data: str) -> Any:
        try:
            # strict=False：允许字符串内出现被拆行的原始换行
            return json.loads(data, strict=False)
        except json.JSONDecodeError:
            return _UNPARSED
