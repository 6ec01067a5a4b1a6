"""会话与消息模型，以及只追加的会话日志。

ConversationLog 保证：
- 消息按追加顺序全序排列；
- 任意时刻至多一条 is_final=False 的消息（正在流式生成的尾部消息）；
- 未定稿消息的 content 只能前缀扩展，定稿后不可再修改。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from .exceptions import ConversationStateError, ValidationError


MessageRole = Literal["user", "agent"]


@dataclass
class Message:
    id: str
    role: MessageRole
    content: str
    is_final: bool
    created_at: datetime
    participant_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


class ConversationLog:
    """只追加的消息日志，至多一条可变的尾部消息。"""

    def __init__(self, messages: Sequence[Message] = ()):
        self._messages: List[Message] = []
        self._index: Dict[str, Message] = {}
        self._in_flight: Optional[Message] = None
        for message in messages:
            self.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def in_flight(self) -> Optional[Message]:
        """当前正在流式生成的消息，没有则为 None。"""

        return self._in_flight

    def append(self, message: Message) -> Message:
        if message.id in self._index:
            raise ConversationStateError(code="DUPLICATE_MESSAGE", message=message.id)
        if not message.is_final and self._in_flight is not None:
            raise ConversationStateError(
                code="TAIL_IN_FLIGHT",
                message=f"message {self._in_flight.id} is still streaming",
            )
        self._messages.append(message)
        self._index[message.id] = message
        if not message.is_final:
            self._in_flight = message
        return message

    def open_tail(
        self,
        role: MessageRole,
        participant_id: Optional[str] = None,
        content: str = "",
        meta: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """追加一条未定稿消息，作为新的流式尾部。"""

        return self.append(
            Message(
                id=new_message_id(),
                role=role,
                content=content,
                is_final=False,
                created_at=datetime.now(timezone.utc),
                participant_id=participant_id,
                meta=dict(meta or {}),
            )
        )

    def append_final(
        self,
        role: MessageRole,
        content: str,
        participant_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Message:
        return self.append(
            Message(
                id=new_message_id(),
                role=role,
                content=content,
                is_final=True,
                created_at=datetime.now(timezone.utc),
                participant_id=participant_id,
                meta=dict(meta or {}),
            )
        )

    def get(self, message_id: str) -> Message:
        try:
            return self._index[message_id]
        except KeyError:
            raise ConversationStateError(code="MESSAGE_NOT_FOUND", message=message_id) from None

    def append_delta(self, message_id: str, text: str) -> str:
        """向未定稿消息追加增量，返回追加后的完整内容。"""

        message = self._mutable(message_id)
        message.content += text
        return message.content

    def finalize(self, message_id: str, content: Optional[str] = None) -> Message:
        """定稿消息；content 若给出必须是当前内容的前缀扩展。"""

        message = self._mutable(message_id)
        if content is not None:
            if not content.startswith(message.content):
                raise ConversationStateError(
                    code="NON_MONOTONIC_CONTENT",
                    message=f"final content of {message_id} does not extend its partial content",
                )
            message.content = content
        message.is_final = True
        self._in_flight = None
        return message

    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def finalized(self) -> List[Message]:
        return [m for m in self._messages if m.is_final]

    def _mutable(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message.is_final:
            raise ConversationStateError(
                code="MESSAGE_FINALIZED",
                message=f"message {message_id} is final and cannot be modified",
            )
        return message


@dataclass
class Conversation:
    id: str
    participant_order: List[str]
    log: ConversationLog = field(default_factory=ConversationLog)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, participant_order: Sequence[str], **meta: Any) -> "Conversation":
        order = list(participant_order)
        if not order:
            raise ValidationError(code="NO_PARTICIPANTS", message="participant_order is empty")
        if len(set(order)) != len(order):
            raise ValidationError(code="DUPLICATE_PARTICIPANT", message=f"duplicate participants in {order}")
        return cls(id=f"c-{uuid4().hex}", participant_order=order, meta=dict(meta))

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.log.messages()


class MessageCache(Protocol):
    """本地持久缓存：按 (conversation_id, participant_id) 保存已定稿消息列表。

    超过 TTL（自最后一次保存起算）的条目在下一次读取时视为过期并丢弃。
    """

    def get(self, conversation_id: str, participant_id: str) -> Optional[List[Message]]:
        ...

    def set(self, conversation_id: str, participant_id: str, messages: Sequence[Message]) -> None:
        ...

    def expire(self, conversation_id: str, participant_id: str) -> None:
        ...
