"""把同一条消息的增量帧累加进会话日志。"""

from typing import Any, Dict, Optional

from advisor_core.domain.conversation import ConversationLog


def extract_delta(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """从 ``{choices: [{delta: {content}}]}`` 中取出文本增量，没有则返回 None。

    只读取 ``choices[0].delta.content``，其余字段（role、usage、finish_reason 等）忽略。
    """

    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class DeltaAccumulator:
    """绑定到一条未定稿消息，只做追加。

    除目标消息引用（日志 + 消息 id）外不持有任何状态。
    """

    def __init__(self, log: ConversationLog, message_id: str):
        self._log = log
        self._message_id = message_id

    @property
    def message_id(self) -> str:
        return self._message_id

    def apply(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        delta = extract_delta(payload)
        if delta is None:
            return None
        self._log.append_delta(self._message_id, delta)
        return delta
