"""进程内消息缓存，主要用于测试与无需落盘的场景。"""

import copy
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Message, MessageCache
from advisor_core.infrastructure.storage.json_store import utcnow, ensure_storable


class MemoryMessageCache(MessageCache):
    def __init__(self, ttl: Optional[timedelta] = None, clock: Optional[Callable[[], datetime]] = None):
        self._ttl = ttl or timedelta(hours=settings.cache_ttl_hours)
        self._clock = clock or utcnow
        self._entries: Dict[Tuple[str, str], Tuple[datetime, List[Message]]] = {}

    def get(self, conversation_id: str, participant_id: str) -> Optional[List[Message]]:
        entry = self._entries.get((conversation_id, participant_id))
        if entry is None:
            return None
        saved_at, messages = entry
        if self._clock() - saved_at > self._ttl:
            self.expire(conversation_id, participant_id)
            return None
        return copy.deepcopy(messages)

    def set(self, conversation_id: str, participant_id: str, messages: Sequence[Message]) -> None:
        ensure_storable(messages)
        self._entries[(conversation_id, participant_id)] = (self._clock(), copy.deepcopy(list(messages)))

    def expire(self, conversation_id: str, participant_id: str) -> None:
        self._entries.pop((conversation_id, participant_id), None)
