import json
import os
import re
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Message, MessageCache
from advisor_core.domain.exceptions import BusinessError, ValidationError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def ensure_storable(messages: Sequence[Message]) -> None:
    for m in messages:
        if not m.is_final:
            raise ValidationError(
                code="MESSAGE_NOT_FINAL",
                message=f"message {m.id} is still streaming and cannot be cached",
            )


class JsonMessageCache(MessageCache):
    """按 (conversation_id, participant_id) 存一个 JSON 文档，自最后一次保存起 ttl 内有效。"""

    def __init__(
        self,
        root: str | Path | None = None,
        ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._root = Path(root or settings.storage_root).resolve() / "message_cache"
        self._root.mkdir(parents=True, exist_ok=True)
        self._ttl = ttl or timedelta(hours=settings.cache_ttl_hours)
        self._clock = clock or utcnow

    def get(self, conversation_id: str, participant_id: str) -> Optional[List[Message]]:
        path = self._path(conversation_id, participant_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            saved_at = _parse_iso(data["saved_at"])
            raw_messages = data.get("messages") or []
        except Exception as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        if self._clock() - saved_at > self._ttl:
            self.expire(conversation_id, participant_id)
            return None
        try:
            return [self._to_message(item) for item in raw_messages]
        except Exception as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def set(self, conversation_id: str, participant_id: str, messages: Sequence[Message]) -> None:
        ensure_storable(messages)
        path = self._path(conversation_id, participant_id)
        obj = {
            "conversation_id": conversation_id,
            "participant_id": participant_id,
            "saved_at": _iso(self._clock()),
            "messages": [self._to_payload(m) for m in messages],
        }
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except Exception as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def expire(self, conversation_id: str, participant_id: str) -> None:
        path = self._path(conversation_id, participant_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, conversation_id: str, participant_id: str) -> Path:
        for key in (conversation_id, participant_id):
            if not key or not _SAFE_KEY.match(key):
                raise ValidationError(code="INVALID_CACHE_KEY", message=f"invalid cache key {key!r}")
        return self._root / conversation_id / f"{participant_id}.json"

    @staticmethod
    def _to_payload(message: Message) -> Dict[str, Any]:
        payload = asdict(message)
        payload["created_at"] = _iso(message.created_at)
        return payload

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            role=data["role"],
            content=data.get("content") or "",
            is_final=True,
            created_at=_parse_iso(data["created_at"]),
            participant_id=data.get("participant_id"),
            meta=data.get("meta") or {},
        )
