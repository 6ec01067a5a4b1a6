import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from advisor_core.domain.conversation import ConversationLog
from advisor_core.domain.exceptions import BusinessError, ValidationError
from advisor_core.infrastructure.storage.json_store import JsonMessageCache
from advisor_core.infrastructure.storage.memory_store import MemoryMessageCache


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _history():
    log = ConversationLog()
    log.append_final("user", "hello")
    log.append_final("agent", "Привет!", participant_id="prisma", meta={"trace_id": "tr-1"})
    return log.finalized()


def test_json_cache_roundtrip_and_ttl():
    with tempfile.TemporaryDirectory() as d:
        clock = Clock()
        cache = JsonMessageCache(root=Path(d) / ".storage", ttl=timedelta(hours=24), clock=clock)
        history = _history()
        cache.set("c-1", "prisma", history)

        clock.now += timedelta(hours=23)
        restored = cache.get("c-1", "prisma")
        assert [(m.id, m.role, m.content, m.participant_id) for m in restored] == [
            (m.id, m.role, m.content, m.participant_id) for m in history
        ]
        assert restored[1].meta == {"trace_id": "tr-1"}
        assert all(m.is_final for m in restored)

        clock.now += timedelta(hours=2)
        assert cache.get("c-1", "prisma") is None
        assert not (Path(d) / ".storage" / "message_cache" / "c-1" / "prisma.json").exists()


def test_json_cache_ttl_counts_from_last_save():
    with tempfile.TemporaryDirectory() as d:
        clock = Clock()
        cache = JsonMessageCache(root=d, ttl=timedelta(hours=24), clock=clock)
        cache.set("c-1", "prisma", _history())
        clock.now += timedelta(hours=20)
        cache.set("c-1", "prisma", _history())
        clock.now += timedelta(hours=20)
        assert cache.get("c-1", "prisma") is not None


def test_json_cache_missing_and_expire():
    with tempfile.TemporaryDirectory() as d:
        cache = JsonMessageCache(root=d)
        assert cache.get("c-1", "toxic") is None
        cache.set("c-1", "toxic", _history())
        cache.expire("c-1", "toxic")
        cache.expire("c-1", "toxic")
        assert cache.get("c-1", "toxic") is None


def test_json_cache_rejects_streaming_messages_and_bad_keys():
    with tempfile.TemporaryDirectory() as d:
        cache = JsonMessageCache(root=d)
        log = ConversationLog()
        log.open_tail("agent", participant_id="prisma", content="partial")
        with pytest.raises(ValidationError) as exc:
            cache.set("c-1", "prisma", log.messages())
        assert exc.value.code == "MESSAGE_NOT_FINAL"
        with pytest.raises(ValidationError):
            cache.get("../etc", "prisma")


def test_json_cache_corrupt_file_is_a_read_error():
    with tempfile.TemporaryDirectory() as d:
        cache = JsonMessageCache(root=d)
        path = Path(d).resolve() / "message_cache" / "c-1" / "prisma.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(BusinessError) as exc:
            cache.get("c-1", "prisma")
        assert exc.value.code == "STORE_READ_ERROR"


def test_memory_cache_ttl_and_isolation():
    clock = Clock()
    cache = MemoryMessageCache(ttl=timedelta(hours=1), clock=clock)
    history = _history()
    cache.set("c-1", "prisma", history)
    restored = cache.get("c-1", "prisma")
    restored[0].content = "changed"
    assert cache.get("c-1", "prisma")[0].content == "hello"
    clock.now += timedelta(hours=1, seconds=1)
    assert cache.get("c-1", "prisma") is None
