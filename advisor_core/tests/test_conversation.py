from datetime import datetime, timezone

import pytest

from advisor_core.domain.conversation import Conversation, ConversationLog, Message
from advisor_core.domain.exceptions import ConversationStateError, ValidationError


def test_log_orders_and_finalizes():
    log = ConversationLog()
    user = log.append_final("user", "hello")
    tail = log.open_tail("agent", participant_id="prisma")
    assert log.in_flight is tail
    log.append_delta(tail.id, "Hi")
    log.append_delta(tail.id, " there")
    log.finalize(tail.id)
    assert log.in_flight is None
    assert [m.id for m in log.messages()] == [user.id, tail.id]
    assert [m.content for m in log.finalized()] == ["hello", "Hi there"]


def test_log_rejects_second_tail():
    log = ConversationLog()
    log.open_tail("agent", participant_id="prisma")
    with pytest.raises(ConversationStateError) as exc:
        log.open_tail("agent", participant_id="toxic")
    assert exc.value.code == "TAIL_IN_FLIGHT"
    assert exc.value.http_status == 409


def test_log_final_messages_are_immutable():
    log = ConversationLog()
    msg = log.append_final("agent", "fixed", participant_id="prisma")
    with pytest.raises(ConversationStateError) as exc:
        log.append_delta(msg.id, "more")
    assert exc.value.code == "MESSAGE_FINALIZED"
    with pytest.raises(ConversationStateError):
        log.finalize(msg.id)


def test_log_finalize_requires_prefix_extension():
    log = ConversationLog()
    tail = log.open_tail("agent", participant_id="prisma", content="Based on")
    with pytest.raises(ConversationStateError) as exc:
        log.finalize(tail.id, "Something else")
    assert exc.value.code == "NON_MONOTONIC_CONTENT"
    log.finalize(tail.id, "Based on your data")
    assert log.get(tail.id).content == "Based on your data"


def test_log_rejects_duplicates_and_unknown_ids():
    msg = Message(id="m-1", role="user", content="x", is_final=True, created_at=datetime.now(timezone.utc))
    log = ConversationLog([msg])
    with pytest.raises(ConversationStateError) as exc:
        log.append(msg)
    assert exc.value.code == "DUPLICATE_MESSAGE"
    with pytest.raises(ConversationStateError) as exc:
        log.get("m-missing")
    assert exc.value.code == "MESSAGE_NOT_FOUND"


def test_log_snapshots_do_not_leak():
    log = ConversationLog()
    log.append_final("user", "a")
    snapshot = log.messages()
    log.append_final("user", "b")
    assert len(snapshot) == 1
    assert len(log) == 2


def test_conversation_create_validates_participants():
    conv = Conversation.create(["prisma", "toxic"], deck_id="d1")
    assert conv.id.startswith("c-")
    assert conv.participant_order == ["prisma", "toxic"]
    assert conv.meta == {"deck_id": "d1"}
    with pytest.raises(ValidationError):
        Conversation.create([])
    with pytest.raises(ValidationError):
        Conversation.create(["prisma", "prisma"])
