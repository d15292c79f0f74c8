from uuid import uuid4

import pytest

from lifemanager.ai.models import (
    AIMode,
    ChatMessage,
    ChatRole,
    ConversationContext,
    QueryIntent,
    intent_to_dict,
)
from lifemanager.ai.session import AssistantSession, ConversationBusyError, SessionRegistry


def _message(role, content):
    return ChatMessage(role=role, content=content)


def test_append_returns_new_context_and_keeps_old_one() -> None:
    empty = ConversationContext()
    first = empty.append(_message(ChatRole.USER, "hello"))
    second = first.append(_message(ChatRole.ASSISTANT, "hi"))

    assert len(empty) == 0
    assert [m.content for m in first.messages] == ["hello"]
    assert [m.content for m in second.messages] == ["hello", "hi"]
    assert second.session_id == empty.session_id


def test_recent_window_keeps_order_and_skips_system_messages() -> None:
    context = ConversationContext()
    context = context.append(_message(ChatRole.SYSTEM, "system note"))
    for index in range(12):
        role = ChatRole.USER if index % 2 == 0 else ChatRole.ASSISTANT
        context = context.append(_message(role, f"message-{index}"))

    window = context.recent_window(10)

    assert [m.content for m in window] == [f"message-{index}" for index in range(2, 12)]
    assert context.recent_window(0) == ()
    assert len(context) == 13


def test_clear_returns_fresh_empty_context() -> None:
    context = ConversationContext().append(_message(ChatRole.USER, "hello"))

    cleared = context.clear()

    assert len(cleared) == 0
    assert cleared.session_id != context.session_id


def test_user_messages_cannot_carry_an_intent() -> None:
    with pytest.raises(ValueError):
        ChatMessage(role=ChatRole.USER, content="x", intent=QueryIntent())


def test_intent_to_dict_uses_wire_names() -> None:
    assert intent_to_dict(None) is None
    assert intent_to_dict(QueryIntent()) == {"type": "query", "data": {"query_type": "today_expense"}}


def test_session_publishes_every_state_change() -> None:
    session = AssistantSession()
    seen = []
    unsubscribe = session.subscribe(seen.append)

    session.begin_turn()
    session.append(_message(ChatRole.USER, "hello"))
    session.end_turn()
    session.set_mode(AIMode.CHAT)
    unsubscribe()
    session.clear()

    assert [state.is_processing for state in seen] == [True, True, False, False]
    assert len(seen[1].context) == 1
    assert seen[-1].mode == AIMode.CHAT
    assert len(session.context) == 0
    assert session.state.mode == AIMode.CHAT


def test_second_turn_is_rejected_while_processing() -> None:
    session = AssistantSession()
    session.begin_turn()

    with pytest.raises(ConversationBusyError):
        session.begin_turn()

    session.end_turn()
    session.begin_turn()
    assert session.state.is_processing is True


def test_registry_returns_one_session_per_user() -> None:
    registry = SessionRegistry()
    user_id = uuid4()

    assert registry.get(user_id) is registry.get(user_id)
    assert registry.get(user_id) is not registry.get(uuid4())


def test_failing_listener_does_not_wedge_the_session() -> None:
    session = AssistantSession()
    seen = []

    def broken(state):
        raise RuntimeError("listener crashed")

    session.subscribe(broken)
    session.subscribe(seen.append)

    session.begin_turn()
    session.end_turn()

    assert session.state.is_processing is False
    assert [state.is_processing for state in seen] == [True, False]
    session.begin_turn()
    assert session.state.is_processing is True
