from datetime import datetime, timezone

from chat_core.domain.models import Conversation, Message, Role
from chat_core.state.reducer import (
    AddConversation,
    AddMessage,
    ChatState,
    SetConversations,
    SetCurrentConversation,
    SetError,
    SetLoading,
    SetMessages,
    StateContainer,
    SwitchConversation,
    UpdateMessage,
    chat_reducer,
)


NOW = datetime.now(timezone.utc)


def _conv(cid):
    return Conversation(id=cid, model="gpt-4o-mini", user_id="u1", created_at=NOW, updated_at=NOW)


def _msg(mid, role=Role.USER, content="x"):
    return Message(
        id=mid,
        role=role,
        content=content,
        conversation_id="c1",
        user_id="u1" if role == Role.USER else None,
        created_at=NOW,
    )


def test_update_message_unknown_id_is_noop():
    state = ChatState(messages=(_msg("m1"),))
    new_state = chat_reducer(state, UpdateMessage(id="missing", content="zzz"))
    assert new_state == state
    assert new_state is state


def test_update_message_replaces_content_without_mutating_input():
    before = _msg("m2", role=Role.ASSISTANT, content="")
    state = ChatState(messages=(_msg("m1"), before))
    new_state = chat_reducer(state, UpdateMessage(id="m2", content="Hello"))
    assert [m.content for m in new_state.messages] == ["x", "Hello"]
    assert before.content == ""
    assert state.messages[1].content == ""


def test_reducer_is_referentially_transparent():
    state = ChatState(messages=(_msg("m1"),))
    action = AddMessage(_msg("m2"))
    assert chat_reducer(state, action) == chat_reducer(state, action)
    assert len(state.messages) == 1


def test_add_conversation_prepends_and_selects():
    state = ChatState(conversations=(_conv("c1"),), current_conversation=_conv("c1"), messages=(_msg("m1"),))
    new_state = chat_reducer(state, AddConversation(_conv("c2")))
    assert [c.id for c in new_state.conversations] == ["c2", "c1"]
    assert new_state.current_conversation.id == "c2"
    assert new_state.messages == ()


def test_switch_conversation_replaces_both():
    state = ChatState(current_conversation=_conv("c1"), messages=(_msg("m1"),))
    new_state = chat_reducer(state, SwitchConversation(_conv("c2"), [_msg("m9")]))
    assert new_state.current_conversation.id == "c2"
    assert [m.id for m in new_state.messages] == ["m9"]


def test_simple_setters():
    state = ChatState()
    state = chat_reducer(state, SetConversations([_conv("c1"), _conv("c2")]))
    state = chat_reducer(state, SetCurrentConversation(_conv("c2")))
    state = chat_reducer(state, SetMessages([_msg("m1")]))
    state = chat_reducer(state, SetLoading(True))
    state = chat_reducer(state, SetError("boom"))
    assert [c.id for c in state.conversations] == ["c1", "c2"]
    assert state.current_conversation.id == "c2"
    assert len(state.messages) == 1
    assert state.is_loading is True
    assert state.error == "boom"


def test_unknown_action_returns_state():
    state = ChatState()
    assert chat_reducer(state, object()) is state


def test_state_container_notifies_subscribers():
    container = StateContainer()
    seen = []
    unsubscribe = container.subscribe(lambda s: seen.append(s.is_loading))
    container.dispatch(SetLoading(True))
    container.dispatch(UpdateMessage(id="missing", content="x"))
    unsubscribe()
    container.dispatch(SetLoading(False))
    assert seen == [True]
    assert container.state.is_loading is False
