"""界面侧会话状态（reducer 风格）。

chat_reducer(state, action) 是纯函数：同样的 (state, action) 永远得到等价的新状态，
不做 I/O、不修改入参。编排器的回调只需要注入 dispatch 就能驱动界面状态，
测试时也可以直接断言 reducer 的输出。
"""

from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple, Union

from chat_core.domain.models import Conversation, Message


@dataclass(frozen=True)
class ChatState:
    conversations: Tuple[Conversation, ...] = ()  # updated_at 降序
    current_conversation: Optional[Conversation] = None
    messages: Tuple[Message, ...] = ()  # created_at 升序，仅对 current_conversation 有意义
    is_loading: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class SetConversations:
    conversations: Sequence[Conversation]


@dataclass(frozen=True)
class SetCurrentConversation:
    conversation: Optional[Conversation]


@dataclass(frozen=True)
class AddConversation:
    conversation: Conversation


@dataclass(frozen=True)
class SetMessages:
    messages: Sequence[Message]


@dataclass(frozen=True)
class AddMessage:
    message: Message


@dataclass(frozen=True)
class UpdateMessage:
    id: str
    content: str


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetError:
    error: Optional[str]


@dataclass(frozen=True)
class SwitchConversation:
    """同时替换当前会话与消息列表，避免两者短暂不一致。"""

    conversation: Optional[Conversation]
    messages: Sequence[Message] = ()


ChatAction = Union[
    SetConversations,
    SetCurrentConversation,
    AddConversation,
    SetMessages,
    AddMessage,
    UpdateMessage,
    SetLoading,
    SetError,
    SwitchConversation,
]


def chat_reducer(state: ChatState, action: ChatAction) -> ChatState:
    if isinstance(action, SetConversations):
        return replace(state, conversations=tuple(action.conversations))
    if isinstance(action, SetCurrentConversation):
        return replace(state, current_conversation=action.conversation)
    if isinstance(action, AddConversation):
        # 新会话还没有消息
        return replace(
            state,
            conversations=(action.conversation, *state.conversations),
            current_conversation=action.conversation,
            messages=(),
        )
    if isinstance(action, SetMessages):
        return replace(state, messages=tuple(action.messages))
    if isinstance(action, AddMessage):
        return replace(state, messages=(*state.messages, action.message))
    if isinstance(action, UpdateMessage):
        if not any(m.id == action.id for m in state.messages):
            return state
        return replace(
            state,
            messages=tuple(
                replace(m, content=action.content) if m.id == action.id else m for m in state.messages
            ),
        )
    if isinstance(action, SetLoading):
        return replace(state, is_loading=action.is_loading)
    if isinstance(action, SetError):
        return replace(state, error=action.error)
    if isinstance(action, SwitchConversation):
        return replace(state, current_conversation=action.conversation, messages=tuple(action.messages))
    return state


Listener = Callable[[ChatState], None]


class StateContainer:
    """持有当前 ChatState，并在每次 dispatch 后通知订阅者。"""

    def __init__(self, initial: Optional[ChatState] = None):
        self._state = initial or ChatState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ChatState:
        return self._state

    def dispatch(self, action: ChatAction) -> ChatState:
        new_state = chat_reducer(self._state, action)
        if new_state is not self._state:
            self._state = new_state
            for listener in list(self._listeners):
                listener(new_state)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
