"""界面侧会话状态。"""

from chat_core.state.reducer import ChatState, StateContainer, chat_reducer

__all__ = ["ChatState", "StateContainer", "chat_reducer"]
