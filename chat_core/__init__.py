"""Chat Core 顶层包。

该包提供网页聊天客户端的核心管线：
配置加载、领域模型、Relay 客户端、SSE 增量解码、消息持久化、
流式对话编排以及 reducer 风格的界面状态。
"""

from chat_core.agents.orchestrator import StreamingOrchestrator, TurnResult, TurnState
from chat_core.api.service import ChatSession, build_default_session

__all__ = ["ChatSession", "StreamingOrchestrator", "TurnResult", "TurnState", "build_default_session"]
