"""对外 API 服务模块。

ChatSession 是界面层使用的门面：持有 StateContainer，
把编排器的回调接到 dispatch 上，并统一处理加载状态、错误提示。
"""

import logging
from typing import Callable, Dict, List, Optional, TypeVar

from chat_core.agents.orchestrator import StreamingOrchestrator, TurnResult
from chat_core.config.settings import settings
from chat_core.domain.conversation import RecordStore, SessionProvider
from chat_core.domain.exceptions import ConfigurationError, ValidationError, error_payload, normalize_error
from chat_core.domain.models import Conversation, Message
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger
from chat_core.infrastructure.storage.json_store import JsonRecordStore
from chat_core.infrastructure.storage.memory_store import InMemoryRecordStore
from chat_core.infrastructure.storage.rest_store import RestRecordStore
from chat_core.providers import create_client
from chat_core.providers.registry import list_models
from chat_core.services.conversation_service import ConversationService
from chat_core.services.message_service import MessagePersistence
from chat_core.state.reducer import (
    AddConversation,
    AddMessage,
    ChatState,
    SetConversations,
    SetError,
    SetLoading,
    StateContainer,
    SwitchConversation,
    UpdateMessage,
)
from chat_core.streaming.cancellation import CancellationToken


T = TypeVar("T")
NotifyFn = Callable[[str, str], None]


def _ignore_notification(title: str, description: str) -> None:
    return None


class ChatSession:
    def __init__(
        self,
        orchestrator: StreamingOrchestrator,
        conversations: ConversationService,
        session: SessionProvider,
        container: Optional[StateContainer] = None,
        notify: Optional[NotifyFn] = None,
        default_model: Optional[str] = None,
        logger: Optional[ChatLogger] = None,
    ):
        self._orchestrator = orchestrator
        self._conversations = conversations
        self._session = session
        self.container = container or StateContainer()
        self._notify = notify or _ignore_notification
        self._default_model = default_model or settings.default_model
        self._logger = logger or get_logger("session")

    @property
    def state(self) -> ChatState:
        return self.container.state

    @staticmethod
    def available_models() -> List[Dict[str, str]]:
        return list_models()

    def load_conversations(self) -> List[Conversation]:
        def run() -> List[Conversation]:
            items = self._conversations.list()
            self.container.dispatch(SetConversations(items))
            return items

        return self._guarded("Failed to load conversations", run)

    def load_conversation(self, conversation_id: str) -> Conversation:
        def run() -> Conversation:
            conv, messages = self._conversations.load(conversation_id)
            self.container.dispatch(SwitchConversation(conv, messages))
            return conv

        return self._guarded("Failed to load conversation", run)

    def create_conversation(self, model: Optional[str] = None) -> Conversation:
        def run() -> Conversation:
            conv = self._conversations.create(model or self._default_model, self._session.current_user())
            self.container.dispatch(AddConversation(conv))
            return conv

        return self._guarded("Failed to create conversation", run)

    def send_message(self, content: str, cancel_token: Optional[CancellationToken] = None) -> TurnResult:
        """发送一条消息并驱动助手回复。

        失败后可以用同样的内容再次调用；每次调用都会写入新的用户消息行，
        不会复用上一次失败留下的记录。
        """

        conversation = self.state.current_conversation
        if conversation is None:
            raise ValidationError(code="NO_CONVERSATION", message="No conversation selected")
        if self.state.is_loading:
            raise ValidationError(code="TURN_IN_PROGRESS", message="Another request is still running")
        history: List[Message] = list(self.state.messages)

        def run() -> TurnResult:
            return self._orchestrator.send_turn(
                content,
                conversation,
                history,
                on_update=lambda message_id, text: self.container.dispatch(UpdateMessage(message_id, text)),
                on_message=lambda message: self.container.dispatch(AddMessage(message)),
                cancel_token=cancel_token,
            )

        return self._guarded("Failed to send message", run)

    def sign_out(self) -> None:
        self._session.sign_out()
        self.container.dispatch(SwitchConversation(None, ()))
        self.container.dispatch(SetConversations(()))

    def _guarded(self, description: str, fn: Callable[[], T]) -> T:
        self.container.dispatch(SetError(None))
        self.container.dispatch(SetLoading(True))
        try:
            return fn()
        except Exception as e:
            err = normalize_error(e)
            self._logger.log(logging.ERROR, description, extra={"extra": error_payload(err)})
            self.container.dispatch(SetError(err.message))
            self._notify("Error", description)
            if err is e:
                raise
            raise err from e
        finally:
            self.container.dispatch(SetLoading(False))


def build_store(config=None, access_token: Optional[Callable[[], Optional[str]]] = None) -> RecordStore:
    cfg = config or settings
    backend = getattr(cfg, "storage_backend", "json")
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "rest":
        if not cfg.rest_url or not cfg.rest_api_key:
            raise ConfigurationError(code="MISSING_REST_CONFIG", message="REST_URL / REST_API_KEY not set", http_status=500)
        return RestRecordStore(cfg.rest_url, cfg.rest_api_key, access_token=access_token, timeout=cfg.http_timeout)
    return JsonRecordStore(root=cfg.storage_root)


def build_default_session(
    session_provider: SessionProvider,
    config=None,
    notify: Optional[NotifyFn] = None,
    logger: Optional[ChatLogger] = None,
) -> ChatSession:
    """按配置装配存储、Relay 客户端和编排器。"""

    cfg = config or settings
    store = build_store(cfg, access_token=session_provider.access_token)
    persistence = MessagePersistence(store, logger=logger)
    orchestrator = StreamingOrchestrator(
        persistence=persistence,
        client=create_client(cfg, logger=logger),
        session=session_provider,
        logger=logger,
        stream_responses=cfg.stream_responses,
    )
    return ChatSession(
        orchestrator=orchestrator,
        conversations=ConversationService(store, messages=persistence, logger=logger),
        session=session_provider,
        notify=notify,
        default_model=cfg.default_model,
        logger=logger,
    )

