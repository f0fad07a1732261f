from typing import List, Optional, Tuple

from chat_core.domain.conversation import CONVERSATIONS_TABLE, RecordStore
from chat_core.domain.exceptions import AuthenticationError, PersistenceError
from chat_core.domain.models import (
    Conversation,
    Message,
    User,
    conversation_from_row,
    format_timestamp,
    utcnow,
)
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger
from chat_core.providers.registry import get_model_config
from chat_core.services.message_service import MessagePersistence


class ConversationService:
    """会话的创建与加载。"""

    def __init__(
        self,
        store: RecordStore,
        messages: Optional[MessagePersistence] = None,
        logger: Optional[ChatLogger] = None,
    ):
        self._store = store
        self._logger = logger or get_logger("conversations")
        self._messages = messages or MessagePersistence(store, logger=self._logger)

    def create(self, model: str, user: Optional[User]) -> Conversation:
        if user is None:
            raise AuthenticationError(code="NOT_AUTHENTICATED", message="User not authenticated", http_status=401)
        model_cfg = get_model_config(model)
        now = format_timestamp(utcnow())
        row = {
            "model": model_cfg.logical_name,
            "user_id": user.id,
            "title": None,
            "created_at": now,
            "updated_at": now,
        }
        try:
            stored = self._store.insert(CONVERSATIONS_TABLE, row)
        except PersistenceError:
            self._logger.error("Error creating conversation", extra={"extra": {"user_id": user.id}})
            raise
        conv = conversation_from_row(stored)
        self._logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id, "model": conv.model}})
        return conv

    def list(self) -> List[Conversation]:
        rows = self._store.select(CONVERSATIONS_TABLE, order="updated_at", descending=True)
        return [conversation_from_row(r) for r in rows]

    def load(self, conversation_id: str) -> Tuple[Conversation, List[Message]]:
        rows = self._store.select(CONVERSATIONS_TABLE, {"id": conversation_id})
        if not rows:
            raise PersistenceError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        return conversation_from_row(rows[0]), self._messages.list_for_conversation(conversation_id)
