"""消息持久化服务。

- create: 校验角色与 user_id 约束后插入消息，返回带 id/created_at 的 Message。
- update: 用最新的累计内容整体覆盖 content（不是追加），
  对同一逻辑写的重试天然幂等，也不会因为乱序重复而拼接出错误内容。

存储层的任何异常都会被记录并以 PersistenceError 抛给调用方，
是否容忍由编排器决定（流式中间写入可容忍，最终落库不可容忍）。
"""

import logging
from typing import Any, Dict, List, Optional

from chat_core.domain.conversation import CONVERSATIONS_TABLE, MESSAGES_TABLE, RecordStore
from chat_core.domain.exceptions import BusinessError, PersistenceError, ValidationError
from chat_core.domain.models import (
    Message,
    MessageData,
    Role,
    format_timestamp,
    message_from_row,
    utcnow,
)
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger


class MessagePersistence:
    def __init__(self, store: RecordStore, logger: Optional[ChatLogger] = None):
        self._store = store
        self._logger = logger or get_logger("persistence")

    def create(self, data: MessageData) -> Message:
        role = Role.parse(data.role)
        if role == Role.USER and not data.user_id:
            raise ValidationError(code="MISSING_USER_ID", message="user messages require user_id")
        if role != Role.USER and data.user_id is not None:
            raise ValidationError(code="UNEXPECTED_USER_ID", message=f"{role.value} messages must not carry user_id")
        row: Dict[str, Any] = {
            "role": role.value,
            "content": data.content,
            "conversation_id": data.conversation_id,
            "user_id": data.user_id,
        }
        try:
            stored = self._store.insert(MESSAGES_TABLE, row)
        except Exception as e:
            raise self._failure("Error creating message", e, conversation_id=data.conversation_id, role=role.value)
        message = message_from_row(stored)
        self._touch_conversation(data.conversation_id)
        self._logger.debug(
            "Created message",
            extra={"extra": {"message_id": message.id, "role": role.value, "conversation_id": data.conversation_id}},
        )
        return message

    def update(self, message_id: str, content: str) -> None:
        try:
            self._store.update(MESSAGES_TABLE, message_id, {"content": content})
        except Exception as e:
            raise self._failure("Error updating message", e, message_id=message_id, content_length=len(content))

    def list_for_conversation(self, conversation_id: str) -> List[Message]:
        try:
            rows = self._store.select(MESSAGES_TABLE, {"conversation_id": conversation_id}, order="created_at")
        except Exception as e:
            raise self._failure("Error loading messages", e, conversation_id=conversation_id)
        return [message_from_row(r) for r in rows]

    def _touch_conversation(self, conversation_id: str) -> None:
        # updated_at 只用于会话列表排序，失败不影响消息本身
        try:
            self._store.update(CONVERSATIONS_TABLE, conversation_id, {"updated_at": format_timestamp(utcnow())})
        except Exception as e:
            self._logger.warning(
                "Failed to touch conversation",
                extra={"extra": {"conversation_id": conversation_id, "error": str(e)}},
            )

    def _failure(self, message: str, error: Exception, **fields: Any) -> PersistenceError:
        self._logger.log(logging.ERROR, message, extra={"extra": {**fields, "error": str(error)}})
        if isinstance(error, PersistenceError):
            return error
        code = error.code if isinstance(error, BusinessError) else "STORE_WRITE_ERROR"
        wrapped = PersistenceError(code=code, message=f"{message}: {error}")
        wrapped.__cause__ = error
        return wrapped
