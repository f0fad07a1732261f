"""统一的对话与消息数据模型。

本模块定义了流式对话管线在各层之间共享的标准数据结构：

- Role: 封闭的消息角色枚举（user/assistant/system）。
- Message / MessageData: 持久化的消息记录与插入用的载荷。
- Conversation / User: 会话与当前登录用户。
- HistoryItem: 发给 Relay 的 {role, content} 对，不携带 id、时间戳。
- ContentDelta / WholeResponse: CompletionClient 与解码器的输出。

存储层的行（dict）与这些模型之间的转换也集中在这里，
各个 RecordStore 实现只需要处理普通 dict。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from chat_core.domain.exceptions import InvalidRoleError


class Role(str, Enum):
    """LLM 消息角色（与 OpenAI 的 role 字段对应）。"""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """把字符串或 Role 转成 Role，未知取值抛出 InvalidRoleError。"""

        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidRoleError(code="INVALID_ROLE", message=f"Unknown message role: {value!r}")


@dataclass
class User:
    """会话提供方暴露的当前用户。"""

    id: str
    email: Optional[str] = None


@dataclass
class Conversation:
    id: str
    model: str
    user_id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MessageData:
    """创建消息时的载荷，id 与 created_at 由存储层分配。"""

    role: Role
    content: str
    conversation_id: str
    user_id: Optional[str] = None


@dataclass
class Message:
    """一条已持久化（或待持久化）的消息。

    - user_id: 仅 role == user 时非空，assistant/system 消息恒为 None。
    - content: assistant 消息初始为空串，流式过程中按 id 整体替换。
    """

    role: Role
    content: str
    conversation_id: str
    user_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryItem:
    """发给 Relay 的单条上下文消息。"""

    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ContentDelta:
    """流式补全中的一个增量文本片段。"""

    content: str
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class WholeResponse:
    """非流式响应：一次性返回完整内容。"""

    content: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def message_from_row(row: Mapping[str, Any]) -> Message:
    return Message(
        id=row.get("id"),
        role=Role.parse(row.get("role")),
        content=row.get("content") or "",
        conversation_id=row["conversation_id"],
        user_id=row.get("user_id"),
        created_at=parse_timestamp(row.get("created_at")),
    )


def conversation_from_row(row: Mapping[str, Any]) -> Conversation:
    return Conversation(
        id=row["id"],
        title=row.get("title"),
        model=row.get("model") or "",
        user_id=row.get("user_id") or "",
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def history_from_messages(messages) -> list[HistoryItem]:
    """把消息列表裁剪为 Relay 需要的 {role, content} 对。"""

    return [HistoryItem(role=Role.parse(m.role), content=m.content) for m in messages]
