from typing import Any, Dict, List, Mapping, Optional, Protocol

from .models import User


MESSAGES_TABLE = "messages"
CONVERSATIONS_TABLE = "conversations"


class RecordStore(Protocol):
    """通用键值记录存储（托管数据库的最小 CRUD 视图）。

    - insert: 插入一行，返回带 id / created_at 的完整行。
    - update: 按 id 对一行做部分字段覆盖写。
    - select: 按等值过滤 + 单列排序读取多行。
    """

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        ...

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        ...


class SessionProvider(Protocol):
    """认证/会话提供方，只暴露当前用户、访问令牌和登出。"""

    def current_user(self) -> Optional[User]:
        ...

    def access_token(self) -> Optional[str]:
        ...

    def sign_out(self) -> None:
        ...
