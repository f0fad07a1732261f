from typing import Optional

from chat_core.domain.conversation import SessionProvider
from chat_core.domain.models import User


class StaticSessionProvider(SessionProvider):
    """固定用户 + 固定令牌的会话，用于命令行、示例和测试。"""

    def __init__(self, user: Optional[User], token: Optional[str] = None):
        self._user = user
        self._token = token

    def current_user(self) -> Optional[User]:
        return self._user

    def access_token(self) -> Optional[str]:
        return self._token if self._user else None

    def sign_out(self) -> None:
        # 会话已经失效时也只清理本地状态
        self._user = None
        self._token = None
