import threading
from typing import Optional

from chat_core.domain.exceptions import TurnCancelledError


class CancellationToken:
    """放弃进行中的生成（例如用户离开页面）。

    可以在其他线程调用 cancel()；编排器在每次网络读取和持久化之前检查。
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(code="TURN_CANCELLED", message=self.reason or "cancelled", http_status=499)
