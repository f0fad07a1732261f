"""CompletionClient 抽象接口。

编排器不直接依赖 HTTP 细节，而是依赖此协议：

- request(history, model, auth_token) 要么返回整段 WholeResponse，
  要么返回一个尚未读取的 ByteStream，由调用方逐块消费。
- 传输方式（直连 HTTP 还是 RPC 包装）属于实现细节，不在编排器里分支。
"""

from typing import Iterator, Optional, Protocol, Sequence, Union

from chat_core.domain.models import HistoryItem, WholeResponse


class ByteStream(Protocol):
    """只允许单个读取者消费的原始字节流。"""

    def __iter__(self) -> Iterator[bytes]:
        ...

    def close(self) -> None:
        ...


CompletionResult = Union[WholeResponse, ByteStream]


class CompletionClient(Protocol):
    name: str

    def request(
        self,
        history: Sequence[HistoryItem],
        model: str,
        auth_token: Optional[str],
        stream: bool = True,
    ) -> CompletionResult:
        ...
