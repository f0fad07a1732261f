"""流式解码与取消。"""

from chat_core.streaming.cancellation import CancellationToken
from chat_core.streaming.decoder import StreamDecoder

__all__ = ["CancellationToken", "StreamDecoder"]
