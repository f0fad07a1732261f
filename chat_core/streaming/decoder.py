"""SSE（text/event-stream）增量解码器。

Relay 的流式响应是 UTF-8 文本，按行分隔：

    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"content": "lo"}}]}
    data: [DONE]

网络分块可能把一行（甚至一个多字节字符）切成两半，因此解码器在
两次 feed 之间缓存最后一个不完整的行，只解析以 "\\n" 结尾的完整行。

解析失败的行会被丢弃并记录日志：单个坏帧不能中断一条健康的流。
"""

import json
import logging
from typing import Any, Dict, List, Optional

from chat_core.domain.exceptions import ParseError, StreamStateError
from chat_core.domain.models import ContentDelta
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger


DATA_PREFIX = b"data:"
DONE_SENTINEL = "[DONE]"


class StreamDecoder:
    """把分块字节流解析为有序的 ContentDelta 序列。

    每个 send_turn 独占一个实例，内部缓冲区不可跨调用共享。
    """

    def __init__(self, logger: Optional[ChatLogger] = None):
        self._logger = logger or get_logger("decoder")
        self._buffer = b""
        self._finished = False
        self.done = False
        self.dropped_lines = 0

    def feed(self, raw_chunk: bytes) -> List[ContentDelta]:
        """喂入一块原始字节，返回其中完整行产生的增量。"""

        if self._finished:
            raise StreamStateError(code="DECODER_FINISHED", message="feed() called after finish()")
        if not raw_chunk:
            return []
        data = self._buffer + raw_chunk
        *lines, self._buffer = data.split(b"\n")
        deltas: List[ContentDelta] = []
        for line in lines:
            delta = self._handle_line(line)
            if delta is not None:
                deltas.append(delta)
        return deltas

    def finish(self) -> List[ContentDelta]:
        """结束解码；缓冲区里没有换行结尾的最后一行也会被解析。"""

        if self._finished:
            return []
        self._finished = True
        tail, self._buffer = self._buffer, b""
        delta = self._handle_line(tail)
        return [delta] if delta is not None else []

    def _handle_line(self, raw_line: bytes) -> Optional[ContentDelta]:
        if self.done:
            return None
        line = raw_line.rstrip(b"\r")
        if not line.strip() or not line.startswith(DATA_PREFIX):
            return None
        try:
            payload = _decode_text(line[len(DATA_PREFIX):])
            if payload == DONE_SENTINEL:
                self.done = True
                return None
            return self._parse_payload(payload)
        except ParseError as exc:
            self.dropped_lines += 1
            self._logger.warning(
                "Dropped malformed stream line",
                extra={"extra": {"error": exc.message, "line_preview": line[:120].decode("utf-8", "replace")}},
            )
            return None

    @staticmethod
    def _parse_payload(payload: str) -> Optional[ContentDelta]:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ParseError(code="SSE_PARSE_ERROR", message=str(exc))
        if not isinstance(data, dict):
            raise ParseError(code="SSE_PARSE_ERROR", message="stream payload is not a JSON object")
        return extract_delta(data)


def _decode_text(raw: bytes) -> str:
    try:
        return raw.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise ParseError(code="SSE_DECODE_ERROR", message=str(exc))


def extract_delta(data: Dict[str, Any]) -> Optional[ContentDelta]:
    """从一个 JSON 帧里取出增量文本。

    依次尝试 choices[0].delta.content（流式）、choices[0].message.content
    （整段响应）和顶层 content（Relay 的非流式返回体）。
    """

    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        finish_reason = first.get("finish_reason")
        for key in ("delta", "message"):
            part = first.get(key)
            if isinstance(part, dict) and isinstance(part.get("content"), str) and part["content"]:
                return ContentDelta(content=part["content"], finish_reason=finish_reason)
        return None
    content = data.get("content")
    if isinstance(content, str) and content:
        return ContentDelta(content=content)
    return None
