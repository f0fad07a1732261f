import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from chat_core.config.settings import settings


LOGGER_NAME = "chat_core"

# extra 中可能携带用户/模型文本的字段
CONTENT_FIELDS = frozenset({"content", "line_preview"})


class ChatLogger(Protocol):
    """注入到各组件的日志能力，logging.Logger 天然满足该协议。"""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        ...


class JsonFormatter(logging.Formatter):
    def __init__(self, redact_content: bool = False):
        super().__init__()
        self._redact_content = redact_content

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                if self._redact_content and key in CONTENT_FIELDS:
                    value = f"<redacted {len(str(value))} chars>"
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(
    name: str = LOGGER_NAME,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    redact_content: Optional[bool] = None,
) -> logging.Logger:
    """创建（或复用）写 JSON 行日志文件的 logger。

    重复调用不会叠加 handler。
    """

    logger = logging.getLogger(name)
    logger.setLevel(level or settings.log_level)
    if any(getattr(h, "_chat_core_json", False) for h in logger.handlers):
        return logger
    directory = Path(log_dir or settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(directory / "chat.log", encoding="utf-8")
    fh.setFormatter(JsonFormatter(settings.log_redact_content if redact_content is None else redact_content))
    fh._chat_core_json = True  # type: ignore[attr-defined]
    logger.addHandler(fh)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """组件未注入 logger 时使用的默认实现。"""

    root = setup_logger()
    if name:
        return root.getChild(name)
    return root


def log_event(logger: ChatLogger, level: int, message: str, log_ctx: dict, **fields: Any) -> None:
    """带上下文字段写一条结构化日志。"""

    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})
