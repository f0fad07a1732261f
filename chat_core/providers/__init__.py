"""LLM Relay 集成层。

该包下的模块负责：
- 定义 CompletionClient 抽象接口 (base)。
- 维护可选模型配置 (registry)。
- 提供 Relay 的 HTTP 实现 (relay_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import ChatLogger
from chat_core.providers.base import CompletionClient
from chat_core.providers.relay_client import RelayClient


def create_client(config=None, logger: Optional[ChatLogger] = None) -> CompletionClient:
    """根据配置创建 CompletionClient，默认取全局 settings。"""

    return RelayClient(config or settings, logger=logger)
