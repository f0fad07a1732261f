"""流式对话编排器。

驱动一次“用户发言 → 助手回复”的完整过程：

    IDLE → USER_MSG_SAVED → ASSISTANT_PLACEHOLDER_SAVED → STREAMING → SETTLED
                 └───────────────────┴──────────────────────┴──→ ERRORED

1. 先落库用户消息和一条空内容的助手占位消息（任何网络调用之前），
   占位消息的 id 是后续所有增量更新的稳定句柄。
2. 调用 CompletionClient；整段响应视为一个增量，字节流则逐块解码。
3. 每个增量：累加 → 尽力落库（失败只记日志）→ 无条件回调 on_update。
4. 流结束后做最后一次落库，失败即致命：持久化状态与内存状态已经分叉。

内部不做重试；调用方重新 send_turn 会产生新的消息行。
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
from uuid import uuid4

from chat_core.domain.conversation import SessionProvider
from chat_core.domain.exceptions import (
    AuthenticationError,
    BusinessError,
    PersistenceError,
    error_payload,
    normalize_error,
)
from chat_core.domain.models import (
    Conversation,
    Message,
    MessageData,
    Role,
    WholeResponse,
    history_from_messages,
)
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger, log_event
from chat_core.providers.base import ByteStream, CompletionClient
from chat_core.services.message_service import MessagePersistence
from chat_core.streaming.cancellation import CancellationToken
from chat_core.streaming.decoder import StreamDecoder


OnUpdate = Callable[[str, str], None]
OnMessage = Callable[[Message], None]


class TurnState(str, Enum):
    IDLE = "idle"
    USER_MSG_SAVED = "user_msg_saved"
    ASSISTANT_PLACEHOLDER_SAVED = "assistant_placeholder_saved"
    STREAMING = "streaming"
    SETTLED = "settled"
    ERRORED = "errored"


@dataclass
class TurnResult:
    user_message: Message
    assistant_message: Message
    state: TurnState = TurnState.SETTLED
    dropped_lines: int = 0


@dataclass
class _TurnRun:
    """单次 send_turn 独占的可变状态，不跨调用共享。"""

    log_ctx: Dict[str, Any]
    state: TurnState = TurnState.IDLE
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    accumulated: str = ""
    last_durable: str = ""
    decoder: Optional[StreamDecoder] = None
    failed_updates: int = 0


class StreamingOrchestrator:
    def __init__(
        self,
        persistence: MessagePersistence,
        client: CompletionClient,
        session: SessionProvider,
        logger: Optional[ChatLogger] = None,
        stream_responses: bool = True,
    ):
        self._persistence = persistence
        self._client = client
        self._session = session
        self._logger = logger or get_logger("orchestrator")
        self._stream_responses = stream_responses

    def send_turn(
        self,
        content: str,
        conversation: Conversation,
        history: Sequence[Message],
        on_update: OnUpdate,
        on_message: Optional[OnMessage] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TurnResult:
        """执行一轮对话。

        Args:
            content: 用户输入
            conversation: 当前会话（提供 id 与 model）
            history: 本轮之前的消息（按 created_at 升序）
            on_update: 每个增量后回调 (assistant_id, accumulated)
            on_message: 用户消息/助手占位落库后回调，用于追加到界面状态
            cancel_token: 可选取消令牌，在每个挂起点之前检查

        Returns:
            TurnResult，state 为 SETTLED

        Raises:
            BusinessError 子类；extra 中带 turn_state / assistant_message_id / last_durable_content
        """

        user = self._session.current_user()
        auth_token = self._session.access_token() if user is not None else None
        if user is None or not auth_token:
            raise AuthenticationError(code="NOT_AUTHENTICATED", message="User not authenticated", http_status=401)

        run = _TurnRun(
            log_ctx={
                "trace_id": f"tr-{uuid4().hex}",
                "conversation_id": conversation.id,
                "model": conversation.model,
            }
        )
        token = cancel_token or CancellationToken()
        start_time = time.time()
        try:
            user_message, assistant_message = self._run(
                run, content, user.id, auth_token, conversation, history, on_update, on_message, token
            )
        except Exception as e:
            raise self._fail(run, e)

        log_event(
            self._logger,
            logging.INFO,
            "Turn settled",
            run.log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            content_length=len(run.accumulated),
            failed_updates=run.failed_updates,
        )
        return TurnResult(
            user_message=user_message,
            assistant_message=assistant_message,
            state=run.state,
            dropped_lines=run.decoder.dropped_lines if run.decoder else 0,
        )

    def _run(
        self,
        run: _TurnRun,
        content: str,
        user_id: str,
        auth_token: str,
        conversation: Conversation,
        history: Sequence[Message],
        on_update: OnUpdate,
        on_message: Optional[OnMessage],
        token: CancellationToken,
    ) -> Tuple[Message, Message]:
        # 1. 用户消息
        token.raise_if_cancelled()
        user_message = run.user_message = self._persistence.create(
            MessageData(role=Role.USER, content=content, conversation_id=conversation.id, user_id=user_id)
        )
        run.state = TurnState.USER_MSG_SAVED
        log_event(self._logger, logging.INFO, "Stored user message", run.log_ctx, message_id=user_message.id)
        if on_message:
            on_message(replace(user_message))

        # 2. 助手占位消息
        token.raise_if_cancelled()
        assistant_message = run.assistant_message = self._persistence.create(
            MessageData(role=Role.ASSISTANT, content="", conversation_id=conversation.id, user_id=None)
        )
        if not assistant_message.id:
            raise PersistenceError(code="STORE_EMPTY_RESULT", message="Assistant placeholder stored without id")
        assistant_id = assistant_message.id
        run.state = TurnState.ASSISTANT_PLACEHOLDER_SAVED
        run.log_ctx["assistant_message_id"] = assistant_id
        if on_message:
            on_message(replace(assistant_message))

        # 3. 请求 Relay
        token.raise_if_cancelled()
        request_history = history_from_messages([*history, user_message])
        log_event(self._logger, logging.INFO, "Calling relay", run.log_ctx, message_count=len(request_history))
        result = self._client.request(
            request_history,
            conversation.model,
            auth_token,
            stream=self._stream_responses,
        )
        run.state = TurnState.STREAMING

        if isinstance(result, WholeResponse):
            run.accumulated = result.content
            on_update(assistant_id, run.accumulated)
        else:
            self._consume_stream(run, result, assistant_id, on_update, token)

        # 4. 最终落库，失败即致命
        token.raise_if_cancelled()
        self._persistence.update(assistant_id, run.accumulated)
        run.last_durable = run.accumulated
        assistant_message.content = run.accumulated
        run.state = TurnState.SETTLED
        return user_message, assistant_message

    def _consume_stream(
        self,
        run: _TurnRun,
        stream: ByteStream,
        assistant_id: str,
        on_update: OnUpdate,
        token: CancellationToken,
    ) -> None:
        run.decoder = StreamDecoder(logger=self._logger)
        try:
            chunks = iter(stream)
            while not run.decoder.done:
                token.raise_if_cancelled()
                chunk = next(chunks, None)
                if chunk is None:
                    break
                for delta in run.decoder.feed(chunk):
                    self._apply_delta(run, delta.content, assistant_id, on_update, token)
            for delta in run.decoder.finish():
                self._apply_delta(run, delta.content, assistant_id, on_update, token)
        finally:
            stream.close()

    def _apply_delta(
        self,
        run: _TurnRun,
        text: str,
        assistant_id: str,
        on_update: OnUpdate,
        token: CancellationToken,
    ) -> None:
        run.accumulated += text
        token.raise_if_cancelled()
        try:
            self._persistence.update(assistant_id, run.accumulated)
            run.last_durable = run.accumulated
        except PersistenceError as e:
            # 中间写入尽力而为：记录后继续，界面仍然要看到进度
            run.failed_updates += 1
            log_event(self._logger, logging.WARNING, "Incremental persist failed", run.log_ctx, **error_payload(e))
        on_update(assistant_id, run.accumulated)

    def _fail(self, run: _TurnRun, error: Exception) -> BusinessError:
        err = normalize_error(error)
        previous_state = run.state
        run.state = TurnState.ERRORED
        err.extra.update(
            turn_state=run.state,
            failed_in=previous_state,
            assistant_message_id=run.assistant_message.id if run.assistant_message else None,
            last_durable_content=run.last_durable,
        )
        log_event(
            self._logger,
            logging.ERROR,
            "Turn failed",
            run.log_ctx,
            failed_in=previous_state.value,
            **error_payload(err),
        )
        return err
