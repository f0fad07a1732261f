"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

错误分类（与流式管线的处理策略对应）：
- ConfigurationError: 缺少凭证/配置，致命且不重试，在任何流开始之前抛出。
- ProviderError: Relay/厂商返回非 2xx，本轮对话失败。
- ParseError: 单行 SSE 帧无法解析，只在解码器内部记录，不向外传播。
- PersistenceError: 存储写入失败；流式中间过程可容忍，最终落库失败则致命。
- AuthenticationError: 没有有效会话，禁止发送。
"""

from typing import Any, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 turn_state、assistant_message_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """配置缺失或无效（例如 relay 地址、访问令牌、上游 API key）。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、流读取中断等。"""


class ProviderError(BusinessError):
    """Relay 返回非 2xx 状态码时抛出。

    保留原始响应体 raw_body，方便排查上游错误。
    """

    def __init__(self, code: str, message: str, status: int = 502, raw_body: str = "", **extra):
        super().__init__(code=code, message=message, http_status=status, **extra)
        self.status = status
        self.raw_body = raw_body


class RateLimitError(ProviderError):
    """Relay/厂商限流（HTTP 429）。"""


class ParseError(BusinessError):
    """单条 SSE 帧解析失败，仅在解码器内部使用。"""


class PersistenceError(BusinessError):
    """存储层读写失败。"""


class AuthenticationError(BusinessError):
    """当前没有登录用户或会话已失效。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class InvalidRoleError(ValidationError):
    """消息角色不在 user/assistant/system 之内。"""


class StreamStateError(BusinessError):
    """解码器在 finish() 之后仍被调用。"""


class TurnCancelledError(BusinessError):
    """调用方通过 CancellationToken 放弃了本轮生成。"""


def normalize_error(error: BaseException, default_message: Optional[str] = None) -> BusinessError:
    """把任意异常规范化为 BusinessError。

    已经是 BusinessError 的原样返回；其他异常包装成 UNEXPECTED_ERROR，
    保留可读的 message，原始异常挂在 __cause__ 上。
    """

    if isinstance(error, BusinessError):
        return error
    message = str(error) or default_message or "An unexpected error occurred"
    wrapped = BusinessError(code="UNEXPECTED_ERROR", message=message, http_status=500)
    wrapped.__cause__ = error
    return wrapped


def error_payload(error: BusinessError) -> dict[str, Any]:
    """用于日志的结构化错误字段。"""

    payload: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_code": error.code,
        "error": error.message,
    }
    status = getattr(error, "status", None)
    if status is not None:
        payload["status"] = status
    return payload
