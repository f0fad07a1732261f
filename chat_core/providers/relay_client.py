"""Relay 客户端（CompletionClient 的 HTTP 实现）。

本模块负责：

1. 把对话历史裁剪为 {role, content} 对，连同 model / stream 标记 POST 给 Relay。
2. 处理网络错误、非 2xx 状态码与配置缺失。
3. 根据 Content-Type 返回整段 WholeResponse（application/json），
   或者把尚未读取的响应体包装为 HttpByteStream 交给编排器逐块消费。

厂商凭证只保存在服务端 Relay 中，客户端只持有用户的访问令牌。
"""

import json
from typing import Any, Dict, Iterator, Optional, Sequence

import httpx

from chat_core.domain.exceptions import (
    BusinessError,
    ConfigurationError,
    NetworkError,
    ProviderError,
    RateLimitError,
    StreamStateError,
)
from chat_core.domain.models import HistoryItem, WholeResponse
from chat_core.infrastructure.logging.logger import ChatLogger, get_logger
from chat_core.providers.base import CompletionResult
from chat_core.providers.registry import ModelConfig, get_model_config


class HttpByteStream:
    """持有打开的 httpx 响应，逐块产出原始字节。

    只能被迭代一次；close() 可重复调用，同时关闭响应和底层 Client。
    """

    def __init__(self, response: httpx.Response, client: httpx.Client):
        self._response = response
        self._client = client
        self._consumed = False
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        if self._consumed:
            raise StreamStateError(code="STREAM_ALREADY_CONSUMED", message="byte stream has a single reader")
        self._consumed = True
        return self._iter_chunks()

    def _iter_chunks(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_bytes():
                if chunk:
                    yield chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise NetworkError(code="STREAM_READ_ERROR", message=str(e))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._response.close()
        finally:
            self._client.close()

    def __enter__(self) -> "HttpByteStream":
        return self

    def __exit__(self, *args) -> bool:
        self.close()
        return False


class RelayClient:
    """通过服务端 Relay 调用 LLM。

    - name: 客户端名称（供日志/调试使用）。
    - request: 对外统一调用入口。
    """

    name = "relay"

    def __init__(self, settings, logger: Optional[ChatLogger] = None):
        # Settings 里包含 relay_url、anon key、超时等配置
        self._settings = settings
        self._logger = logger or get_logger("relay")

    def request(
        self,
        history: Sequence[HistoryItem],
        model: str,
        auth_token: Optional[str],
        stream: bool = True,
    ) -> CompletionResult:
        """发送一次补全请求。

        步骤：
        1. 校验 relay 地址与访问令牌，缺失直接抛 ConfigurationError。
        2. 解析模型名并构造请求 payload。
        3. 以流式方式发送请求，检查状态码。
        4. JSON 响应读完后返回 WholeResponse；否则把响应交给 HttpByteStream。
        """

        relay_url = getattr(self._settings, "relay_url", None)
        if not relay_url:
            raise ConfigurationError(code="MISSING_RELAY_URL", message="RELAY_URL not set", http_status=500)
        if not auth_token:
            raise ConfigurationError(code="MISSING_AUTH_TOKEN", message="No access token for relay request", http_status=401)
        model_cfg = get_model_config(model)
        payload = self._build_payload(history, model_cfg, stream)
        self._logger.info(
            "Sending relay request",
            extra={"extra": {"message_count": len(payload["messages"]), "model": model_cfg.provider_model, "stream": stream}},
        )

        client = httpx.Client(timeout=self._settings.http_timeout, trust_env=False)
        handed_off = False
        try:
            req = client.build_request("POST", relay_url, json=payload, headers=self._build_headers(auth_token, stream))
            resp = client.send(req, stream=True)
            try:
                result = self._handle_response(resp, client)
                handed_off = isinstance(result, HttpByteStream)
                return result
            finally:
                if not handed_off:
                    resp.close()
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        finally:
            if not handed_off:
                client.close()

    def _build_payload(self, history: Sequence[HistoryItem], model_cfg: ModelConfig, stream: bool) -> Dict[str, Any]:
        """只发送 {role, content}，不携带 id/时间戳。"""

        return {
            "messages": [item.to_payload() for item in history],
            "model": model_cfg.provider_model,
            "stream": stream,
        }

    def _build_headers(self, auth_token: str, stream: bool) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        anon_key = getattr(self._settings, "relay_anon_key", None)
        if anon_key:
            headers["apikey"] = anon_key
        return headers

    def _handle_response(self, resp: httpx.Response, client: httpx.Client) -> CompletionResult:
        if not 200 <= resp.status_code < 300:
            raise self._error_from_response(resp)
        content_type = resp.headers.get("content-type", "")
        if "application/json" in content_type:
            return self._read_whole(resp)
        return HttpByteStream(resp, client)

    def _read_whole(self, resp: httpx.Response) -> WholeResponse:
        resp.read()
        try:
            data = resp.json()
        except json.JSONDecodeError:
            raise ProviderError(
                code="INVALID_RESPONSE",
                message="Relay returned invalid JSON",
                status=resp.status_code,
                raw_body=resp.text,
            )
        content = _whole_content(data)
        if content is None:
            self._logger.error("Invalid relay response format", extra={"extra": {"status": resp.status_code}})
            raise ProviderError(
                code="INVALID_RESPONSE",
                message="Invalid response format from relay",
                status=resp.status_code,
                raw_body=resp.text,
            )
        self._logger.info("Relay whole response received", extra={"extra": {"content_length": len(content)}})
        return WholeResponse(content=content, raw=data)

    def _error_from_response(self, resp: httpx.Response) -> BusinessError:
        resp.read()
        raw_body = resp.text
        message = _error_message(raw_body) or f"HTTP {resp.status_code}"
        self._logger.error(
            "Relay error response",
            extra={"extra": {"status": resp.status_code, "error": message}},
        )
        if "not configured" in message.lower():
            # 上游（Relay 侧）API key 缺失：不可重试的配置错误
            return ConfigurationError(code="UPSTREAM_NOT_CONFIGURED", message=message, http_status=resp.status_code)
        if resp.status_code == 429:
            return RateLimitError(code="RATE_LIMIT", message="Relay rate limit", status=429, raw_body=raw_body)
        return ProviderError(
            code="PROVIDER_ERROR",
            message=f"Relay returned {resp.status_code}: {message}",
            status=resp.status_code,
            raw_body=raw_body,
        )


def _whole_content(data: Any) -> Optional[str]:
    """Relay 返回 {content}；直接透传厂商响应时取 choices[0].message.content。"""

    if not isinstance(data, dict):
        return None
    content = data.get("content")
    if isinstance(content, str):
        return content
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        if isinstance(message.get("content"), str):
            return message["content"]
    return None


def _error_message(raw_body: str) -> Optional[str]:
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, TypeError):
        return raw_body.strip() or None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return err.get("message")
        if err:
            return str(err)
    return None
