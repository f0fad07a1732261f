"""托管数据库（PostgREST 风格 REST 接口）上的 RecordStore 实现。

请求格式：
- insert: POST   /rest/v1/<table>            Prefer: return=representation
- update: PATCH  /rest/v1/<table>?id=eq.<id> Prefer: return=representation
- select: GET    /rest/v1/<table>?<col>=eq.<v>&order=<col>.asc|desc

鉴权头同时携带项目 apikey 和当前用户的访问令牌（行级权限由数据库负责）。
"""

from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from chat_core.domain.conversation import RecordStore
from chat_core.domain.exceptions import PersistenceError


class RestRecordStore(RecordStore):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = 30.0,
    ):
        self._base = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._access_token = access_token
        self._timeout = timeout

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        resp = self._send("POST", table, json=dict(row), prefer="return=representation")
        rows = self._rows(resp, table)
        if not rows:
            raise PersistenceError(code="STORE_EMPTY_RESULT", message=f"No data returned from {table} insert")
        return rows[0]

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        resp = self._send(
            "PATCH",
            table,
            params={"id": f"eq.{record_id}"},
            json=dict(patch),
            prefer="return=representation",
        )
        if not self._rows(resp, table):
            raise PersistenceError(code="RECORD_NOT_FOUND", message=f"{table}/{record_id}", http_status=404)

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, str] = {"select": "*"}
        for key, value in (filters or {}).items():
            params[key] = f"eq.{value}"
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        return self._rows(self._send("GET", table, params=params), table)

    def _headers(self, prefer: Optional[str]) -> Dict[str, str]:
        token = (self._access_token() if self._access_token else None) or self._api_key
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _send(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ):
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.request(
                    method,
                    f"{self._base}/{table}",
                    params=params,
                    json=json,
                    headers=self._headers(prefer),
                )
        except httpx.RequestError as e:
            raise PersistenceError(code="STORE_NETWORK_ERROR", message=str(e), http_status=503)
        if resp.status_code >= 400:
            raise PersistenceError(
                code="STORE_HTTP_ERROR",
                message=f"{method} {table} failed: {resp.text}",
                http_status=resp.status_code,
            )
        return resp

    @staticmethod
    def _rows(resp, table: str) -> List[Dict[str, Any]]:
        try:
            data = resp.json()
        except ValueError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=f"{table}: {e}")
        if isinstance(data, dict):
            return [data]
        return list(data or [])
