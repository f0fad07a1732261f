import copy
import threading
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from chat_core.domain.conversation import RecordStore
from chat_core.domain.exceptions import PersistenceError
from chat_core.domain.models import format_timestamp, utcnow


class InMemoryRecordStore(RecordStore):
    """进程内记录存储，按表保存 id -> row，保持插入顺序。"""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            record = dict(row)
            record.setdefault("id", str(uuid4()))
            if not record.get("created_at"):
                record["created_at"] = format_timestamp(utcnow())
            rows = self._tables.setdefault(table, {})
            if record["id"] in rows:
                raise PersistenceError(code="DUPLICATE_RECORD", message=f"{table}/{record['id']} already exists")
            rows[record["id"]] = record
            try:
                self._after_write(table)
            except PersistenceError:
                del rows[record["id"]]
                raise
            return copy.deepcopy(record)

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> None:
        with self._lock:
            row = self._tables.get(table, {}).get(record_id)
            if row is None:
                raise PersistenceError(code="RECORD_NOT_FOUND", message=f"{table}/{record_id}", http_status=404)
            previous = dict(row)
            row.update({k: v for k, v in patch.items() if k != "id"})
            try:
                self._after_write(table)
            except PersistenceError:
                row.clear()
                row.update(previous)
                raise

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._tables.get(table, {}).values()
                if all(row.get(k) == v for k, v in (filters or {}).items())
            ]
        if order:
            rows.sort(key=lambda r: r.get(order) or "", reverse=descending)
        return rows

    def _after_write(self, table: str) -> None:
        """写入后的钩子，调用时已持有锁。"""
