import json
import os
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import PersistenceError
from chat_core.infrastructure.storage.memory_store import InMemoryRecordStore


class JsonRecordStore(InMemoryRecordStore):
    """文件型记录存储：每张表一个 <table>.json，写入时整体原子替换。"""

    def __init__(self, root: str | Path | None = None):
        super().__init__()
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        for path in sorted(self._root.glob("*.json")):
            self._tables[path.stem] = self._read_table(path)

    def _read_table(self, path: Path) -> Dict[str, Dict[str, Any]]:
        try:
            rows: List[Dict[str, Any]] = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=f"{path.name}: {e}")
        return {row["id"]: row for row in rows if isinstance(row, dict) and row.get("id")}

    def _after_write(self, table: str) -> None:
        path = self._root / f"{table}.json"
        tmp_path = self._root / f"{table}.{uuid4().hex}.json.tmp"
        rows = list(self._tables.get(table, {}).values())
        try:
            tmp_path.write_text(json.dumps(rows, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))
