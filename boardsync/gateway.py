"""
Persistence gateway: the call contract the board store writes through.

Implementations:
  NullGateway    - no service configured; probe() is always False
  SqliteGateway  - SQLite file (WAL), blocking calls run off the event loop
  RestGateway    - JSON-over-HTTP remote store

Records crossing this boundary are encoded here and only here:
tags are a JSON string, ai_generated is 0/1, timestamps are ISO-8601.
The gateway never assigns IDs and never retries.
"""
import abc
import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Dict, Any, Optional

import requests

from .schema import Column, Task

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """A persistence call failed (service down, rejected write, bad data)."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Record codec
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

TASK_FIELDS = (
    "id", "title", "description", "column_id", "board_id", "position",
    "priority", "tags", "ai_generated", "user_id", "created_at", "updated_at",
)
COLUMN_FIELDS = (
    "id", "board_id", "name", "color", "position", "user_id", "created_at",
)
# Fields a partial task update may touch
UPDATABLE_TASK_FIELDS = frozenset({
    "title", "description", "column_id", "position", "priority",
    "tags", "ai_generated", "updated_at",
})


def _encode_value(key: str, value: Any) -> Any:
    if key == "tags":
        return json.dumps(list(value or []))
    if key == "ai_generated":
        return 1 if value else 0
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Encode a partial task update for storage."""
    unknown = set(fields) - UPDATABLE_TASK_FIELDS
    if unknown:
        raise GatewayError(f"Unknown task fields: {', '.join(sorted(unknown))}")
    return {k: _encode_value(k, v) for k, v in fields.items()}


def task_to_record(task: Task) -> Dict[str, Any]:
    data = task.to_dict()
    return {k: _encode_value(k, data[k]) for k in TASK_FIELDS}


def record_to_task(record: Dict[str, Any]) -> Task:
    data = dict(record)
    tags = data.get("tags")
    if isinstance(tags, str):
        try:
            tags = json.loads(tags)
        except (json.JSONDecodeError, TypeError):
            tags = []
    data["tags"] = tags if isinstance(tags, list) else []
    # 0/1, "0"/"1" or a real bool
    try:
        data["ai_generated"] = int(data.get("ai_generated") or 0) > 0
    except (TypeError, ValueError):
        data["ai_generated"] = bool(data.get("ai_generated"))
    return Task.from_dict(data)


def column_to_record(column: Column) -> Dict[str, Any]:
    data = column.to_dict()
    return {k: data[k] for k in COLUMN_FIELDS}


def record_to_column(record: Dict[str, Any]) -> Column:
    return Column.from_dict(dict(record))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Contract
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PersistenceGateway(abc.ABC):
    """
    Async CRUD contract for columns and tasks.

    Every method except probe() raises GatewayError on failure.
    probe() must be side-effect free and never raises.
    """

    @abc.abstractmethod
    async def probe(self) -> bool:
        ...

    @abc.abstractmethod
    async def list_columns(self, board_id: str, user_id: str) -> List[Column]:
        ...

    @abc.abstractmethod
    async def list_tasks(self, board_id: str, user_id: str) -> List[Task]:
        ...

    @abc.abstractmethod
    async def create_columns(self, columns: List[Column]) -> None:
        ...

    @abc.abstractmethod
    async def create_task(self, task: Task) -> None:
        ...

    @abc.abstractmethod
    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def delete_task(self, task_id: str) -> None:
        ...


class NullGateway(PersistenceGateway):
    """No persistence service: the board always runs in local-only mode."""

    async def probe(self) -> bool:
        return False

    def _unavailable(self):
        raise GatewayError("No persistence service configured")

    async def list_columns(self, board_id, user_id):
        self._unavailable()

    async def list_tasks(self, board_id, user_id):
        self._unavailable()

    async def create_columns(self, columns):
        self._unavailable()

    async def create_task(self, task):
        self._unavailable()

    async def update_task(self, task_id, fields):
        self._unavailable()

    async def delete_task(self, task_id):
        self._unavailable()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SqliteGateway(PersistenceGateway):
    """SQLite-backed gateway. Blocking sqlite3 calls run in a worker thread."""

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "boardsync" / "board.db")
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS columns (
                    id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    color TEXT DEFAULT '',
                    position INTEGER NOT NULL,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    column_id TEXT NOT NULL,
                    board_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    priority TEXT DEFAULT 'medium',
                    tags TEXT,  -- JSON list
                    ai_generated INTEGER DEFAULT 0,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (column_id) REFERENCES columns(id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_columns_board ON columns(board_id, user_id, position)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_board ON tasks(board_id, user_id, position)"
            )
            conn.commit()

    # ── blocking implementations ──

    def _probe(self) -> bool:
        with _connect(self.db_path) as conn:
            conn.execute("SELECT id FROM columns LIMIT 1").fetchall()
        return True

    def _list_columns(self, board_id: str, user_id: str) -> List[Column]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM columns WHERE board_id = ? AND user_id = ? ORDER BY position ASC",
                (board_id, user_id),
            ).fetchall()
        return [record_to_column(dict(r)) for r in rows]

    def _list_tasks(self, board_id: str, user_id: str) -> List[Task]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE board_id = ? AND user_id = ? ORDER BY position ASC",
                (board_id, user_id),
            ).fetchall()
        return [record_to_task(dict(r)) for r in rows]

    def _create_columns(self, columns: List[Column]) -> None:
        placeholders = ", ".join("?" for _ in COLUMN_FIELDS)
        with _connect(self.db_path) as conn:
            conn.executemany(
                f"INSERT INTO columns ({', '.join(COLUMN_FIELDS)}) VALUES ({placeholders})",
                [tuple(column_to_record(c)[k] for k in COLUMN_FIELDS) for c in columns],
            )
            conn.commit()

    def _create_task(self, task: Task) -> None:
        record = task_to_record(task)
        placeholders = ", ".join("?" for _ in TASK_FIELDS)
        with _connect(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO tasks ({', '.join(TASK_FIELDS)}) VALUES ({placeholders})",
                tuple(record[k] for k in TASK_FIELDS),
            )
            conn.commit()

    def _update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        encoded = encode_fields(fields)
        if not encoded:
            return
        assignments = ", ".join(f"{k} = ?" for k in encoded)
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*encoded.values(), task_id),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise GatewayError(f"Task {task_id} not found")

    def _delete_task(self, task_id: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise GatewayError(f"{func.__name__.lstrip('_')} failed: {e}") from e

    # ── async contract ──

    async def probe(self) -> bool:
        try:
            return await self._run(self._probe)
        except GatewayError as e:
            logger.warning(f"SQLite probe failed: {e}")
            return False

    async def list_columns(self, board_id, user_id):
        return await self._run(self._list_columns, board_id, user_id)

    async def list_tasks(self, board_id, user_id):
        return await self._run(self._list_tasks, board_id, user_id)

    async def create_columns(self, columns):
        await self._run(self._create_columns, list(columns))

    async def create_task(self, task):
        await self._run(self._create_task, task)

    async def update_task(self, task_id, fields):
        await self._run(self._update_task, task_id, dict(fields))

    async def delete_task(self, task_id):
        await self._run(self._delete_task, task_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REST
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class RestGateway(PersistenceGateway):
    """
    HTTP client for a remote board store.

    Endpoints (JSON):
        GET    /columns?board_id=&user_id=   → [column, ...]
        POST   /columns                      ← [column, ...]
        GET    /tasks?board_id=&user_id=     → [task, ...]
        POST   /tasks                        ← task
        PATCH  /tasks/<id>                   ← partial task
        DELETE /tasks/<id>
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GatewayError(f"{method} {path} failed: {e}") from e
        if not r.ok:
            raise GatewayError(f"{method} {path} returned HTTP {r.status_code}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise GatewayError(f"{method} {path} returned invalid JSON") from e

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def probe(self) -> bool:
        try:
            await self._call("GET", "/columns", params={"limit": 1})
            return True
        except GatewayError as e:
            logger.warning(f"REST probe failed: {e}")
            return False

    async def list_columns(self, board_id, user_id):
        rows = await self._call(
            "GET", "/columns", params={"board_id": board_id, "user_id": user_id}
        )
        columns = [record_to_column(r) for r in rows or []]
        return sorted(columns, key=lambda c: c.position)

    async def list_tasks(self, board_id, user_id):
        rows = await self._call(
            "GET", "/tasks", params={"board_id": board_id, "user_id": user_id}
        )
        tasks = [record_to_task(r) for r in rows or []]
        return sorted(tasks, key=lambda t: t.position)

    async def create_columns(self, columns):
        await self._call("POST", "/columns", json=[column_to_record(c) for c in columns])

    async def create_task(self, task):
        await self._call("POST", "/tasks", json=task_to_record(task))

    async def update_task(self, task_id, fields):
        await self._call("PATCH", f"/tasks/{task_id}", json=encode_fields(fields))

    async def delete_task(self, task_id):
        await self._call("DELETE", f"/tasks/{task_id}")
