"""
Board state store: the single writer of a board's columns and tasks.

Every mutation is two steps:
  1. a synchronous state transition on the in-memory collections
     (callers see the result immediately), then
  2. a durability task dispatched on the running event loop and never
     awaited by the caller.

A failed write is logged and downgrades the store to local-only (demo)
mode for the rest of the session. The in-memory state always wins: there
is no rollback and no read-back after a failure.
A failure of a write issued before the current sign-in is only logged.

Known race: two quick edits of the same task issue two independent writes
and the slower one may land last. No ordering or versioning is applied.
"""
import asyncio
import copy
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .auth import AuthProvider, AuthState
from .fallback import MockBoard, generate_mock_board, rekey_tasks
from .gateway import PersistenceGateway
from .reorder import PositionChange, column_tasks, compute_move, reindex, resolve_drop
from .schema import (
    DEFAULT_BOARD_ID, Column, Priority, Task, dedupe_tags, make_id, utc_now,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"title", "description", "priority", "tags"})

DEFAULT_TASK_TITLE = "New Task"
DEFAULT_TASK_DESCRIPTION = "Click to edit this task"


class BoardError(Exception):
    """Base class for board store errors."""
    pass


class AuthenticationRequired(BoardError):
    """Raised when loading or mutating without a signed-in user."""
    pass


class UnknownColumn(BoardError):
    """Raised when a task would be created in a column that does not exist."""
    pass


class BoardStore:
    """In-memory board with optimistic, best-effort persistence."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        auth: Optional[AuthProvider] = None,
        board_id: str = DEFAULT_BOARD_ID,
        fallback: Callable[[str, str], MockBoard] = generate_mock_board,
    ):
        self.gateway = gateway
        self.auth = auth
        self.board_id = board_id
        self._fallback = fallback

        self._columns: List[Column] = []
        self._tasks: List[Task] = []
        self._user_id: Optional[str] = None
        self._loaded = False
        self._persistence_enabled = False
        self._degraded = False
        # Bumped on every load/reset; writes from an older session are stale
        self._generation = 0

        self._pending: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[bool], Any]] = []

        if auth is not None:
            auth.subscribe(self._on_auth_change)

    # ──────────────────────────────────────────
    # Read-only snapshots
    # ──────────────────────────────────────────

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence_enabled

    @property
    def demo_mode(self) -> bool:
        """True once loaded without working persistence."""
        return self._loaded and not self._persistence_enabled

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def columns(self) -> List[Column]:
        return copy.deepcopy(sorted(self._columns, key=lambda c: c.position))

    @property
    def tasks(self) -> List[Task]:
        """All tasks ordered by column position, then task position."""
        order = {c.id: c.position for c in self._columns}
        ordered = sorted(
            self._tasks,
            key=lambda t: (order.get(t.column_id, len(order)), t.position),
        )
        return copy.deepcopy(ordered)

    def tasks_for_column(self, column_id: str) -> List[Task]:
        return copy.deepcopy(column_tasks(self._tasks, column_id))

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._task(task_id)
        return copy.deepcopy(task) if task else None

    def first_column(self) -> Optional[Column]:
        """The column at position 0, else the leftmost one."""
        column = next((c for c in self._columns if c.position == 0), None)
        if column is None and self._columns:
            column = min(self._columns, key=lambda c: c.position)
        return copy.deepcopy(column) if column else None

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view for presentation layers."""
        return {
            "board_id": self.board_id,
            "demo_mode": self.demo_mode,
            "columns": [c.to_dict() for c in self.columns],
            "tasks": [t.to_dict() for t in self.tasks],
        }

    def subscribe(self, listener: Callable[[bool], Any]) -> None:
        """Register a listener called with demo_mode=True when the store degrades."""
        self._listeners.append(listener)

    # ──────────────────────────────────────────
    # Load / reset
    # ──────────────────────────────────────────

    async def load(self, user_id: Optional[str] = None) -> None:
        """
        Populate state for user_id (or the signed-in user).

        Falls back to the default board when persistence is unreachable,
        when listing fails, or when seeding the columns fails. Never raises
        for persistence problems.
        """
        if user_id is None and self.auth is not None and self.auth.current_user:
            user_id = self.auth.current_user.id
        if not user_id:
            raise AuthenticationRequired("Cannot load a board without a signed-in user")

        self._generation += 1
        self._user_id = user_id
        mock = self._fallback(user_id, self.board_id)

        self._persistence_enabled = await self._probe() and not self._degraded
        if not self._persistence_enabled:
            self._degrade("persistence service unavailable")
            self._install(mock.columns, mock.tasks)
            return

        columns = await self._fetch("list columns", self.gateway.list_columns, user_id)
        if columns is None:
            self._install(mock.columns, mock.tasks)
            return

        if not columns:
            # First visit: seed the default columns
            columns = mock.columns
            try:
                await self.gateway.create_columns(copy.deepcopy(columns))
                logger.info(f"Created {len(columns)} default columns for {user_id}")
            except Exception as e:
                self._write_failed("create columns", e)

        tasks = None
        if self._persistence_enabled:
            tasks = await self._fetch("list tasks", self.gateway.list_tasks, user_id)
        if tasks is None:
            tasks = rekey_tasks(mock.tasks, mock.columns, columns)

        self._install(columns, tasks)

    def reset(self) -> None:
        """Forget all board state (sign-out). In-flight writes are not cancelled."""
        self._columns = []
        self._tasks = []
        self._user_id = None
        self._loaded = False
        self._persistence_enabled = False
        self._degraded = False
        self._generation += 1

    async def _on_auth_change(self, state: AuthState) -> None:
        if state.user is not None:
            if state.user.id != self._user_id:
                self.reset()
            await self.load(state.user.id)
        else:
            self.reset()

    async def _probe(self) -> bool:
        try:
            return bool(await self.gateway.probe())
        except Exception as e:
            logger.warning(f"Persistence probe raised: {e}")
            return False

    async def _fetch(self, label: str, func: Callable, user_id: str) -> Optional[list]:
        try:
            return list(await func(self.board_id, user_id))
        except Exception as e:
            logger.warning(f"Failed to {label}: {e}")
            self._degrade(f"{label} failed")
            return None

    def _install(self, columns: List[Column], tasks: List[Task]) -> None:
        """Adopt loaded records, dropping orphans and closing position gaps."""
        self._columns = sorted(columns, key=lambda c: c.position)
        known = {c.id for c in self._columns}

        kept = []
        for task in tasks:
            if task.column_id not in known:
                logger.warning(f"Dropping task {task.id}: unknown column {task.column_id}")
                continue
            task.tags = dedupe_tags(task.tags)
            kept.append(task)
        self._tasks = kept

        repairs = []
        for column in self._columns:
            repairs.extend(reindex(column_tasks(self._tasks, column.id)))
        self._loaded = True

        if repairs:
            logger.info(f"Repairing {len(repairs)} task positions on load")
            self._persist_batch("repair positions", self._apply_changes(repairs))

        logger.info(
            f"Loaded board {self.board_id}: {len(self._columns)} columns, "
            f"{len(self._tasks)} tasks ({'demo' if self.demo_mode else 'persistent'} mode)"
        )

    # ──────────────────────────────────────────
    # Mutations (synchronous state, async durability)
    # ──────────────────────────────────────────

    def add_task(
        self,
        column_id: str,
        title: str = DEFAULT_TASK_TITLE,
        description: str = DEFAULT_TASK_DESCRIPTION,
        priority: Any = Priority.MEDIUM,
        tags: Optional[List[str]] = None,
        ai_generated: bool = False,
    ) -> Task:
        """Append a task at the tail of column_id."""
        user_id = self._require_user()
        column = self._column(column_id)
        if column is None:
            raise UnknownColumn(f"Column {column_id} not found")

        now = utc_now()
        task = Task(
            id=make_id("task"),
            title=title,
            column_id=column.id,
            board_id=column.board_id,
            position=sum(1 for t in self._tasks if t.column_id == column.id),
            description=description or "",
            priority=Priority.from_str(priority),
            tags=dedupe_tags(tags or []),
            ai_generated=ai_generated,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self._tasks.append(task)

        self._persist("create task", partial(self.gateway.create_task, copy.deepcopy(task)))
        return copy.deepcopy(task)

    def edit_task(self, task_id: str, **fields) -> Optional[Task]:
        """Overwrite editable fields and stamp updated_at. None if not found."""
        self._require_user()
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(
                f"Cannot edit {', '.join(sorted(unknown))}. "
                f"Editable: {', '.join(sorted(EDITABLE_FIELDS))}"
            )

        task = self._task(task_id)
        if task is None:
            return None

        if "priority" in fields:
            fields["priority"] = Priority.from_str(fields["priority"])
        if "tags" in fields:
            fields["tags"] = dedupe_tags(fields["tags"])
        if "description" in fields:
            fields["description"] = fields["description"] or ""

        for key, value in fields.items():
            setattr(task, key, value)
        task.touch()

        update = copy.deepcopy(dict(fields, updated_at=task.updated_at))
        self._persist("update task", partial(self.gateway.update_task, task_id, update))
        return copy.deepcopy(task)

    def add_tag(self, task_id: str, tag: str) -> Optional[Task]:
        self._require_user()
        task = self._task(task_id)
        if task is None:
            return None
        tag = tag.strip()
        if not tag or tag in task.tags:
            return copy.deepcopy(task)
        return self.edit_task(task_id, tags=task.tags + [tag])

    def remove_tag(self, task_id: str, tag: str) -> Optional[Task]:
        self._require_user()
        task = self._task(task_id)
        if task is None:
            return None
        if tag not in task.tags:
            return copy.deepcopy(task)
        return self.edit_task(task_id, tags=[t for t in task.tags if t != tag])

    def delete_task(self, task_id: str) -> bool:
        """Remove a task and close the gap it leaves in its column."""
        self._require_user()
        task = self._task(task_id)
        if task is None:
            return False

        self._tasks.remove(task)
        changes = reindex(column_tasks(self._tasks, task.column_id))
        calls = [partial(self.gateway.delete_task, task_id)] + self._apply_changes(changes)

        self._persist_batch("delete task", calls)
        return True

    def move_task(self, task_id: str, target_column_id: str,
                  target_index: int) -> List[PositionChange]:
        """
        Move a task (drag-and-drop). Returns the placement changes applied.

        Unknown task or column is a missed drop target: nothing happens.
        """
        self._require_user()
        if self._column(target_column_id) is None:
            logger.debug(f"Ignoring move of {task_id}: unknown column {target_column_id}")
            return []

        plan = compute_move(self._tasks, task_id, target_column_id, target_index)
        if plan is None or plan.is_noop:
            return []

        self._persist_batch("move task", self._apply_changes(plan.changes))
        return list(plan.changes)

    def drop(self, active_id: str, over_id: Optional[str]) -> List[PositionChange]:
        """Apply a raw drag outcome: over_id is a column or task ID (or None)."""
        self._require_user()
        target = resolve_drop(self._tasks, self._columns, active_id, over_id)
        if target is None:
            return []
        return self.move_task(active_id, *target)

    async def drain(self) -> None:
        """Wait for every in-flight durability task to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ──────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────

    def _require_user(self) -> str:
        if self.auth is not None and self.auth.current_user is None:
            raise AuthenticationRequired("No signed-in user")
        if self._user_id is None:
            raise AuthenticationRequired("Board has not been loaded for a user")
        return self._user_id

    def _task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self._tasks if t.id == task_id), None)

    def _column(self, column_id: str) -> Optional[Column]:
        return next((c for c in self._columns if c.id == column_id), None)

    def _apply_changes(self, changes: List[PositionChange]) -> List[Callable[[], Awaitable]]:
        """Apply placement changes in memory; return the matching write calls."""
        calls = []
        for change in changes:
            task = self._task(change.task_id)
            if task is None:
                continue
            task.column_id = change.column_id
            task.position = change.position
            task.touch()
            calls.append(partial(self.gateway.update_task, task.id, {
                "column_id": task.column_id,
                "position": task.position,
                "updated_at": task.updated_at,
            }))
        return calls

    def _persist(self, label: str, call: Callable[[], Awaitable]) -> None:
        self._persist_batch(label, [call])

    def _persist_batch(self, label: str, calls: List[Callable[[], Awaitable]]) -> None:
        """Dispatch writes as one fire-and-forget task; they run concurrently."""
        if not calls or not self._persistence_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            # Mutated outside the event loop: the write cannot be scheduled
            self._write_failed(label, e)
            return
        task = loop.create_task(self._write(label, calls, self._generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, label: str, calls: List[Callable[[], Awaitable]],
                     generation: int) -> None:
        results = await asyncio.gather(*(call() for call in calls), return_exceptions=True)
        for result in results:
            if not isinstance(result, Exception):
                continue
            if generation != self._generation:
                logger.warning(f"Stale write from an earlier session failed ({label}): {result}")
            else:
                self._write_failed(label, result)

    def _write_failed(self, label: str, error: Exception) -> None:
        logger.warning(f"Persistence write failed ({label}): {error}")
        self._degrade(f"{label} failed")

    def _degrade(self, reason: str) -> None:
        """Switch to local-only mode. One-way for the rest of the session."""
        self._persistence_enabled = False
        if self._degraded:
            return
        self._degraded = True
        logger.warning(f"Continuing in local-only mode: {reason}. Changes will not persist.")
        for listener in list(self._listeners):
            try:
                listener(True)
            except Exception as e:
                logger.error(f"Error in demo-mode listener: {e}")
