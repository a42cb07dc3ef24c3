"""
Reorder engine: pure ordering math for drag gestures. No I/O, no mutation.

Two cases:
  same column   - remove at old index, insert at new index, reindex the column
  across columns - append at the destination's tail, reindex the source

Positions are always reassigned from list indexes, so every column touched
by a move comes out dense (0..n-1) regardless of what it held before.

Cross-column drops only land on a column container; dropping onto a peer
task in another column is ignored. Mid-column insertion across columns is
out of scope.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, TypeVar

from .schema import Column, Task

T = TypeVar("T")


@dataclass(frozen=True)
class PositionChange:
    """New placement for one task."""
    task_id: str
    column_id: str
    position: int


@dataclass
class MovePlan:
    """Every placement change produced by one gesture."""
    task_id: str
    source_column_id: str
    target_column_id: str
    changes: List[PositionChange] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.changes

    @property
    def cross_column(self) -> bool:
        return self.source_column_id != self.target_column_id


def array_move(items: Sequence[T], old_index: int, new_index: int) -> List[T]:
    """Return a copy with the item at old_index moved to new_index."""
    result = list(items)
    item = result.pop(old_index)
    result.insert(new_index, item)
    return result


def column_tasks(tasks: Sequence[Task], column_id: str) -> List[Task]:
    """Tasks of one column in display order."""
    return sorted((t for t in tasks if t.column_id == column_id), key=lambda t: t.position)


def reindex(ordered: Sequence[Task], column_id: Optional[str] = None) -> List[PositionChange]:
    """
    Assign position = list index (and column_id, if given) to every task.

    Returns changes only for tasks whose placement actually differs.
    """
    changes = []
    for index, task in enumerate(ordered):
        target_column = column_id or task.column_id
        if task.position != index or task.column_id != target_column:
            changes.append(PositionChange(task.id, target_column, index))
    return changes


def compute_move(tasks: Sequence[Task], task_id: str, target_column_id: str,
                 target_index: int) -> Optional[MovePlan]:
    """
    Plan moving task_id to target_index of target_column_id.

    Returns None if task_id is unknown. Cross-column moves ignore
    target_index and append at the tail.
    """
    moving = next((t for t in tasks if t.id == task_id), None)
    if moving is None:
        return None

    plan = MovePlan(task_id, moving.column_id, target_column_id)

    if moving.column_id == target_column_id:
        ordered = column_tasks(tasks, target_column_id)
        old_index = next(i for i, t in enumerate(ordered) if t.id == task_id)
        new_index = max(0, min(target_index, len(ordered) - 1))
        if old_index == new_index:
            return plan
        plan.changes = reindex(array_move(ordered, old_index, new_index))
        return plan

    source = [t for t in column_tasks(tasks, moving.column_id) if t.id != task_id]
    destination = column_tasks(tasks, target_column_id)
    plan.changes = reindex(source) + [
        PositionChange(task_id, target_column_id, len(destination))
    ]
    return plan


def resolve_drop(tasks: Sequence[Task], columns: Sequence[Column], active_id: str,
                 over_id: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    Translate a drag outcome into (target_column_id, target_index).

    Returns None when the drop should be ignored: nothing under the pointer,
    unknown dragged task, or a task in a different column.
    """
    if not over_id:
        return None
    active = next((t for t in tasks if t.id == active_id), None)
    if active is None:
        return None

    column = next((c for c in columns if c.id == over_id), None)
    if column is not None:
        # Column container: tail of that column
        count = sum(1 for t in tasks if t.column_id == column.id)
        if column.id == active.column_id:
            return column.id, count - 1
        return column.id, count

    over = next((t for t in tasks if t.id == over_id), None)
    if over is None or over.column_id != active.column_id:
        return None
    ordered = column_tasks(tasks, active.column_id)
    return active.column_id, next(i for i, t in enumerate(ordered) if t.id == over.id)
