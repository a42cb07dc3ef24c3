"""
Default board used when persistence is unreachable (demo mode).

generate_mock_board() is pure: it returns fresh records and never touches
them again. IDs are unique within one call only ("col-<ms>-<slot>"), so two
outputs must not be merged into the same store without re-keying.
"""
import time
from dataclasses import dataclass, replace
from typing import List, NamedTuple

from .schema import Column, Task, Priority, utc_now


# (name, color) in left-to-right order
DEFAULT_COLUMNS = [
    ("To Do", "#6366f1"),
    ("In Progress", "#f59e0b"),
    ("Review", "#8b5cf6"),
    ("Done", "#22c55e"),
]


@dataclass(frozen=True)
class _Seed:
    title: str
    description: str
    priority: Priority
    tags: tuple
    ai_generated: bool = False


# One seed task per column, same order as DEFAULT_COLUMNS
SEED_TASKS = [
    _Seed(
        "Welcome to AI Task Board!",
        "This is your first AI-powered task. Try using the command bar below "
        "to create more tasks with natural language.",
        Priority.HIGH,
        ("welcome", "ai-generated"),
        ai_generated=True,
    ),
    _Seed(
        "Set up project requirements",
        "Define the scope and requirements for the new project",
        Priority.MEDIUM,
        ("planning", "requirements"),
    ),
    _Seed(
        "Code review for authentication",
        "Review the authentication implementation and security measures",
        Priority.HIGH,
        ("security", "review"),
    ),
    _Seed(
        "Deploy to production",
        "Successfully deployed the application to production environment",
        Priority.LOW,
        ("deployment", "completed"),
    ),
]


class MockBoard(NamedTuple):
    columns: List[Column]
    tasks: List[Task]


def generate_mock_board(user_id: str, board_id: str) -> MockBoard:
    """Four default columns plus one seed task per column, each at position 0."""
    stamp = int(time.time() * 1000)
    now = utc_now()

    columns = [
        Column(
            id=f"col-{stamp}-{slot}",
            board_id=board_id,
            name=name,
            color=color,
            position=slot,
            user_id=user_id,
            created_at=now,
        )
        for slot, (name, color) in enumerate(DEFAULT_COLUMNS)
    ]

    tasks = [
        Task(
            id=f"task-{stamp}-{slot}",
            title=seed.title,
            description=seed.description,
            column_id=columns[slot].id,
            board_id=board_id,
            position=0,
            priority=seed.priority,
            tags=list(seed.tags),
            ai_generated=seed.ai_generated,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        for slot, seed in enumerate(SEED_TASKS)
    ]

    return MockBoard(columns=columns, tasks=tasks)


def rekey_tasks(tasks: List[Task], source_columns: List[Column],
                target_columns: List[Column]) -> List[Task]:
    """
    Point tasks built against source_columns at target_columns instead,
    matching columns by position. Tasks whose column has no counterpart
    are dropped.
    """
    by_position = {c.position: c for c in target_columns}
    source_position = {c.id: c.position for c in source_columns}

    rekeyed = []
    for task in tasks:
        target = by_position.get(source_position.get(task.column_id))
        if target is None:
            continue
        rekeyed.append(replace(
            task,
            column_id=target.id,
            board_id=target.board_id,
            tags=list(task.tags),
        ))
    return rekeyed
