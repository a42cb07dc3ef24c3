"""
Board entity schema.

Records:
  Board  → Column (ordered lanes, position = left-to-right)
         → Task   (ordered cards, position = top-to-bottom within a column)

Records are plain data. Ordering and referential rules are owned by
BoardStore; construction performs no validation (an empty title is legal).
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Iterable


DEFAULT_BOARD_ID = "board-1"


class Priority(Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_str(cls, value: Any) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            return cls.MEDIUM


def utc_now() -> datetime:
    """Current time, tz-aware UTC."""
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Sortable unique ID: ms timestamp + random hex."""
    ts = int(time.time() * 1000)
    return f"{prefix}-{ts}-{uuid.uuid4().hex[:8]}"


def dedupe_tags(tags: Iterable[Any]) -> List[str]:
    """Strip, drop blanks, drop duplicates (case-sensitive, first wins)."""
    seen = set()
    result = []
    for tag in tags or []:
        tag = str(tag).strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        result.append(tag)
    return result


def _parse_ts(value: Any) -> datetime:
    if not value:
        return utc_now()
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # Naive timestamps are stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _format_ts(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class Board:
    """Top-level container for one set of columns and tasks."""
    id: str
    name: str
    user_id: str
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "user_id": self.user_id,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            user_id=data.get("user_id", ""),
            description=data.get("description") or "",
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass
class Column:
    """An ordered status lane on a board."""
    id: str
    board_id: str
    name: str
    color: str                     # visual/status class, e.g. "#6366f1"
    position: int
    user_id: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "color": self.color,
            "position": self.position,
            "user_id": self.user_id,
            "created_at": _format_ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=data.get("id", ""),
            board_id=data.get("board_id", ""),
            name=data.get("name", ""),
            color=data.get("color", ""),
            position=int(data.get("position", 0)),
            user_id=data.get("user_id", ""),
            created_at=_parse_ts(data.get("created_at")),
        )


@dataclass
class Task:
    """A unit of work belonging to exactly one column."""

    # Identifiers
    id: str
    title: str
    column_id: str
    board_id: str

    # Ordering (dense, 0-based within column)
    position: int = 0

    # Content
    description: str = ""
    priority: Priority = Priority.MEDIUM
    tags: List[str] = field(default_factory=list)

    # Provenance
    ai_generated: bool = False
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        """Stamp updated_at, never earlier than created_at."""
        self.updated_at = max(utc_now(), self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "column_id": self.column_id,
            "board_id": self.board_id,
            "position": self.position,
            "priority": self.priority.value if isinstance(self.priority, Priority) else self.priority,
            "tags": list(self.tags),
            "ai_generated": self.ai_generated,
            "user_id": self.user_id,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            column_id=data.get("column_id", ""),
            board_id=data.get("board_id", ""),
            position=int(data.get("position", 0)),
            description=data.get("description") or "",
            priority=Priority.from_str(data.get("priority", "medium")),
            tags=list(data.get("tags") or []),
            ai_generated=bool(data.get("ai_generated", False)),
            user_id=data.get("user_id", ""),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass
class TaskDraft:
    """Structured task-creation request produced from free text."""
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    tags: List[str] = field(default_factory=list)
    heuristic: bool = False        # True when built by the fallback, not the model
