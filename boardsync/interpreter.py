"""
Natural-language command bridge for the board.

Turns free text plus board context into a structured TaskDraft by asking
the text generator for JSON:
  - "title", "description", "priority" (low|medium|high), "tags"

Failure handling:
  - generator raises           → CommandFailed, no task is created
  - response is not that shape → deterministic fallback draft

Also hosts the two other model-backed board actions: workflow suggestions
and "AI enhance" for a task description.
"""
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .board import BoardStore
from .llm import DEFAULT_MODEL, GenerationError, TextGenerator
from .schema import Column, Priority, Task, TaskDraft, dedupe_tags

logger = logging.getLogger(__name__)

MAX_FALLBACK_TITLE = 50
FALLBACK_DESCRIPTION = "This task was created by AI based on your natural language command."
FALLBACK_TAGS = ["ai-generated"]


class CommandFailed(Exception):
    """A command could not be carried out; nothing was changed."""
    pass


COMMAND_PROMPT = """Based on this command: "{command}", generate a task with title and description.
Context: This is for a project management board with columns: {columns}.
Current tasks: {tasks}.

Respond with JSON format: {{"title": "...", "description": "...", "priority": "low|medium|high", "tags": ["tag1", "tag2"]}}"""


SUGGESTIONS_PROMPT = """Based on this project management board state, suggest 3-4 workflow improvements:

Columns: {columns}
Tasks: {tasks}

Analyze the current workflow and suggest specific improvements like:
- Task organization optimizations
- Workflow bottlenecks to address
- Missing tasks that should be added
- Column rebalancing suggestions

Respond with JSON array format: [{{"type": "workflow|task|optimization|collaboration", "title": "...", "description": "...", "action": "...", "impact": "low|medium|high", "confidence": 0.85}}]"""


ENHANCE_PROMPT = """Rewrite the description of this task so it is clear and actionable.
Keep it under 400 characters. Respond with the description text only, no markdown.

Title: {title}
Current description: {description}
Priority: {priority}
Tags: {tags}"""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Prompt building and response parsing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _strip_fences(response: str) -> str:
    response = (response or "").strip()
    if response.startswith("```"):
        response = re.sub(r'^```(?:json)?\s*', '', response)
        response = re.sub(r'\s*```$', '', response)
    return response


def _load_json(response: str, pattern: str) -> Any:
    """json.loads, else the first block matching pattern, else None."""
    response = _strip_fences(response)
    try:
        return json.loads(response)
    except json.JSONDecodeError:
        match = re.search(pattern, response, re.DOTALL)
        if not match:
            return None
        try:
            return json.loads(match.group())
        except json.JSONDecodeError:
            return None


def _describe_tasks(tasks: Sequence[Task]) -> str:
    return ", ".join(t.title for t in tasks) or "none"


def build_command_prompt(free_text: str, columns: Sequence[Column],
                         tasks: Sequence[Task]) -> str:
    return COMMAND_PROMPT.format(
        command=free_text,
        columns=", ".join(c.name for c in columns) or "none",
        tasks=_describe_tasks(tasks),
    )


def parse_task_draft(response: str) -> Optional[TaskDraft]:
    """
    Parse a model response into a TaskDraft.

    Returns None when the response is not a JSON object with a string
    title. Missing or invalid optional fields get defaults.
    """
    data = _load_json(response, r'\{.*\}')
    if not isinstance(data, dict):
        return None

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    description = data.get("description")
    if not isinstance(description, str):
        description = ""

    tags = data.get("tags")
    if isinstance(tags, list):
        tags = dedupe_tags(t for t in tags if isinstance(t, (str, int, float)))
    else:
        tags = list(FALLBACK_TAGS)

    return TaskDraft(
        title=title.strip(),
        description=description.strip(),
        priority=Priority.from_str(data.get("priority")),
        tags=tags,
    )


def fallback_draft(free_text: str) -> TaskDraft:
    """Deterministic draft used when the model's answer is unusable."""
    text = free_text.strip()
    if len(text) > MAX_FALLBACK_TITLE:
        title = text[:MAX_FALLBACK_TITLE] + "..."
    else:
        title = text
    return TaskDraft(
        title=title,
        description=FALLBACK_DESCRIPTION,
        priority=Priority.MEDIUM,
        tags=list(FALLBACK_TAGS),
        heuristic=True,
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Workflow suggestions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SuggestionType(Enum):
    WORKFLOW = "workflow"
    TASK = "task"
    OPTIMIZATION = "optimization"
    COLLABORATION = "collaboration"


class Impact(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Suggestion:
    type: SuggestionType
    title: str
    description: str = ""
    action: str = ""
    impact: Impact = Impact.MEDIUM
    confidence: float = 0.5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["Suggestion"]:
        """Build from model JSON; None if the entry is unusable."""
        if not isinstance(data, dict):
            return None
        try:
            kind = SuggestionType(str(data.get("type", "")).lower())
        except ValueError:
            return None
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        try:
            impact = Impact(str(data.get("impact", "medium")).lower())
        except ValueError:
            impact = Impact.MEDIUM
        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        return cls(
            type=kind,
            title=title.strip(),
            description=str(data.get("description") or ""),
            action=str(data.get("action") or ""),
            impact=impact,
            confidence=max(0.0, min(1.0, confidence)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "action": self.action,
            "impact": self.impact.value,
            "confidence": self.confidence,
        }


def build_suggestions_prompt(columns: Sequence[Column], tasks: Sequence[Task]) -> str:
    names = {c.id: c.name for c in columns}
    described = ", ".join(
        f'"{t.title}" ({t.priority.value} priority, in {names.get(t.column_id, "?")})'
        for t in tasks
    )
    return SUGGESTIONS_PROMPT.format(
        columns=", ".join(c.name for c in columns) or "none",
        tasks=described or "none",
    )


def parse_suggestions(response: str) -> List[Suggestion]:
    """Parse a JSON array of suggestions, skipping malformed entries."""
    data = _load_json(response, r'\[.*\]')
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []
    suggestions = []
    for entry in data:
        suggestion = Suggestion.from_dict(entry)
        if suggestion is not None:
            suggestions.append(suggestion)
    return suggestions


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Interpreter
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CommandInterpreter:
    """Runs model-backed commands against a BoardStore."""

    def __init__(self, generator: TextGenerator, store: BoardStore,
                 model_hint: str = DEFAULT_MODEL):
        self.generator = generator
        self.store = store
        self.model_hint = model_hint

    async def _generate(self, prompt: str, what: str) -> str:
        try:
            return await self.generator.generate(prompt, self.model_hint)
        except GenerationError as e:
            logger.error(f"{what} failed: {e}")
            raise CommandFailed(f"{what} failed: {e}") from e

    async def interpret(self, free_text: str) -> TaskDraft:
        """Free text → TaskDraft. Raises CommandFailed if generation fails."""
        prompt = build_command_prompt(free_text, self.store.columns, self.store.tasks)
        response = await self._generate(prompt, "AI command")

        draft = parse_task_draft(response)
        if draft is None:
            logger.info("AI response was not a task object, using fallback draft")
            draft = fallback_draft(free_text)
        return draft

    async def run(self, free_text: str) -> Task:
        """Interpret free text and append the task to the first column."""
        if not free_text or not free_text.strip():
            raise CommandFailed("Empty command")

        draft = await self.interpret(free_text)

        # Columns may have changed while the model was thinking
        column = self.store.first_column()
        if column is None:
            raise CommandFailed("No columns available")

        task = self.store.add_task(
            column.id,
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            tags=draft.tags,
            ai_generated=True,
        )
        logger.info(f"AI task {task.id} created in {column.name}")
        return task

    async def suggest(self) -> List[Suggestion]:
        """Workflow suggestions for the current board; [] if unparseable."""
        prompt = build_suggestions_prompt(self.store.columns, self.store.tasks)
        response = await self._generate(prompt, "AI suggestions")
        suggestions = parse_suggestions(response)
        if not suggestions:
            logger.warning("AI suggestions response could not be parsed")
        return suggestions

    async def enhance(self, task_id: str) -> Optional[Task]:
        """Rewrite a task's description. None if the task does not exist."""
        task = self.store.get_task(task_id)
        if task is None:
            return None

        prompt = ENHANCE_PROMPT.format(
            title=task.title,
            description=task.description or "(none)",
            priority=task.priority.value,
            tags=", ".join(task.tags) or "none",
        )
        response = _strip_fences(await self._generate(prompt, "AI enhance"))
        if not response:
            return task
        return self.store.edit_task(task_id, description=response)
