"""
Telegram front end for a board.

Commands:
    /board                          — show columns and tasks
    /add <column> <title…>          — add a task at the bottom of a column
    /move <task> <column> [index]   — move a task (index is 1-based)
    /done <task>                    — move a task to the last column
    /delete <task>                  — delete a task
    /tag <task> <tag>               — add a tag
    /untag <task> <tag>             — remove a tag
    /enhance <task>                 — rewrite the description with AI
    /suggest                        — AI workflow suggestions
    /help                           — this message
    <free text>                     — create a task from natural language

<task> is the number shown by /board or a task ID; <column> is a column
name (case-insensitive, prefix ok), its number, or its ID.

Dependencies:
    pip install python-telegram-bot==20.* pyyaml requests
"""
import logging
import sys
from typing import List, Optional, Sequence

from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from .auth import AuthProvider, User
from .board import BoardError, BoardStore
from .config import BoardConfig, build_gateway, build_generator
from .interpreter import CommandFailed, CommandInterpreter, Suggestion
from .schema import Column, Priority, Task

logger = logging.getLogger(__name__)

DEMO_BANNER = "⚠️ Running in demo mode - data will not persist"

PRIORITY_ICONS = {
    Priority.HIGH: "🔴",
    Priority.MEDIUM: "🟡",
    Priority.LOW: "🔵",
}

BOT_COMMANDS = [
    ("board", "Show the board"),
    ("add", "Add a task: /add <column> <title>"),
    ("move", "Move a task: /move <task> <column> [index]"),
    ("done", "Move a task to the last column"),
    ("delete", "Delete a task"),
    ("tag", "Tag a task: /tag <task> <tag>"),
    ("untag", "Remove a tag: /untag <task> <tag>"),
    ("enhance", "Rewrite a task description with AI"),
    ("suggest", "AI workflow suggestions"),
    ("help", "Show available commands"),
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Formatting and lookup helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def truncate(text: str, max_chars: int = 3500) -> str:
    """Truncate text to fit in a single Telegram message (4096 char limit)."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n…[truncated, {len(text) - max_chars} chars omitted]"


def format_task(task: Task, number: Optional[int] = None) -> str:
    """One-line task summary."""
    prefix = f"{number}. " if number is not None else ""
    icon = PRIORITY_ICONS.get(task.priority, "⚪")
    line = f"{prefix}{icon} {task.title or '(untitled)'}"
    if task.ai_generated:
        line += " ✨"
    if task.tags:
        line += "  " + " ".join(f"#{t}" for t in task.tags)
    return line


def format_board(columns: Sequence[Column], tasks: Sequence[Task],
                 demo_mode: bool = False) -> str:
    """Render the board as text. Task numbers follow the order of `tasks`."""
    if not columns:
        return "No columns available."

    numbers = {t.id: i + 1 for i, t in enumerate(tasks)}
    lines = [DEMO_BANNER, ""] if demo_mode else []
    for column in columns:
        in_column = sorted((t for t in tasks if t.column_id == column.id),
                           key=lambda t: t.position)
        lines.append(f"📋 {column.name} ({len(in_column)})")
        if not in_column:
            lines.append("   —")
        for task in in_column:
            lines.append("   " + format_task(task, numbers[task.id]))
        lines.append("")
    return "\n".join(lines).rstrip()


def format_suggestions(suggestions: Sequence[Suggestion]) -> str:
    if not suggestions:
        return "No suggestions right now."
    lines = ["💡 Suggestions:"]
    for s in suggestions:
        lines.append(f"• [{s.type.value}] {s.title} ({s.impact.value} impact, {s.confidence:.0%})")
        if s.description:
            lines.append(f"  {s.description}")
        if s.action:
            lines.append(f"  ↳ {s.action}")
    return "\n".join(lines)


def resolve_task(tasks: Sequence[Task], ref: str) -> Optional[Task]:
    """Find a task by board number, full ID, or unique ID suffix."""
    ref = ref.strip()
    if ref.isdigit():
        index = int(ref) - 1
        return tasks[index] if 0 <= index < len(tasks) else None
    exact = next((t for t in tasks if t.id == ref), None)
    if exact:
        return exact
    matches = [t for t in tasks if t.id.endswith(ref)]
    return matches[0] if len(matches) == 1 else None


def resolve_column(columns: Sequence[Column], ref: str) -> Optional[Column]:
    """Find a column by number, ID, exact name, or unique name prefix."""
    ref = ref.strip()
    if ref.isdigit():
        index = int(ref) - 1
        return columns[index] if 0 <= index < len(columns) else None
    lowered = ref.lower()
    for column in columns:
        if column.id == ref or column.name.lower() == lowered:
            return column
    # Spaces, dashes and underscores are ignored: "todo" finds "To Do"
    compact = lowered.replace("-", "").replace("_", "").replace(" ", "")
    if not compact:
        return None
    matches = [c for c in columns if c.name.lower().replace(" ", "").startswith(compact)]
    return matches[0] if len(matches) == 1 else None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Bot
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardBot:
    """
    Telegram bot bound to one BoardStore.

    Only users in bot.allowed_users may talk to it. The board is loaded
    when the configured owner is signed in at startup.
    """

    def __init__(self, cfg: BoardConfig, store: Optional[BoardStore] = None,
                 interpreter: Optional[CommandInterpreter] = None,
                 auth: Optional[AuthProvider] = None):
        self.cfg = cfg
        if auth is None:
            auth = store.auth if store is not None and store.auth else AuthProvider()
        self.auth = auth
        self.store = store or BoardStore(build_gateway(cfg), auth=self.auth,
                                         board_id=cfg.board_id)
        if interpreter is None:
            generator = build_generator(cfg)
            if generator is not None:
                interpreter = CommandInterpreter(generator, self.store, cfg.llm_model)
        self.interpreter = interpreter
        self._demo_notice_pending = False
        self.store.subscribe(self._on_demo_mode)

    def _on_demo_mode(self, demo_mode: bool):
        self._demo_notice_pending = demo_mode

    # ──────────────────────────────────────────
    # Auth + reply helpers
    # ──────────────────────────────────────────

    def _is_authorized(self, update: Update) -> bool:
        return self.cfg.is_authorized(update.effective_user.id)

    async def _reject_unauthorized(self, update: Update):
        user = update.effective_user
        logger.warning(
            f"Unauthorized access attempt: user_id={user.id}, "
            f"username={user.username}, name={user.full_name}"
        )
        await update.message.reply_text("⛔ Unauthorized. This incident has been logged.")

    async def _reply(self, update: Update, text: str):
        if self._demo_notice_pending:
            self._demo_notice_pending = False
            if not text.startswith(DEMO_BANNER):
                text = f"{DEMO_BANNER}\n\n{text}"
        await update.message.reply_text(truncate(text))

    def _task_arg(self, ref: str) -> Optional[Task]:
        return resolve_task(self.store.tasks, ref)

    def _column_arg(self, ref: str) -> Optional[Column]:
        return resolve_column(self.store.columns, ref)

    async def _guarded(self, update: Update, args: List[str], usage: str,
                       min_args: int) -> bool:
        """Authorization + argument count check shared by command handlers."""
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return False
        if len(args) < min_args:
            await self._reply(update, f"Usage: {usage}")
            return False
        return True

    # ──────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────

    async def handle_board(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guarded(update, [], "/board", 0):
            return
        await self._reply(update, format_board(
            self.store.columns, self.store.tasks, self.store.demo_mode
        ))

    async def handle_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if not await self._guarded(update, args, "/add <column> <title>", 2):
            return
        column = self._column_arg(args[0])
        if column is None:
            await self._reply(update, f"❌ Unknown column: {args[0]}")
            return
        try:
            task = self.store.add_task(column.id, title=" ".join(args[1:]))
        except BoardError as e:
            await self._reply(update, f"❌ {e}")
            return
        await self._reply(update, f"✅ Added to {column.name}: {task.title}")

    async def handle_move(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if not await self._guarded(update, args, "/move <task> <column> [index]", 2):
            return
        task = self._task_arg(args[0])
        column = self._column_arg(args[1])
        if task is None or column is None:
            await self._reply(update, "❌ Unknown task or column.")
            return

        index = len(self.store.tasks_for_column(column.id))
        if len(args) > 2:
            try:
                index = int(args[2]) - 1
            except ValueError:
                await self._reply(update, "❌ Index must be a number.")
                return

        try:
            changes = self.store.move_task(task.id, column.id, index)
        except BoardError as e:
            await self._reply(update, f"❌ {e}")
            return
        if not changes:
            await self._reply(update, "ℹ️ Nothing to move.")
            return
        moved = self.store.get_task(task.id)
        await self._reply(
            update, f"↔️ {moved.title} → {column.name} (position {moved.position + 1})"
        )

    async def handle_done(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if not await self._guarded(update, args, "/done <task>", 1):
            return
        task = self._task_arg(args[0])
        columns = self.store.columns
        if task is None or not columns:
            await self._reply(update, f"❌ Unknown task: {args[0]}")
            return
        last = columns[-1]
        try:
            changes = self.store.move_task(
                task.id, last.id, len(self.store.tasks_for_column(last.id))
            )
        except BoardError as e:
            await self._reply(update, f"❌ {e}")
            return
        if not changes:
            await self._reply(update, "ℹ️ Nothing to move.")
            return
        await self._reply(update, f"✅ {task.title} → {last.name}")

    async def handle_delete(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if not await self._guarded(update, args, "/delete <task>", 1):
            return
        task = self._task_arg(args[0])
        if task is None:
            await self._reply(update, f"❌ Unknown task: {args[0]}")
            return
        try:
            self.store.delete_task(task.id)
        except BoardError as e:
            await self._reply(update, f"❌ {e}")
            return
        await self._reply(update, f"🗑 Deleted: {task.title}")

    async def _handle_tag(self, update: Update, context: ContextTypes.DEFAULT_TYPE,
                          remove: bool):
        args = context.args or []
        usage = "/untag <task> <tag>" if remove else "/tag <task> <tag>"
        if not await self._guarded(update, args, usage, 2):
            return
        task = self._task_arg(args[0])
        if task is None:
            await self._reply(update, f"❌ Unknown task: {args[0]}")
            return
        tag = " ".join(args[1:])
        try:
            if remove:
                updated = self.store.remove_tag(task.id, tag)
            else:
                updated = self.store.add_tag(task.id, tag)
        except BoardError as e:
            await self._reply(update, f"❌ {e}")
            return
        await self._reply(update, format_task(updated))

    async def handle_tag(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._handle_tag(update, context, remove=False)

    async def handle_untag(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._handle_tag(update, context, remove=True)

    async def handle_enhance(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = context.args or []
        if not await self._guarded(update, args, "/enhance <task>", 1):
            return
        if self.interpreter is None:
            await self._reply(update, "❌ AI is not configured (llm.url).")
            return
        task = self._task_arg(args[0])
        if task is None:
            await self._reply(update, f"❌ Unknown task: {args[0]}")
            return
        try:
            updated = await self.interpreter.enhance(task.id)
        except (CommandFailed, BoardError) as e:
            await self._reply(update, f"❌ {e}")
            return
        if updated is None:
            await self._reply(update, "❌ Task was deleted.")
            return
        await self._reply(update, f"✨ {updated.title}\n\n{updated.description}")

    async def handle_suggest(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guarded(update, [], "/suggest", 0):
            return
        if self.interpreter is None:
            await self._reply(update, "❌ AI is not configured (llm.url).")
            return
        try:
            suggestions = await self.interpreter.suggest()
        except CommandFailed as e:
            await self._reply(update, f"❌ Failed to refresh AI suggestions: {e}")
            return
        await self._reply(update, format_suggestions(suggestions))

    async def handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Free text → AI-created task."""
        if not await self._guarded(update, [], "", 0):
            return
        if self.interpreter is None:
            await self._reply(update, "❌ AI is not configured (llm.url).")
            return
        try:
            task = await self.interpreter.run(update.message.text or "")
        except (CommandFailed, BoardError) as e:
            await self._reply(update, f"❌ Failed to create AI task: {e}")
            return
        await self._reply(update, f"✨ AI task created!\n{format_task(task)}")

    async def handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._guarded(update, [], "/help", 0):
            return
        lines = ["Board commands:", ""]
        for name, desc in BOT_COMMANDS:
            lines.append(f"/{name} — {desc}")
        lines.append("")
        lines.append("Anything else you type becomes a task.")
        await self._reply(update, "\n".join(lines))

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def register_handlers(self, app: Application):
        app.add_handler(CommandHandler("help", self.handle_help))
        app.add_handler(CommandHandler("start", self.handle_help))
        app.add_handler(CommandHandler("board", self.handle_board))
        app.add_handler(CommandHandler("add", self.handle_add))
        app.add_handler(CommandHandler("move", self.handle_move))
        app.add_handler(CommandHandler("done", self.handle_done))
        app.add_handler(CommandHandler("delete", self.handle_delete))
        app.add_handler(CommandHandler("tag", self.handle_tag))
        app.add_handler(CommandHandler("untag", self.handle_untag))
        app.add_handler(CommandHandler("enhance", self.handle_enhance))
        app.add_handler(CommandHandler("suggest", self.handle_suggest))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.handle_text))

    async def post_init(self, app: Application):
        """Set the command menu and sign in the board owner (loads the board)."""
        await app.bot.set_my_commands([BotCommand(n, d[:256]) for n, d in BOT_COMMANDS])
        await self.auth.sign_in(User(self.cfg.user_id, self.cfg.user_name))

    async def post_shutdown(self, app: Application):
        await self.store.drain()
        await self.auth.sign_out()

    def run(self):
        """Build Telegram Application, register handlers, and start polling."""
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [boardsync] %(levelname)s: %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )
        app = (
            Application.builder()
            .token(self.cfg.bot_token())
            .post_init(self.post_init)
            .post_shutdown(self.post_shutdown)
            .build()
        )
        self.register_handlers(app)
        logger.info(f"Starting board bot for {self.cfg.board_id}…")
        app.run_polling(drop_pending_updates=True)
