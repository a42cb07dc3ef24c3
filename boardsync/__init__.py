# Board sync: a kanban board with optimistic local state and best-effort persistence
#
# Components:
#   schema.py          - Data model (Board, Column, Task, TaskDraft, Priority)
#   fallback.py        - Default demo board used when persistence is unavailable
#   gateway.py         - Persistence contract + SQLite / REST / null implementations
#   reorder.py         - Pure ordering math for drag-and-drop moves
#   board.py           - BoardStore: in-memory state, fire-and-forget writes
#   auth.py            - Signed-in user and change notification
#   llm.py             - Text-generation client
#   interpreter.py     - Natural-language commands, suggestions, AI enhance
#   config.py          - YAML config + collaborator factories
#   telegram_bridge.py - Telegram front end
