"""
Tests for BoardStore: loading, mutations, ordering and degraded mode.

Covers:
    - load()       — demo fallback, first-visit seeding, orphan/gap repair
    - mutations    — add/edit/tag/delete/move/drop, auth gating
    - durability   — optimistic state before writes land, one-way degrade
"""

import asyncio

import pytest

from boardsync.auth import AuthProvider, User
from boardsync.board import (
    AuthenticationRequired,
    BoardStore,
    DEFAULT_TASK_TITLE,
    UnknownColumn,
)
from boardsync.fallback import MockBoard
from boardsync.schema import Priority

from fakes import FakeGateway, make_column, make_task


def _columns():
    return [
        make_column("todo", "To Do", 0),
        make_column("doing", "In Progress", 1),
        make_column("done", "Done", 2),
    ]


async def _signed_in(gateway, **kwargs):
    auth = AuthProvider()
    store = BoardStore(gateway, auth=auth, **kwargs)
    await auth.sign_in(User("u1", "Ada"))
    return store, auth


def _positions(store, column_id):
    return [(t.id, t.position) for t in store.tasks_for_column(column_id)]


def _assert_dense(store):
    for column in store.columns:
        positions = [t.position for t in store.tasks_for_column(column.id)]
        assert positions == list(range(len(positions)))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Loading
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
class TestLoad:

    async def test_unavailable_service_installs_demo_board(self):
        gw = FakeGateway(available=False)
        auth = AuthProvider()
        store = BoardStore(gw, auth=auth)
        notices = []
        store.subscribe(notices.append)

        await auth.sign_in(User("u1"))

        assert store.demo_mode
        assert not store.persistence_enabled
        assert [c.name for c in store.columns] == ["To Do", "In Progress", "Review", "Done"]
        assert len(store.tasks) == 4
        assert notices == [True]
        assert gw.count("list_columns") == 0

    async def test_first_visit_seeds_default_columns(self, gateway):
        store, _ = await _signed_in(gateway)
        assert store.persistence_enabled
        assert not store.demo_mode
        assert gateway.count("create_columns") == 1
        assert [c.name for c in gateway.columns] == [c.name for c in store.columns]
        assert store.tasks == []

    async def test_existing_records_loaded(self):
        gw = FakeGateway(_columns(), [
            make_task("a", "todo", 0),
            make_task("b", "todo", 1),
            make_task("c", "done", 0),
        ])
        store, _ = await _signed_in(gw)
        assert _positions(store, "todo") == [("a", 0), ("b", 1)]
        assert gw.count("create_columns") == 0
        assert gw.count("update_task") == 0

    async def test_orphans_dropped_and_gaps_repaired(self):
        gw = FakeGateway(_columns(), [
            make_task("a", "todo", 0),
            make_task("b", "todo", 4),
            make_task("lost", "deleted-column", 0),
        ])
        store, _ = await _signed_in(gw)
        assert store.get_task("lost") is None
        assert _positions(store, "todo") == [("a", 0), ("b", 1)]

        await store.drain()
        assert gw.tasks["b"].position == 1

    async def test_tags_deduplicated_on_load(self):
        gw = FakeGateway(_columns(), [make_task("a", "todo", 0, tags=["x", " x", ""])])
        store, _ = await _signed_in(gw)
        assert store.get_task("a").tags == ["x"]

    async def test_list_tasks_failure_rekeys_demo_tasks(self):
        gw = FakeGateway(_columns(), fail={"list_tasks"})
        store, _ = await _signed_in(gw)
        assert store.demo_mode
        column_ids = {c.id for c in _columns()}
        assert store.tasks
        assert all(t.column_id in column_ids for t in store.tasks)

    async def test_seed_failure_degrades(self):
        gw = FakeGateway(fail={"create_columns"})
        store, _ = await _signed_in(gw)
        assert store.demo_mode
        assert len(store.columns) == 4
        assert gw.count("list_tasks") == 0

    async def test_load_requires_user(self, gateway):
        store = BoardStore(gateway)
        with pytest.raises(AuthenticationRequired):
            await store.load()

    async def test_sign_out_resets(self, gateway):
        store, auth = await _signed_in(gateway)
        await auth.sign_out()
        assert not store.loaded
        assert store.columns == []
        with pytest.raises(AuthenticationRequired):
            store.add_task("todo")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Mutations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
class TestMutations:

    async def _store(self, tasks=()):
        self.gw = FakeGateway(_columns(), list(tasks))
        self.store, self.auth = await _signed_in(self.gw)
        return self.store

    async def test_add_task_defaults(self):
        store = await self._store([make_task("a", "todo", 0)])
        task = store.add_task("todo")
        assert task.title == DEFAULT_TASK_TITLE
        assert task.position == 1
        assert task.user_id == "u1"
        assert task.priority is Priority.MEDIUM

    async def test_add_task_visible_before_write_lands(self):
        store = await self._store()
        task = store.add_task("doing", title="Ship", tags=["a", "a"], priority="high",
                              ai_generated=True)
        assert store.get_task(task.id).tags == ["a"]
        assert task.id not in self.gw.tasks

        await store.drain()
        stored = self.gw.tasks[task.id]
        assert stored.title == "Ship"
        assert stored.priority is Priority.HIGH
        assert stored.ai_generated is True

    async def test_add_task_unknown_column(self):
        store = await self._store()
        with pytest.raises(UnknownColumn):
            store.add_task("nope")

    async def test_returned_records_are_copies(self):
        store = await self._store([make_task("a", "todo", 0)])
        store.get_task("a").title = "hacked"
        store.tasks[0].position = 9
        assert store.get_task("a").title == "a"
        assert store.get_task("a").position == 0

    async def test_edit_task(self):
        store = await self._store([make_task("a", "todo", 0)])
        before = store.get_task("a")
        task = store.edit_task("a", title="New", priority="low", tags=["x", "x"])
        assert (task.title, task.priority, task.tags) == ("New", Priority.LOW, ["x"])
        assert task.updated_at > before.updated_at
        assert task.updated_at >= task.created_at

        await store.drain()
        assert self.gw.tasks["a"].title == "New"

    async def test_edit_rejects_structural_fields(self):
        store = await self._store([make_task("a", "todo", 0)])
        with pytest.raises(ValueError, match="position"):
            store.edit_task("a", position=3)

    async def test_edit_unknown_task(self):
        store = await self._store()
        assert store.edit_task("ghost", title="x") is None

    async def test_tags(self):
        store = await self._store([make_task("a", "todo", 0)])
        store.add_tag("a", " ui ")
        store.add_tag("a", "ui")
        store.add_tag("a", "  ")
        assert store.get_task("a").tags == ["ui"]
        store.remove_tag("a", "ui")
        store.remove_tag("a", "missing")
        assert store.get_task("a").tags == []

    async def test_delete_closes_gap(self):
        store = await self._store([
            make_task("a", "todo", 0),
            make_task("b", "todo", 1),
            make_task("c", "todo", 2),
        ])
        assert store.delete_task("a") is True
        assert _positions(store, "todo") == [("b", 0), ("c", 1)]

        await store.drain()
        assert "a" not in self.gw.tasks
        assert self.gw.count("delete_task") == 1
        assert self.gw.count("update_task") == 2

    async def test_delete_unknown(self):
        store = await self._store()
        assert store.delete_task("ghost") is False

    async def test_mutations_require_signed_in_user(self):
        store = await self._store([make_task("a", "todo", 0)])
        await self.auth.sign_out()
        for call in (
            lambda: store.add_task("todo"),
            lambda: store.edit_task("a", title="x"),
            lambda: store.delete_task("a"),
            lambda: store.move_task("a", "done", 0),
        ):
            with pytest.raises(AuthenticationRequired):
                call()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
class TestMoves:

    async def _store(self, tasks):
        self.gw = FakeGateway(_columns(), list(tasks))
        self.store, _ = await _signed_in(self.gw)
        return self.store

    async def test_reorder_within_column(self):
        """Dragging B above A swaps their positions"""
        store = await self._store([make_task("A", "todo", 0), make_task("B", "todo", 1)])
        store.move_task("B", "todo", 0)
        assert _positions(store, "todo") == [("B", 0), ("A", 1)]

        await store.drain()
        assert (self.gw.tasks["A"].position, self.gw.tasks["B"].position) == (1, 0)

    async def test_move_across_columns_appends_and_reindexes_source(self):
        store = await self._store([
            make_task("A", "todo", 0),
            make_task("B", "todo", 1),
            make_task("D", "done", 0),
        ])
        changes = store.move_task("A", "done", 0)

        assert _positions(store, "todo") == [("B", 0)]
        assert _positions(store, "done") == [("D", 0), ("A", 1)]
        assert {c.task_id for c in changes} == {"A", "B"}

        await store.drain()
        assert self.gw.tasks["A"].column_id == "done"
        assert self.gw.tasks["B"].position == 0

    async def test_repeated_move_is_idempotent(self):
        store = await self._store([make_task("A", "todo", 0), make_task("B", "todo", 1)])
        store.move_task("B", "todo", 0)
        await store.drain()
        writes = self.gw.count("update_task")

        assert store.move_task("B", "todo", 0) == []
        await store.drain()
        assert self.gw.count("update_task") == writes

    async def test_unknown_targets_ignored(self):
        store = await self._store([make_task("A", "todo", 0)])
        assert store.move_task("A", "nowhere", 0) == []
        assert store.move_task("ghost", "done", 0) == []
        assert _positions(store, "todo") == [("A", 0)]

    async def test_positions_stay_dense(self):
        store = await self._store([make_task(f"t{i}", "todo", i) for i in range(5)])
        store.move_task("t0", "doing", 0)
        store.move_task("t3", "todo", 0)
        store.move_task("t4", "done", 0)
        store.delete_task("t1")
        store.add_task("doing", title="late")
        store.move_task("t0", "doing", 5)
        _assert_dense(store)

    async def test_drop_on_column(self):
        store = await self._store([make_task("A", "todo", 0), make_task("B", "todo", 1)])
        store.drop("A", "doing")
        assert _positions(store, "doing") == [("A", 0)]

    async def test_drop_on_peer_task(self):
        store = await self._store([make_task("A", "todo", 0), make_task("B", "todo", 1)])
        store.drop("B", "A")
        assert _positions(store, "todo") == [("B", 0), ("A", 1)]

    async def test_drop_on_task_in_other_column_ignored(self):
        store = await self._store([make_task("A", "todo", 0), make_task("D", "done", 0)])
        assert store.drop("A", "D") == []
        assert store.drop("A", None) == []
        assert _positions(store, "todo") == [("A", 0)]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Degraded mode
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
class TestDegrade:

    async def test_write_failure_degrades_once_and_keeps_local_state(self):
        gw = FakeGateway(_columns(), [
            make_task("A", "todo", 0),
            make_task("B", "todo", 1),
        ], fail={"update_task"})
        store, _ = await _signed_in(gw)
        notices = []
        store.subscribe(notices.append)

        store.move_task("B", "todo", 0)
        store.edit_task("A", title="Still here")
        await store.drain()

        assert store.demo_mode
        assert notices == [True]
        assert _positions(store, "todo") == [("B", 0), ("A", 1)]
        assert store.get_task("A").title == "Still here"

        # No further writes once local-only
        calls = len(gw.calls)
        store.move_task("A", "done", 0)
        store.add_task("todo", title="offline")
        await store.drain()
        assert len(gw.calls) == calls
        assert notices == [True]

    async def test_demo_mode_needs_no_event_loop_writes(self):
        store, _ = await _signed_in(FakeGateway(available=False))
        task = store.add_task(store.first_column().id, title="local")
        assert store.get_task(task.id).title == "local"
        assert store._pending == set()

    async def test_sign_in_again_retries_persistence(self):
        gw = FakeGateway(_columns(), fail={"list_tasks"})
        store, auth = await _signed_in(gw)
        assert store.demo_mode

        gw.fail.clear()
        await auth.sign_out()
        await auth.sign_in(User("u1"))
        assert store.persistence_enabled

    async def test_custom_fallback(self):
        empty = lambda user_id, board_id: MockBoard([], [])
        store, _ = await _signed_in(FakeGateway(available=False), fallback=empty)
        assert store.columns == []
        assert store.first_column() is None

    async def test_snapshot(self):
        store, _ = await _signed_in(FakeGateway(available=False))
        snap = store.snapshot()
        assert snap["demo_mode"] is True
        assert len(snap["columns"]) == 4
        assert snap["tasks"][0]["title"] == "Welcome to AI Task Board!"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Session boundaries
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.asyncio
class TestSessions:

    async def test_stale_write_failure_spares_new_session(self):
        """A slow write from before sign-out fails after the next sign-in"""
        gw = FakeGateway(_columns(), [make_task("a", "todo", 0)],
                         fail={"update_task"}, delay=0.05)
        store, auth = await _signed_in(gw)
        notices = []
        store.subscribe(notices.append)

        store.edit_task("a", title="x")
        await auth.sign_out()
        await auth.sign_in(User("u1"))
        assert store.persistence_enabled

        await store.drain()
        assert gw.count("update_task") == 1
        assert store.persistence_enabled
        assert not store.demo_mode
        assert notices == []

    async def test_failure_in_current_session_still_degrades(self):
        gw = FakeGateway(_columns(), [make_task("a", "todo", 0)],
                         fail={"update_task"}, delay=0.01)
        store, _ = await _signed_in(gw)
        store.edit_task("a", title="x")
        await store.drain()
        assert store.demo_mode

    async def test_switching_user_probes_again(self):
        """u2 signing in over a degraded u1 session gets its own probe"""
        gw = FakeGateway(_columns(), fail={"list_tasks"})
        store, auth = await _signed_in(gw)
        assert store.demo_mode

        gw.fail.clear()
        notices = []
        store.subscribe(notices.append)
        await auth.sign_in(User("u2"))

        assert store.user_id == "u2"
        assert store.persistence_enabled
        assert all(c.user_id == "u2" for c in store.columns)
        assert notices == []

    async def test_switching_user_to_broken_service_notifies(self):
        gw = FakeGateway(_columns(), fail={"list_tasks"})
        store, auth = await _signed_in(gw)
        notices = []
        store.subscribe(notices.append)
        await auth.sign_in(User("u2"))
        assert store.demo_mode
        assert notices == [True]


def test_mutation_outside_event_loop_degrades():
    """With no running loop the write cannot be scheduled; local state is kept"""
    gw = FakeGateway(_columns())
    store = BoardStore(gw)
    asyncio.run(store.load("u1"))
    assert store.persistence_enabled

    task = store.add_task("todo", title="offline")

    assert store.demo_mode
    assert store.get_task(task.id).title == "offline"
    assert gw.count("create_task") == 0
