"""
Tests for AuthProvider: state and subscriber notification.
"""

import pytest

from boardsync.auth import AuthProvider, User


@pytest.mark.asyncio
async def test_sign_in_notifies_sync_and_async_subscribers():
    auth = AuthProvider()
    seen = []

    async def on_async(state):
        seen.append(("async", state.user))

    auth.subscribe(lambda state: seen.append(("sync", state.user)))
    auth.subscribe(on_async)

    user = User("u1", "Ada")
    await auth.sign_in(user)
    assert auth.current_user == user
    assert auth.state.authenticated
    assert seen == [("sync", user), ("async", user)]


@pytest.mark.asyncio
async def test_repeat_sign_in_is_silent():
    auth = AuthProvider()
    calls = []
    auth.subscribe(calls.append)
    await auth.sign_in(User("u1"))
    await auth.sign_in(User("u1"))
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_sign_out():
    auth = AuthProvider(User("u1"))
    calls = []
    auth.subscribe(calls.append)
    await auth.sign_out()
    assert auth.current_user is None
    assert calls[0].authenticated is False
    # Already signed out
    await auth.sign_out()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    auth = AuthProvider()
    calls = []
    unsubscribe = auth.subscribe(calls.append)
    unsubscribe()
    unsubscribe()
    await auth.sign_in(User("u1"))
    assert calls == []


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    auth = AuthProvider()
    calls = []

    def broken(state):
        raise RuntimeError("boom")

    auth.subscribe(broken)
    auth.subscribe(calls.append)
    await auth.sign_in(User("u1"))
    assert len(calls) == 1
