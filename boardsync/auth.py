"""
Authentication collaborator.

Holds the current user and notifies subscribers on sign-in / sign-out.
Subscribers may be plain callables or coroutine functions; both receive
the new AuthState.
"""
import inspect
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    id: str
    name: str = ""


@dataclass(frozen=True)
class AuthState:
    """Snapshot passed to subscribers. user is None when signed out."""
    user: Optional[User] = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None


class AuthProvider:
    """In-process auth state with change notification."""

    def __init__(self, user: Optional[User] = None):
        self._state = AuthState(user)
        self._subscribers: List[Callable] = []

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def current_user(self) -> Optional[User]:
        return self._state.user

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _emit(self) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(self._state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in auth state callback: {e}")

    async def sign_in(self, user: User) -> None:
        if self._state.user == user:
            return
        self._state = AuthState(user)
        logger.info(f"Signed in as {user.id}")
        await self._emit()

    async def sign_out(self) -> None:
        if self._state.user is None:
            return
        logger.info(f"Signed out {self._state.user.id}")
        self._state = AuthState(None)
        await self._emit()
