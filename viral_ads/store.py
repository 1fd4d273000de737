from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from .models import AdSet, Session
from .navigation import NavigationState, VersionCursor, dump_navigation, load_navigation
from .storage import NAVIGATION_KEY, LocalStore, read_sessions, write_sessions
from .version_tree import Sessions, find_ad_set, find_session


class SessionStore:
    """
    The one shared, mutable home of the session history and navigation state.

    open() loads both from the local store and close() flushes them a last time.
    Everything else changes state through apply(), which swaps in the
    collection returned by a pure version_tree operation and then persists it.
    Updates arriving after close() are dropped.
    """

    def __init__(self, backend: LocalStore) -> None:
        self.backend = backend
        self._sessions: Sessions = ()
        self._navigation = NavigationState()
        self._open = False

    # -- lifecycle ----------------------------------------------------------

    def open(self) -> "SessionStore":
        self._sessions = read_sessions(self.backend)
        self._navigation = load_navigation(self.backend.get_item(NAVIGATION_KEY))
        self._open = True
        return self

    def close(self) -> None:
        if not self._open:
            return
        self._persist()
        self._open = False

    def __enter__(self) -> "SessionStore":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    # -- state --------------------------------------------------------------

    @property
    def sessions(self) -> Sessions:
        return self._sessions

    @property
    def navigation(self) -> NavigationState:
        return self._navigation

    def apply(self, op: Callable[[Sessions], Sessions]) -> Sessions:
        """Replace the history with op(history) and persist it."""
        if not self._open:
            logging.info("Store is closed; discarding late update.")
            return self._sessions
        updated = op(self._sessions)
        if updated is not self._sessions:
            self._sessions = updated
            self._persist_sessions()
        return self._sessions

    def navigate(self, fn: Callable[[NavigationState], NavigationState]) -> NavigationState:
        if not self._open:
            return self._navigation
        updated = fn(self._navigation)
        if updated != self._navigation:
            self._navigation = updated
            self._persist_navigation()
        return self._navigation

    # -- selection helpers --------------------------------------------------

    def active_session(self) -> Optional[Session]:
        return find_session(self._sessions, self._navigation.session_id)

    def active_ad_set(self) -> Optional[AdSet]:
        return find_ad_set(self.active_session(), self._navigation.ad_set_id)

    def active_cursor(self) -> Tuple[Optional[AdSet], VersionCursor]:
        """The selected ad set with the cursor synced to its current length."""
        ad_set = self.active_ad_set()
        if ad_set is None:
            return None, self._navigation.cursor
        cursor = self._navigation.cursor.sync(len(ad_set.ads))
        if cursor != self._navigation.cursor:
            self.navigate(lambda nav: nav.with_cursor(cursor))
        return ad_set, cursor

    # -- persistence --------------------------------------------------------

    def _persist(self) -> None:
        self._persist_sessions()
        self._persist_navigation()

    def _persist_sessions(self) -> None:
        write_sessions(self.backend, self._sessions)

    def _persist_navigation(self) -> None:
        try:
            self.backend.set_item(NAVIGATION_KEY, dump_navigation(self._navigation))
        except OSError as exc:
            logging.warning("Could not save navigation state: %s", exc)


def open_store(path, quota_bytes: int) -> SessionStore:
    return SessionStore(LocalStore(path, quota_bytes=quota_bytes)).open()

