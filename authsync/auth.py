"""
Authentication & Session State.

Provides an injectable ``SessionManager`` that holds the current
provider session, the derived profile and the loading flags for the
lifetime of one application instance.

The UI reads state and subscribes to changes; only ``SessionStore`` and
``LogoutCoordinator`` write to it.

Usage::

    from authsync.auth import SessionManager

    state = SessionManager()
    unsubscribe = state.subscribe(lambda snap: render(snap))
    snap = state.snapshot
"""

from __future__ import annotations

from typing import Callable, Optional

from authsync.models.enums import SessionPhase
from authsync.models.profile import Profile
from authsync.models.session import Session
from authsync.models.state import SessionSnapshot

StateListener = Callable[[SessionSnapshot], None]

_UNSET: object = object()


class SessionManager:
    """Injectable holder for the current session, profile and loading flags.

    Each instance maintains its own state, eliminating the need for
    module-level globals.  Pass a single ``SessionManager`` through your
    dependency-injection layer so every component shares the same state.
    """

    def __init__(self) -> None:
        self._snapshot: SessionSnapshot = SessionSnapshot()
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def session(self) -> Optional[Session]:
        return self._snapshot.session

    @property
    def profile(self) -> Optional[Profile]:
        return self._snapshot.profile

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    @property
    def auth_loading(self) -> bool:
        return self._snapshot.auth_loading

    @property
    def profile_loading(self) -> bool:
        return self._snapshot.profile_loading

    @property
    def phase(self) -> SessionPhase:
        return self._snapshot.phase

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* for every state change.

        Returns an idempotent unsubscribe handle.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Mutation (session core only)
    # ------------------------------------------------------------------

    def replace(self, snapshot: SessionSnapshot) -> None:
        """Install *snapshot* wholesale and notify listeners on change."""
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        self._notify()

    def update(
        self,
        *,
        session: object = _UNSET,
        profile: object = _UNSET,
        loading: Optional[bool] = None,
        auth_loading: Optional[bool] = None,
        profile_loading: Optional[bool] = None,
        profile_error: object = _UNSET,
    ) -> SessionSnapshot:
        """Apply the given field changes; omitted fields keep their value."""
        changes: dict[str, object] = {}
        if session is not _UNSET:
            changes["session"] = session
        if profile is not _UNSET:
            changes["profile"] = profile
        if loading is not None:
            changes["loading"] = loading
        if auth_loading is not None:
            changes["auth_loading"] = auth_loading
        if profile_loading is not None:
            changes["profile_loading"] = profile_loading
        if profile_error is not _UNSET:
            changes["profile_error"] = profile_error
        self.replace(self._snapshot.model_copy(update=changes))
        return self._snapshot

    def clear(self) -> None:
        """Remove session and profile, ending the session."""
        self.update(
            session=None,
            profile=None,
            profile_error=None,
            loading=False,
            profile_loading=False,
        )

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._snapshot)
