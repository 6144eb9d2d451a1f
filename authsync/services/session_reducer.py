"""
Session State Reducer.

Pure transition function from (current snapshot, provider event, logout
mode) to the next snapshot plus the side effects the caller must run.
Keeping the table here, free of I/O, makes every transition testable
without an event loop.

Transition table::

    logging out, any event              -> unchanged, discarded
    no session                          -> Unauthenticated, clear cache
    TOKEN_REFRESHED, same subject,
      profile present                   -> session replaced, no fetch
    any other event with a session      -> session replaced, fetch profile
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from authsync.models.enums import AuthEvent
from authsync.models.state import AuthStateChange, SessionSnapshot


class SessionTransition(BaseModel):
    """Result of reducing one provider event.

    Attributes
    ----------
    snapshot:
        State to install.
    fetch_subject_id:
        Subject whose profile must be (re)fetched, if any.
    clear_cache:
        The persistent profile cache must be cleared.
    discarded:
        The event arrived during sign-out and was ignored.
    """

    snapshot: SessionSnapshot
    fetch_subject_id: Optional[str] = None
    clear_cache: bool = False
    discarded: bool = False

    model_config = {"frozen": True}


def reduce_auth_event(
    state: SessionSnapshot,
    change: AuthStateChange,
    logging_out: bool,
) -> SessionTransition:
    """Compute the transition for *change* applied to *state*."""
    if logging_out:
        return SessionTransition(snapshot=state, discarded=True)

    session = change.session
    if session is None:
        return SessionTransition(
            snapshot=state.model_copy(
                update={
                    "session": None,
                    "profile": None,
                    "profile_error": None,
                    "loading": False,
                    "auth_loading": False,
                    "profile_loading": False,
                }
            ),
            clear_cache=True,
        )

    profile = state.profile
    if profile is not None and profile.subject_id != session.subject_id:
        profile = None

    same_subject = (
        state.session is not None and state.session.subject_id == session.subject_id
    )
    if change.event == AuthEvent.TOKEN_REFRESHED and same_subject and profile is not None:
        return SessionTransition(
            snapshot=state.model_copy(
                update={
                    "session": session,
                    "loading": False,
                    "auth_loading": False,
                }
            ),
        )

    return SessionTransition(
        snapshot=state.model_copy(
            update={
                "session": session,
                "profile": profile,
                "auth_loading": False,
                "profile_loading": True,
            }
        ),
        fetch_subject_id=session.subject_id,
    )
