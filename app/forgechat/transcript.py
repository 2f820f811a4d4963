"""
Purpose: Transcript store. Owns the set of sessions and their message lists.
Every operation is a pure value transformation over StoreState; the
TranscriptStore holder only serializes those transformations.

Invariants kept by every function here:
- sessions is never empty,
- active_session_id always resolves,
- session ids are never reused, message ids are unique within a session,
- message tuples only grow.

Testing: Plain unit tests; no I/O anywhere in this module.
"""

from __future__ import annotations
import threading
import time
import uuid
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

from .models import Message, Role, Session, SessionMode, SourceRef, StoreState
from .prompts.common import (
    DEFAULT_TITLE,
    TITLE_ELLIPSIS,
    TITLE_MAX_CHARS,
    UNTITLED_TITLE,
    WELCOME_TEXT,
    seed_text,
)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def new_id() -> str:
    return uuid.uuid4().hex


def new_message(
    role: Role,
    content: str,
    *,
    image: Optional[str] = None,
    grounding_links: Iterable[SourceRef] = (),
) -> Message:
    return Message(
        id=new_id(),
        role=Role(role),
        content=content,
        timestamp=now_ms(),
        image=image,
        grounding_links=tuple(grounding_links),
    )


def derive_title(text: str) -> str:
    """First TITLE_MAX_CHARS characters of the stripped text, '...' when cut."""
    t = (text or "").strip()
    if len(t) > TITLE_MAX_CHARS:
        return t[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return t


def _new_session(mode: SessionMode, greeting: str) -> Session:
    return Session(
        id=new_id(),
        title=DEFAULT_TITLE,
        mode=SessionMode(mode),
        messages=(new_message(Role.ASSISTANT, greeting),),
        created_at=now_ms(),
    )


def seed_state(default_mode: SessionMode = SessionMode.LUA) -> StoreState:
    """Fresh store holding one welcome session."""
    session = _new_session(default_mode, WELCOME_TEXT)
    return StoreState(sessions=(session,), active_session_id=session.id)


def find_session(state: StoreState, session_id: str) -> Optional[Session]:
    return next((s for s in state.sessions if s.id == session_id), None)


def active_session(state: StoreState) -> Session:
    return find_session(state, state.active_session_id) or state.sessions[0]


def _replace_session(state: StoreState, updated: Session) -> StoreState:
    return replace(
        state,
        sessions=tuple(updated if s.id == updated.id else s for s in state.sessions),
    )


def create_session(
    state: StoreState, default_mode: SessionMode = SessionMode.LUA
) -> tuple[StoreState, str]:
    """Insert a new session at the front and make it active."""
    taken = {s.id for s in state.sessions}
    session = _new_session(default_mode, seed_text(default_mode))
    while session.id in taken:
        session = replace(session, id=new_id())
    new_state = StoreState(
        sessions=(session,) + state.sessions, active_session_id=session.id
    )
    return new_state, session.id


def delete_session(
    state: StoreState,
    session_id: str,
    default_mode: SessionMode = SessionMode.LUA,
) -> StoreState:
    if find_session(state, session_id) is None:
        return state

    remaining = tuple(s for s in state.sessions if s.id != session_id)
    if not remaining:
        new_state, _ = create_session(
            StoreState(sessions=(), active_session_id=""), default_mode
        )
        return new_state

    active_id = state.active_session_id
    if active_id not in {s.id for s in remaining}:
        active_id = remaining[0].id
    return StoreState(sessions=remaining, active_session_id=active_id)


def append_messages(
    state: StoreState, session_id: str, messages: Iterable[Message]
) -> StoreState:
    """Append in order; auto-title while the title is still the placeholder.

    Unknown session ids are ignored.
    """
    session = find_session(state, session_id)
    if session is None:
        return state

    new_messages = tuple(messages)
    if not new_messages:
        return state

    title = session.title
    if title == DEFAULT_TITLE:
        first_user = next(
            (
                m.content
                for m in new_messages
                if m.role == Role.USER and (m.content or "").strip()
            ),
            None,
        )
        if first_user is not None:
            title = derive_title(first_user)

    taken = {m.id for m in session.messages}
    unique = []
    for m in new_messages:
        while m.id in taken:
            m = replace(m, id=new_id())
        taken.add(m.id)
        unique.append(m)

    updated = replace(session, title=title, messages=session.messages + tuple(unique))
    return _replace_session(state, updated)


def rename_session(state: StoreState, session_id: str, title: str) -> StoreState:
    session = find_session(state, session_id)
    if session is None:
        return state
    clean = (title or "").strip() or UNTITLED_TITLE
    return _replace_session(state, replace(session, title=clean))


def set_mode(state: StoreState, session_id: str, mode: SessionMode) -> StoreState:
    session = find_session(state, session_id)
    if session is None:
        return state
    return _replace_session(state, replace(session, mode=SessionMode(mode)))


def set_active(state: StoreState, session_id: str) -> StoreState:
    if find_session(state, session_id) is None:
        return state
    return replace(state, active_session_id=session_id)


class TranscriptStore:
    """Holds the current StoreState; applies one pure transition at a time."""

    def __init__(self, state: StoreState) -> None:
        self._state = state
        self.lock = threading.RLock()

    def snapshot(self) -> StoreState:
        with self.lock:
            return self._state

    def mutate(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Apply fn(state, *args, **kwargs) as one read-modify-write step.
        fn returns either the new state or (new_state, extra); extra is
        returned to the caller.
        """
        with self.lock:
            result = fn(self._state, *args, **kwargs)
            if isinstance(result, tuple):
                self._state, extra = result
                return extra
            self._state = result
            return None
