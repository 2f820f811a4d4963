"""
Purpose: Session transcript storage in a single durable slot (a JSON file).
Why: Reopen sessions after a restart without any server-side state.

What is inside:
dump_state / parse_state codec for the slot payload.
JsonFileSessionStore: load/save against one file, atomic replace on write.
InMemorySessionStore: same contract, payload kept in memory.

Contract: load() never raises (absent or malformed slot -> None) and save()
never raises (failures are logged, False returned).

Testing:
In-memory: round-trip and corruption tests.
File: tmp_path fixture; unwritable paths.
"""

from __future__ import annotations
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from ..errors import PersistenceFailure
from ..models import (
    Message,
    Role,
    Session,
    SessionMode,
    SourceKind,
    SourceRef,
    StoreState,
)

logger = logging.getLogger(__name__)

_LEGACY_LINK_KEYS = {"web": SourceKind.WEB, "maps": SourceKind.MAP}


def _link_to_dict(link: SourceRef) -> dict[str, Any]:
    return {"uri": link.uri, "title": link.title, "kind": link.kind.value}


def _message_to_dict(msg: Message) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": msg.id,
        "role": msg.role.value,
        "content": msg.content,
        "timestamp": msg.timestamp,
        "groundingLinks": [_link_to_dict(g) for g in msg.grounding_links],
    }
    if msg.image is not None:
        data["image"] = msg.image
    return data


def _session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "mode": session.mode.value,
        "messages": [_message_to_dict(m) for m in session.messages],
        "createdAt": session.created_at,
    }


def dump_state(state: StoreState) -> str:
    """Serialize the store as a JSON array of sessions (most-recent-first)."""
    return json.dumps(
        [_session_to_dict(s) for s in state.sessions], ensure_ascii=False
    )


def _require_str(obj: dict, key: str) -> str:
    value = obj[key]
    if not isinstance(value, str):
        raise TypeError(f"{key!r} must be a string")
    return value


def _require_int(obj: dict, key: str) -> int:
    value = obj[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key!r} must be a number")
    return int(value)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise TypeError("expected a string or null")


def _parse_link(raw: Any) -> Optional[SourceRef]:
    if not isinstance(raw, dict):
        raise TypeError("grounding link must be an object")

    # {"web": {"uri": ..., "title": ...}} as written by older clients
    for key, kind in _LEGACY_LINK_KEYS.items():
        if isinstance(raw.get(key), dict):
            inner = raw[key]
            return SourceRef(
                uri=_optional_str(inner.get("uri")),
                title=_optional_str(inner.get("title")),
                kind=kind,
            )
    if "kind" not in raw and "uri" not in raw:
        return None
    return SourceRef(
        uri=_optional_str(raw.get("uri")),
        title=_optional_str(raw.get("title")),
        kind=SourceKind(raw.get("kind", SourceKind.WEB.value)),
    )


def _parse_message(raw: Any) -> Message:
    if not isinstance(raw, dict):
        raise TypeError("message must be an object")
    links = raw.get("groundingLinks") or []
    if not isinstance(links, list):
        raise TypeError("groundingLinks must be an array")
    return Message(
        id=_require_str(raw, "id"),
        role=Role(raw["role"]),
        content=_require_str(raw, "content"),
        timestamp=_require_int(raw, "timestamp"),
        image=_optional_str(raw.get("image")),
        grounding_links=tuple(
            link for link in (_parse_link(g) for g in links) if link is not None
        ),
    )


def _parse_session(raw: Any, default_mode: SessionMode) -> Session:
    if not isinstance(raw, dict):
        raise TypeError("session must be an object")
    messages = raw["messages"]
    if not isinstance(messages, list):
        raise TypeError("messages must be an array")
    parsed = tuple(_parse_message(m) for m in messages)
    if len({m.id for m in parsed}) != len(parsed):
        raise ValueError("duplicate message id")
    return Session(
        id=_require_str(raw, "id"),
        title=_require_str(raw, "title"),
        mode=SessionMode(raw.get("mode") or default_mode),
        messages=parsed,
        created_at=_require_int(raw, "createdAt"),
    )


def parse_state(
    text: Optional[str], default_mode: SessionMode = SessionMode.LUA
) -> Optional[StoreState]:
    """
    Parse a slot payload. Returns None (start fresh) when the payload is
    absent, empty, or not a well-formed store.
    """
    if not text or not text.strip():
        return None
    try:
        data = json.loads(text)
        if not isinstance(data, list):
            raise TypeError("store payload must be an array of sessions")
        sessions = tuple(_parse_session(s, default_mode) for s in data)
        if len({s.id for s in sessions}) != len(sessions):
            raise ValueError("duplicate session id")
    except (ValueError, TypeError, KeyError) as e:
        logger.warning("Ignoring malformed session store payload: %s", e)
        return None
    if not sessions:
        return None
    return StoreState(sessions=sessions, active_session_id=sessions[0].id)


class JsonFileSessionStore:
    """Durable slot backed by one JSON file."""

    def __init__(
        self, path: os.PathLike | str, *, default_mode: SessionMode = SessionMode.LUA
    ) -> None:
        self.path = Path(path)
        self.default_mode = default_mode

    def load(self) -> Optional[StoreState]:
        try:
            if not self.path.exists():
                return None
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read session store %s: %s", self.path, e)
            return None
        return parse_state(text, self.default_mode)

    def _write(self, payload: str) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".sessions-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise PersistenceFailure(f"write to {self.path} failed: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def save(self, state: StoreState) -> bool:
        try:
            self._write(dump_state(state))
        except (PersistenceFailure, TypeError, ValueError) as e:
            logger.warning("Session store not saved: %s", e)
            return False
        return True


class InMemorySessionStore:
    """Same contract as JsonFileSessionStore, payload kept in memory."""

    def __init__(
        self,
        payload: Optional[str] = None,
        *,
        default_mode: SessionMode = SessionMode.LUA,
    ) -> None:
        self.payload = payload
        self.default_mode = default_mode
        self.saves = 0

    def load(self) -> Optional[StoreState]:
        return parse_state(self.payload, self.default_mode)

    def save(self, state: StoreState) -> bool:
        try:
            self.payload = dump_state(state)
        except (TypeError, ValueError) as e:
            logger.warning("Session store not saved: %s", e)
            return False
        self.saves += 1
        return True

    def reset(self) -> None:
        self.payload = None
