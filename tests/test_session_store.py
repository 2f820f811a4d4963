import json

import pytest

from forgechat import transcript
from forgechat.models import Role, SessionMode, SourceKind, SourceRef
from forgechat.persistence.session_store import (
    InMemorySessionStore,
    JsonFileSessionStore,
    dump_state,
    parse_state,
)


def _populated_state():
    state = transcript.seed_state(SessionMode.LUA)
    state, sid = transcript.create_session(state, SessionMode.HTML)
    state = transcript.append_messages(
        state,
        sid,
        [
            transcript.new_message(Role.USER, "how do I center a div?"),
            transcript.new_message(
                Role.ASSISTANT,
                "Use flexbox.",
                grounding_links=[
                    SourceRef(uri="https://developer.mozilla.org", title="MDN"),
                    SourceRef(uri=None, title="Campus map", kind=SourceKind.MAP),
                ],
            ),
            transcript.new_message(
                Role.USER, "and this?", image="data:image/png;base64,AAAA"
            ),
        ],
    )
    return state


def test_round_trip_preserves_store():
    state = _populated_state()

    restored = parse_state(dump_state(state))

    assert restored == state


def test_dump_uses_wire_field_names():
    data = json.loads(dump_state(_populated_state()))

    assert isinstance(data, list)
    assert set(data[0]) == {"id", "title", "mode", "messages", "createdAt"}
    assert data[0]["mode"] == "html"
    msg = data[0]["messages"][2]
    assert {"id", "role", "content", "timestamp", "groundingLinks"} <= set(msg)
    assert msg["groundingLinks"][0] == {
        "uri": "https://developer.mozilla.org",
        "title": "MDN",
        "kind": "web",
    }


def test_loaded_store_activates_first_session():
    state = _populated_state()
    state = transcript.set_active(state, state.sessions[1].id)

    restored = parse_state(dump_state(state))

    assert restored.active_session_id == restored.sessions[0].id


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "",
        "   ",
        "[]",
        "{not json",
        '{"sessions": []}',
        "[1, 2, 3]",
        '[{"id": "a", "title": "t", "mode": "lua", "createdAt": 1}]',
        '[{"id": "a", "title": "t", "mode": "cobol", "messages": [], "createdAt": 1}]',
        '[{"id": "a", "title": "t", "messages": [{"id": "m", "role": "system",'
        ' "content": "x", "timestamp": 1}], "createdAt": 1}]',
        '[{"id": "a", "title": 5, "messages": [], "createdAt": 1}]',
        '[{"id": "a", "title": "t", "messages": [], "createdAt": 1},'
        ' {"id": "a", "title": "u", "messages": [], "createdAt": 2}]',
    ],
)
def test_corrupted_payload_means_no_prior_state(payload):
    assert parse_state(payload) is None


def test_legacy_payload_without_mode_and_nested_links():
    payload = json.dumps(
        [
            {
                "id": "1700000000000",
                "title": "New Chat",
                "createdAt": 1700000000000,
                "messages": [
                    {
                        "id": "welcome",
                        "role": "assistant",
                        "content": "hi",
                        "timestamp": 1700000000000,
                        "groundingLinks": [
                            {"web": {"uri": "https://example.com", "title": "Ex"}},
                            {"maps": {"uri": "https://maps.example", "title": "Map"}},
                        ],
                    }
                ],
            }
        ]
    )

    state = parse_state(payload, SessionMode.HTML)

    session = state.sessions[0]
    assert session.mode == SessionMode.HTML
    links = session.messages[0].grounding_links
    assert [link.kind for link in links] == [SourceKind.WEB, SourceKind.MAP]
    assert links[0].uri == "https://example.com"


def test_in_memory_store_round_trip():
    store = InMemorySessionStore()
    assert store.load() is None

    state = _populated_state()
    assert store.save(state) is True

    assert store.load() == state
    assert store.saves == 1


def test_file_store_round_trip(tmp_path):
    path = tmp_path / "nested" / "sessions.json"
    store = JsonFileSessionStore(path)
    assert store.load() is None

    state = _populated_state()
    assert store.save(state) is True

    assert path.exists()
    assert JsonFileSessionStore(path).load() == state
    assert not list(path.parent.glob(".sessions-*.tmp"))


def test_file_store_ignores_corrupted_file(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("[{broken", encoding="utf-8")

    assert JsonFileSessionStore(path).load() is None


def test_file_store_save_failure_is_reported_not_raised(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = JsonFileSessionStore(blocker / "sessions.json")

    with caplog.at_level("WARNING"):
        assert store.save(_populated_state()) is False

    assert "not saved" in caplog.text
