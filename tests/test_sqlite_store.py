"""
SQLite persistence: round trip through the backend and rebuild on load.
"""
from datetime import datetime, timezone

import pytest

from anchorweb.graph import Entry, MemoryGraph
from anchorweb.storage.sqlite_store import SqliteBackend
from anchorweb.tagging import Tag


@pytest.fixture
def backend(tmp_path):
    b = SqliteBackend(str(tmp_path / "journal.db"))
    yield b
    b.close()


def make_entry(entry_id, nouns, day, tags=()):
    return Entry(
        entry_id=entry_id,
        date=datetime(2024, 5, day, 8, 30, tzinfo=timezone.utc),
        symbol=nouns[0],
        text=f"dream {entry_id}",
        nouns=list(nouns),
        tags=list(tags),
        phase="waxing",
        is_private=day % 2 == 0,
    )


def test_entry_round_trip(backend):
    entry = make_entry("e1", ["mirror", "ocean"], 1, tags=[Tag.VIVID])
    backend.save_entry("alice", entry)

    loaded = backend.get_entry("alice", "e1")
    assert loaded == entry
    assert backend.load_entries("bob") == []


def test_entries_newest_first(backend):
    backend.save_entry("alice", make_entry("old", ["ocean"], 1))
    backend.save_entry("alice", make_entry("new", ["ocean"], 3))
    assert [e.entry_id for e in backend.load_entries("alice")] == ["new", "old"]


def test_same_entry_id_under_two_owners(backend):
    backend.save_entry("alice", make_entry("e1", ["mirror"], 1))
    backend.save_entry("bob", make_entry("e1", ["ocean"], 2))

    assert backend.get_entry("alice", "e1").nouns == ["mirror"]
    assert backend.get_entry("bob", "e1").nouns == ["ocean"]
    assert [e.symbol for e in backend.load_entries("bob")] == ["ocean"]
    assert backend.get_entry("carol", "e1") is None


def test_saving_twice_replaces_the_row(backend):
    backend.save_entry("alice", make_entry("e1", ["mirror"], 1))
    backend.save_entry("alice", make_entry("e1", ["ocean"], 3))

    assert [e.nouns for e in backend.load_entries("alice")] == [["ocean"]]


def test_anchor_upserts(backend):
    backend.update_anchor_count("alice", "ocean", 1)
    backend.update_anchor_count("alice", "ocean", 2)
    backend.update_anchor_connections("alice", "ocean", ["mirror"])

    anchors = backend.load_anchors("alice")
    assert len(anchors) == 1
    assert anchors[0].to_dict() == {"word": "ocean", "count": 2, "connections": ["mirror"]}


def test_graph_write_through_and_reload(tmp_path):
    path = str(tmp_path / "journal.db")
    backend = SqliteBackend(path)
    graph = MemoryGraph(owner="alice", backend=backend)
    graph.add_entry(make_entry("e1", ["mirror", "snake", "ocean"], 1))
    graph.add_entry(make_entry("e2", ["ocean", "mirror"], 2))
    graph.update_entry("e1", "edited text", [Tag.CALM])
    backend.close()

    reopened = SqliteBackend(path)
    restored = MemoryGraph(owner="alice", backend=reopened)
    restored.load(reopened.load_entries("alice"), reopened.load_anchors("alice"))

    assert restored.verify() == []
    assert restored.anchor_node("ocean").count == 2
    assert restored.anchor_node("snake").connections == ["mirror", "ocean"]
    assert restored.get_entry("e1").text == "edited text"
    assert restored.get_entry("e1").tags == [Tag.CALM]
    assert restored.get_entry("e1").updated_at is not None

    stored = {a.word: a for a in reopened.load_anchors("alice")}
    assert stored["mirror"].connections == ["ocean", "snake"]
    reopened.close()
