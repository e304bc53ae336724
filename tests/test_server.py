"""
HTTP surface over the journal, exercised through FastAPI's TestClient.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from anchorweb.api import Journal
from anchorweb.config import Config
from anchorweb.server import get_or_create_journal, journal_instances

FIRST = "I saw a mirror and a snake near the ocean"
SECOND = "The ocean reflected in the mirror"


@pytest.fixture
def client(test_client, dream_tagger, temp_memory_dir):
    journal_instances["alice"] = Journal.init(owner="alice", tagger=dream_tagger)
    return test_client


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["active_owners"] == ["alice"]


class TestEntries:
    def test_create_and_list(self, client):
        r1 = client.post("/entries", json={"owner": "alice", "symbol": "mirror", "text": FIRST, "tags": ["fearful"]})
        assert r1.status_code == 200
        body = r1.json()
        assert set(body["entry"]["nouns"]) == {"mirror", "snake", "ocean"}
        assert body["entry"]["tags"] == ["fearful"]
        assert {a["word"] for a in body["anchors"]} == {"mirror", "snake", "ocean"}

        client.post("/entries", json={"owner": "alice", "symbol": "ocean", "text": SECOND})
        listing = client.get("/entries/alice").json()["entries"]
        assert [e["text"] for e in listing] == [SECOND, FIRST]

    def test_unknown_tag_rejected(self, client):
        response = client.post("/entries", json={"owner": "alice", "text": FIRST, "tags": ["sleepy"]})
        assert response.status_code == 422

    def test_edit(self, client):
        entry_id = client.post("/entries", json={"owner": "alice", "symbol": "mirror", "text": FIRST}).json()["entry"]["id"]

        response = client.patch(f"/entries/{entry_id}", json={"owner": "alice", "text": "edited", "tags": ["calm"]})
        assert response.status_code == 200
        assert response.json()["entry"]["text"] == "edited"
        assert response.json()["entry"]["tags"] == ["calm"]

    def test_edit_unknown_entry(self, client):
        response = client.patch("/entries/missing", json={"owner": "alice", "text": "edited"})
        assert response.status_code == 404

    def test_unknown_owner(self, client):
        assert client.get("/entries/nobody").status_code == 404
        assert client.get("/anchors/nobody").status_code == 404

    def test_owner_must_be_a_plain_name(self, client, temp_memory_dir):
        response = client.post("/entries", json={"owner": "../escaped", "text": FIRST, "nouns": ["moon"]})
        assert response.status_code == 422
        assert not (temp_memory_dir.parent / "escaped").exists()
        assert client.patch("/entries/x", json={"owner": "a/b", "text": "t"}).status_code == 422
        assert client.get("/entries/..hidden").status_code == 422
        assert client.get("/anchors/.x").status_code == 422


class TestAnchors:
    def test_anchor_listing_and_entries(self, client):
        client.post("/entries", json={"owner": "alice", "symbol": "mirror", "text": FIRST})
        client.post("/entries", json={"owner": "alice", "symbol": "ocean", "text": SECOND})

        anchors = {a["word"]: a for a in client.get("/anchors/alice").json()["anchors"]}
        assert anchors["ocean"]["count"] == 2
        assert "mirror" in anchors["ocean"]["connections"]

        r = client.get("/anchors/alice/Ocean/entries")
        assert r.status_code == 200
        assert len(r.json()["entries"]) == 2

    def test_unknown_anchor(self, client):
        assert client.get("/anchors/alice/volcano/entries").status_code == 404


class TestLayout:
    def test_layout_payload(self, client):
        client.post("/entries", json={"owner": "alice", "symbol": "mirror", "text": FIRST})
        body = client.get("/layout/alice", params={"seed": 3, "preset": "mobile"}).json()

        assert len(body["entries"]) == 1
        assert set(body["anchors"]) == {"mirror", "snake", "ocean"}
        assert all(len(p) == 3 for p in body["anchors"].values())
        assert len(body["edges"]) == 3

    def test_unknown_preset(self, client):
        assert client.get("/layout/alice", params={"preset": "watch"}).status_code == 422


def test_new_owner_gets_sqlite_journal(test_client, temp_memory_dir):
    Config.storage.USE_SQLITE = True
    response = test_client.post("/entries", json={"owner": "bob", "symbol": "moon", "text": "x", "nouns": ["moon"]})
    assert response.status_code == 200
    assert (temp_memory_dir / "bob" / Config.storage.SQLITE_DB_NAME).exists()

    journal_instances.clear()
    anchors = test_client.get("/anchors/bob")
    assert anchors.status_code == 200
    assert anchors.json()["anchors"] == [{"word": "moon", "count": 1, "connections": []}]

    test_client.post("/entries", json={"owner": "bob", "symbol": "moon", "text": "y", "nouns": ["moon"]})
    assert journal_instances["bob"].graph.anchor_node("moon").count == 2


def test_concurrent_first_access_shares_one_journal(temp_memory_dir):
    Config.storage.USE_SQLITE = False
    with ThreadPoolExecutor(max_workers=8) as pool:
        journals = list(pool.map(get_or_create_journal, ["carol"] * 16))
    assert all(j is journals[0] for j in journals)
