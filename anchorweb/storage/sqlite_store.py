import json
import sqlite3
from typing import List, Optional

from ..graph import AnchorNode, Entry, utcnow


class SqliteBackend:
    """Journal persistence: one `entries` and one `anchors` table, keyed by owner."""

    _ENTRY_COLUMNS = "entry_id, date, symbol, text, nouns, tags, phase, is_private, updated_at"

    def __init__(self, path: str):
        self.path = path
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self):
        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    owner TEXT NOT NULL,
                    entry_id TEXT NOT NULL,
                    date TEXT,
                    symbol TEXT,
                    text TEXT,
                    nouns TEXT,
                    tags TEXT,
                    phase TEXT,
                    is_private INTEGER DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (owner, entry_id)
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS anchors (
                    owner TEXT NOT NULL,
                    word TEXT NOT NULL,
                    count INTEGER DEFAULT 0,
                    connections TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (owner, word)
                )
            """)
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_owner_date ON entries (owner, date)"
            )

    # --- Entries ---
    @staticmethod
    def _entry_row(owner: str, entry: Entry) -> tuple:
        return (
            entry.entry_id,
            owner,
            entry.date.isoformat(),
            entry.symbol,
            entry.text,
            json.dumps(list(entry.nouns)),
            json.dumps([t.value for t in entry.tags]),
            entry.phase,
            int(entry.is_private),
            entry.updated_at.isoformat() if entry.updated_at else None,
        )

    def save_entry(self, owner: str, entry: Entry):
        # Upsert: a write retried after a partial failure replaces the first attempt
        with self.conn:
            self.conn.execute(
                "INSERT INTO entries (entry_id, owner, date, symbol, text, nouns, tags, phase, is_private, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(owner, entry_id) DO UPDATE SET date = excluded.date, symbol = excluded.symbol, "
                "text = excluded.text, nouns = excluded.nouns, tags = excluded.tags, phase = excluded.phase, "
                "is_private = excluded.is_private, updated_at = excluded.updated_at",
                self._entry_row(owner, entry),
            )

    def update_entry(self, owner: str, entry: Entry):
        with self.conn:
            self.conn.execute(
                "UPDATE entries SET text = ?, tags = ?, updated_at = ? WHERE entry_id = ? AND owner = ?",
                (
                    entry.text,
                    json.dumps([t.value for t in entry.tags]),
                    entry.updated_at.isoformat() if entry.updated_at else None,
                    entry.entry_id,
                    owner,
                ),
            )

    def load_entries(self, owner: str) -> List[Entry]:
        cur = self.conn.execute(
            f"SELECT {self._ENTRY_COLUMNS} FROM entries WHERE owner = ? ORDER BY date DESC",
            (owner,),
        )
        return [self._row_entry(row) for row in cur]

    def get_entry(self, owner: str, entry_id: str) -> Optional[Entry]:
        row = self.conn.execute(
            f"SELECT {self._ENTRY_COLUMNS} FROM entries WHERE owner = ? AND entry_id = ?",
            (owner, entry_id),
        ).fetchone()
        return self._row_entry(row) if row else None

    @staticmethod
    def _row_entry(row) -> Entry:
        entry_id, date, symbol, text, nouns_json, tags_json, phase, is_private, updated_at = row
        return Entry.from_dict({
            "id": entry_id,
            "date": date,
            "symbol": symbol,
            "text": text,
            "nouns": json.loads(nouns_json) if nouns_json else [],
            "tags": json.loads(tags_json) if tags_json else [],
            "phase": phase,
            "is_private": bool(is_private),
            "updated_at": updated_at,
        })

    # --- Anchors ---
    def update_anchor_count(self, owner: str, word: str, count: int):
        with self.conn:
            self.conn.execute(
                "INSERT INTO anchors (owner, word, count, connections, updated_at) VALUES (?, ?, ?, '[]', ?) "
                "ON CONFLICT(owner, word) DO UPDATE SET count = excluded.count, updated_at = excluded.updated_at",
                (owner, word, count, utcnow().isoformat()),
            )

    def update_anchor_connections(self, owner: str, word: str, connections: List[str]):
        with self.conn:
            self.conn.execute(
                "UPDATE anchors SET connections = ? WHERE owner = ? AND word = ?",
                (json.dumps(list(connections)), owner, word),
            )

    def load_anchors(self, owner: str) -> List[AnchorNode]:
        cur = self.conn.execute(
            "SELECT word, count, connections FROM anchors WHERE owner = ?", (owner,)
        )
        return [
            AnchorNode(word=word, count=count, connections=json.loads(conns) if conns else [])
            for word, count, conns in cur
        ]

    def close(self):
        self.conn.close()
