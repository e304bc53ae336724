# anchorweb/graph.py
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from .connections import resolve_all
from .normalization import canonical_terms, normalize_word
from .tagging import Tag, parse_tags

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("anchorweb.events")


# --- Streaming log ---
def log_event(event_type: str, message: str, details: Dict = None):
    """Emit a colored lifecycle event on the `anchorweb.events` logger."""
    CYAN = "\033[96m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    RESET = "\033[0m"

    color = RESET
    if event_type == "ANCHOR": color = GREEN
    elif event_type == "LINK": color = CYAN
    elif event_type == "LAYOUT": color = YELLOW
    elif event_type == "ERROR": color = RED

    events_logger.info(f"{color}[{event_type}] {message}{RESET}")
    if details:
        events_logger.info(f"{color}      └─ {details}{RESET}")


class EntryNotFoundError(KeyError):
    """Raised when an operation names an entry id the graph does not hold."""


class DuplicateEntryError(ValueError):
    """Raised when an entry id is added twice."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_date(value) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# --- Data models ---
@dataclass
class Entry:
    entry_id: str
    date: datetime
    symbol: str                 # primary term the entry is filed under
    text: str
    nouns: List[str] = field(default_factory=list)  # extracted anchor terms, ordered
    tags: List[Tag] = field(default_factory=list)
    phase: Optional[str] = None
    is_private: bool = False
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.entry_id,
            "date": self.date.isoformat(),
            "symbol": self.symbol,
            "text": self.text,
            "nouns": list(self.nouns),
            "tags": [t.value for t in self.tags],
            "phase": self.phase,
            "is_private": self.is_private,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Entry":
        return cls(
            entry_id=data["id"],
            date=_parse_date(data["date"]),
            symbol=data.get("symbol", ""),
            text=data.get("text", ""),
            nouns=list(data.get("nouns") or []),
            tags=parse_tags(data.get("tags")),
            phase=data.get("phase"),
            is_private=bool(data.get("is_private", False)),
            updated_at=_parse_date(data["updated_at"]) if data.get("updated_at") else None,
        )


@dataclass
class AnchorNode:
    word: str
    count: int = 0
    connections: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"word": self.word, "count": self.count, "connections": list(self.connections)}

    @classmethod
    def from_dict(cls, data: dict) -> "AnchorNode":
        return cls(
            word=data["word"],
            count=int(data.get("count", 0)),
            connections=list(data.get("connections") or []),
        )


class GraphBackend(Protocol):
    """Persistence collaborator contract."""

    def load_entries(self, owner: str) -> List[Entry]: ...
    def load_anchors(self, owner: str) -> List[AnchorNode]: ...
    def save_entry(self, owner: str, entry: Entry) -> None: ...
    def update_entry(self, owner: str, entry: Entry) -> None: ...
    def update_anchor_count(self, owner: str, word: str, count: int) -> None: ...
    def update_anchor_connections(self, owner: str, word: str, connections: List[str]) -> None: ...


# --- Core graph ---
class MemoryGraph:
    """
    Entries plus the anchor nodes derived from them.

    - counts are incremented as entries arrive
    - connection lists are always recomputed from the entry set, never patched
    - an optional backend receives every change (write-through)
    """

    def __init__(self, owner: str = "default", backend: Optional[GraphBackend] = None):
        self.owner = owner
        self.backend = backend
        self.entries: Dict[str, Entry] = {}
        self.nodes: Dict[str, AnchorNode] = {}
        self._seq: Dict[str, int] = {}
        self.lock = threading.RLock()  # Thread safety for all mutations

    @classmethod
    def from_entries(cls, entries: Iterable[Entry], owner: str = "default",
                     backend: Optional[GraphBackend] = None) -> "MemoryGraph":
        graph = cls(owner=owner, backend=backend)
        graph.load(entries)
        return graph

    # --- Mutations ---
    def add_entry(self, entry: Entry) -> "MemoryGraph":
        """
        Add an entry, bump its anchors and refresh their connections.

        Backend writes happen before anything is committed in memory, so a
        failing backend leaves the graph unchanged and the same id can be
        retried.
        """
        with self.lock:
            if entry.entry_id in self.entries:
                raise DuplicateEntryError(f"Entry '{entry.entry_id}' already exists")

            entry = replace(entry, nouns=canonical_terms(entry.nouns), tags=parse_tags(entry.tags))
            counts = {
                noun: (self.nodes[noun].count + 1 if noun in self.nodes else 1)
                for noun in entry.nouns
            }
            if self.backend is not None:
                self.backend.save_entry(self.owner, entry)
                for noun, count in counts.items():
                    self.backend.update_anchor_count(self.owner, noun, count)

            self.entries[entry.entry_id] = entry
            self._seq[entry.entry_id] = len(self._seq)
            for noun, count in counts.items():
                node = self.nodes.get(noun)
                if node is None:
                    self.nodes[noun] = AnchorNode(word=noun, count=count)
                    log_event("ANCHOR", f"New anchor '{noun}'")
                else:
                    node.count = count

            self._refresh_connections(entry.nouns)
            return self

    def update_entry(self, entry_id: str, new_text: str, new_tags: Optional[Iterable] = None) -> Entry:
        """
        Replace the text and tags of an entry.

        Anchors stay as extracted at creation time; the edited text is not
        re-analyzed.
        """
        with self.lock:
            if entry_id not in self.entries:
                raise EntryNotFoundError(entry_id)

            old = self.entries[entry_id]
            entry = replace(old, text=new_text, tags=parse_tags(new_tags), updated_at=utcnow())
            if self.backend is not None:
                self.backend.update_entry(self.owner, entry)
            self.entries[entry_id] = entry

            self._refresh_connections(entry.nouns)
            return entry

    def load(self, entries: Iterable[Entry], anchors: Optional[Iterable[AnchorNode]] = None):
        """Replace the graph contents with persisted entries, recomputing all nodes."""
        with self.lock:
            self.entries = {}
            self._seq = {}
            for e in sorted(entries, key=lambda e: e.date):
                e = replace(e, nouns=canonical_terms(e.nouns))
                self.entries[e.entry_id] = e
                self._seq[e.entry_id] = len(self._seq)
            self.rebuild()

            if anchors is not None:
                for stored in anchors:
                    node = self.nodes.get(stored.word)
                    if node is None or node.count != stored.count:
                        logger.warning(
                            f"Stored anchor '{stored.word}' diverges from entries "
                            f"(stored count {stored.count}, actual {node.count if node else 0})"
                        )

    def rebuild(self):
        """Recompute every anchor node (count and connections) from the entry set."""
        with self.lock:
            counts: Dict[str, int] = {}
            for e in self.entries.values():
                for noun in e.nouns:
                    counts[noun] = counts.get(noun, 0) + 1

            self.nodes = {word: AnchorNode(word=word, count=c) for word, c in counts.items()}
            self._refresh_connections(list(self.nodes), persist=False)
            log_event("LINK", "Graph rebuilt", {"entries": len(self.entries), "anchors": len(self.nodes)})

    def _refresh_connections(self, terms: Iterable[str], persist: bool = True):
        resolved = {w: c for w, c in resolve_all(terms, self.entries.values()).items() if w in self.nodes}
        # Memory first: a backend failure below must not leave stale lists
        for word, connections in resolved.items():
            self.nodes[word].connections = connections
        if persist and self.backend is not None:
            for word, connections in resolved.items():
                self.backend.update_anchor_connections(self.owner, word, connections)
        if resolved:
            logger.debug(f"Refreshed connections for {len(resolved)} anchors")

    # --- Queries ---
    def _newest_first(self, entries: Iterable[Entry]) -> List[Entry]:
        return sorted(entries, key=lambda e: (e.date, self._seq[e.entry_id]), reverse=True)

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        return self.entries.get(entry_id)

    def all_entries(self) -> List[Entry]:
        return self._newest_first(self.entries.values())

    def entries_for_anchor(self, term: str) -> List[Entry]:
        target = normalize_word(term)
        return self._newest_first(e for e in self.entries.values() if target in e.nouns)

    def entries_for_symbol(self, symbol: str) -> List[Entry]:
        target = symbol.strip().lower()
        return self._newest_first(e for e in self.entries.values() if e.symbol.lower() == target)

    def anchor_node(self, term: str) -> Optional[AnchorNode]:
        return self.nodes.get(normalize_word(term))

    def all_anchors(self) -> List[AnchorNode]:
        return list(self.nodes.values())

    def edges(self) -> List[Tuple[str, str]]:
        """Entry-anchor membership edges as (entry_id, word)."""
        return [(e.entry_id, noun) for e in self.entries.values() for noun in e.nouns]

    def connection_pairs(self) -> List[Tuple[str, str]]:
        """Undirected anchor-anchor pairs, each listed once."""
        pairs = set()
        for node in self.nodes.values():
            for other in node.connections:
                pairs.add((min(node.word, other), max(node.word, other)))
        return sorted(pairs)

    def verify(self) -> List[str]:
        """List every divergence between stored nodes and a fresh recomputation."""
        problems = []
        counts: Dict[str, int] = {}
        for e in self.entries.values():
            for noun in e.nouns:
                counts[noun] = counts.get(noun, 0) + 1

        for word in set(counts) | set(self.nodes):
            node = self.nodes.get(word)
            expected = counts.get(word, 0)
            if node is None:
                problems.append(f"missing node '{word}'")
                continue
            if node.count != expected:
                problems.append(f"'{word}' count {node.count} != {expected}")

        expected_links = resolve_all(list(self.nodes), self.entries.values())
        for word, links in expected_links.items():
            if self.nodes[word].connections != links:
                problems.append(f"'{word}' connections out of date")
        return problems

    def summary(self) -> Dict[str, int]:
        return {
            "entries": len(self.entries),
            "anchors": len(self.nodes),
            "connections": len(self.connection_pairs()),
        }
