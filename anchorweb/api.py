# anchorweb/api.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from .config import Config
from .graph import AnchorNode, Entry, GraphBackend, MemoryGraph, utcnow, _parse_date
from .layout import ForceLayout, LayoutConfig
from .normalization import canonical_terms
from .storage.sqlite_store import SqliteBackend
from .tagging import SymbolSuggester, parse_tags
from .text_utils import AnchorExtractor, PhraseTagger

logger = logging.getLogger(__name__)

LAYOUT_PRESETS = ("desktop", "mobile")


@dataclass
class Journal:
    """
    One owner's journal:
    - turns submitted text into anchors (remote suggester first, local extractor second)
    - files entries in the memory graph, which keeps counts and connections current
    - runs force layouts of the whole graph on demand
    """
    graph: MemoryGraph
    extractor: AnchorExtractor
    suggester: Optional[SymbolSuggester] = None
    owner: str = "default"
    last_layout: Optional[Dict[str, np.ndarray]] = None

    # --- Initialization ---
    @classmethod
    def init(
        cls,
        owner: Optional[str] = None,
        tagger: Optional[PhraseTagger] = None,
        suggester: Optional[SymbolSuggester] = None,
        backend: Optional[GraphBackend] = None,
    ) -> "Journal":
        owner = owner or Config.core.OWNER
        return cls(
            graph=MemoryGraph(owner=owner, backend=backend),
            extractor=AnchorExtractor(tagger=tagger),
            suggester=suggester,
            owner=owner,
        )

    @classmethod
    def load(
        cls,
        path: str,
        owner: Optional[str] = None,
        tagger: Optional[PhraseTagger] = None,
        suggester: Optional[SymbolSuggester] = None,
    ) -> "Journal":
        """Open (or create) the SQLite journal at `path` and rebuild the graph from it."""
        backend = SqliteBackend(path)
        journal = cls.init(owner=owner, tagger=tagger, suggester=suggester, backend=backend)
        journal.graph.load(
            backend.load_entries(journal.owner),
            backend.load_anchors(journal.owner),
        )
        logger.info(f"Loaded journal '{journal.owner}' from {path}: {journal.graph.summary()}")
        return journal

    # --- Write flow ---
    def write(
        self,
        symbol: str,
        text: str,
        tags: Optional[Iterable] = None,
        phase: Optional[str] = None,
        is_private: bool = False,
        nouns: Optional[List[str]] = None,
        entry_id: Optional[str] = None,
        date=None,
    ) -> Entry:
        """
        Save a new entry and return it as stored.

        Explicit `nouns` skip extraction entirely. When `tags` is None and the
        suggester produced tags for this text, those are used instead. Tags
        outside the vocabulary raise `ValueError` before anything is stored.
        """
        if tags is not None:
            tags = parse_tags(tags, strict=True)
        suggested_tags = []
        if nouns is None:
            if self.suggester is not None:
                suggestion = self.suggester.suggest(text)
                nouns = list(suggestion.symbols)
                suggested_tags = list(suggestion.tags)
            if not nouns:
                nouns = self.extractor.extract_ordered(text)
        nouns = canonical_terms(nouns)

        entry = Entry(
            entry_id=entry_id or str(uuid.uuid4()),
            date=_parse_date(date) if date is not None else utcnow(),
            symbol=(symbol or "").strip() or (nouns[0] if nouns else ""),
            text=text,
            nouns=nouns,
            tags=tags if tags is not None else suggested_tags,
            phase=phase,
            is_private=is_private,
        )

        with self.graph.lock:
            self.graph.add_entry(entry)
            stored = self.graph.get_entry(entry.entry_id)
        logger.info(f"Saved entry {stored.entry_id} under '{stored.symbol}' with {len(stored.nouns)} anchors")
        return stored

    def edit(self, entry_id: str, text: str, tags: Optional[Iterable] = None) -> Entry:
        return self.graph.update_entry(entry_id, text, parse_tags(tags, strict=True))

    # --- Queries ---
    def entries(self) -> List[Entry]:
        return self.graph.all_entries()

    def entries_for_anchor(self, term: str) -> List[Entry]:
        return self.graph.entries_for_anchor(term)

    def entries_for_symbol(self, symbol: str) -> List[Entry]:
        return self.graph.entries_for_symbol(symbol)

    def anchors(self) -> List[AnchorNode]:
        return sorted(self.graph.all_anchors(), key=lambda n: (-n.count, n.word))

    # --- Layout ---
    def layout(
        self,
        config: Optional[LayoutConfig] = None,
        seed: Optional[int] = None,
        preset: Optional[str] = None,
        warm_start: bool = False,
    ) -> Dict[str, np.ndarray]:
        """
        Run a full layout over the current graph.

        `preset` selects "desktop" or "mobile" constants, otherwise the values
        in `Config.layout` apply. With `warm_start`, nodes placed by the
        previous run keep their positions as the starting point.
        """
        if config is None:
            overrides = {"seed": seed if seed is not None else Config.core.SEED}
            if preset is None:
                config = LayoutConfig.from_config(**overrides)
            elif preset == "desktop":
                config = LayoutConfig.desktop(**overrides)
            elif preset == "mobile":
                config = LayoutConfig.mobile(**overrides)
            else:
                raise ValueError(f"Unknown layout preset '{preset}', expected one of {LAYOUT_PRESETS}")

        with self.graph.lock:
            engine = ForceLayout(self.graph, config)
            previous = self.last_layout if warm_start else None
            positions = engine.run(previous)
            self.last_layout = positions
        return positions

    def summary(self) -> Dict[str, int]:
        return self.graph.summary()
