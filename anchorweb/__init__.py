"""Public package interface for the anchor memory graph."""

from .api import Journal
from .graph import AnchorNode, DuplicateEntryError, Entry, EntryNotFoundError, MemoryGraph
from .layout import ForceLayout, LayoutConfig

__all__ = [
    "Journal",
    "MemoryGraph",
    "Entry",
    "AnchorNode",
    "EntryNotFoundError",
    "DuplicateEntryError",
    "ForceLayout",
    "LayoutConfig",
]
