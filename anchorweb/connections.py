"""Co-occurrence resolution between anchor terms."""

from typing import Dict, Iterable, List, Set

from .normalization import normalize_word


def connections_of(term: str, entries: Iterable) -> Set[str]:
    """
    Anchors sharing at least one entry with `term`.

    Scans every entry whose anchor list contains the normalized term and
    unions the other anchors found there. The term itself is never included.
    """
    target = normalize_word(term)
    connections: Set[str] = set()
    if not target:
        return connections

    for entry in entries:
        if target not in entry.nouns:
            continue
        for noun in entry.nouns:
            other = normalize_word(noun)
            if other and other != target:
                connections.add(other)
    return connections


def resolve_all(terms: Iterable[str], entries: Iterable) -> Dict[str, List[str]]:
    """Resolve a batch of terms, returning sorted connection lists."""
    entries = list(entries)
    return {
        normalize_word(term): sorted(connections_of(term, entries))
        for term in terms
        if normalize_word(term)
    }
