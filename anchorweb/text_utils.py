import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Set

import spacy
from spacy.tokens import Doc

from .config import Config
from .normalization import canonical_terms, merge_phrase

logger = logging.getLogger(__name__)

NOUN_POS = {"NOUN", "PROPN"}
PERSON_LABELS = {"PERSON"}
PLACE_LABELS = {"GPE", "LOC", "FAC"}


@dataclass
class PhraseCandidates:
    """Raw phrase strings reported by a linguistic tagger for one text."""
    nouns: List[str] = field(default_factory=list)
    compounds: List[str] = field(default_factory=list)  # multi-word, merged later
    people: List[str] = field(default_factory=list)
    places: List[str] = field(default_factory=list)


class PhraseTagger(Protocol):
    """Minimal protocol for linguistic collaborators."""

    def analyze(self, text: str) -> PhraseCandidates:
        """Return noun, compound, person and place phrases found in `text`."""


# --- Linguistic collaborators ---
class SpacyTagger:
    """PhraseTagger backed by a spaCy pipeline (POS tags + named entities)."""

    def __init__(self, model_name: Optional[str] = None, nlp=None):
        self.model_name = model_name or Config.extraction.SPACY_MODEL
        self.nlp = nlp
        self._load_failed = False

    def load_model(self):
        if self.nlp is not None or self._load_failed:
            return
        logger.info(f"Loading spaCy model: {self.model_name}")
        try:
            self.nlp = spacy.load(self.model_name)
            logger.info("spaCy model loaded successfully.")
        except OSError as e:
            # Don't raise: extraction degrades to an empty anchor set
            logger.error(f"Failed to load spaCy model '{self.model_name}': {e}")
            self._load_failed = True

    def analyze(self, text: str) -> PhraseCandidates:
        if not text or not text.strip():
            return PhraseCandidates()
        self.load_model()
        if self.nlp is None:
            return PhraseCandidates()
        return self.analyze_doc(self.nlp(text))

    def analyze_doc(self, doc: Doc) -> PhraseCandidates:
        # Pronouns and determiners never carry a NOUN/PROPN tag, so they drop out here
        nouns = [t.text for t in doc if t.pos_ in NOUN_POS]

        compounds = []
        # Proper-noun runs: "Pet Stop", "New York"
        run = []
        for tok in list(doc) + [None]:
            if tok is not None and tok.pos_ == "PROPN":
                run.append(tok.text)
                continue
            if len(run) >= 2:
                compounds.append(" ".join(run))
            run = []
        # Two consecutive nouns: "school project"
        for a, b in zip(doc, doc[1:]):
            if a.pos_ in NOUN_POS and b.pos_ in NOUN_POS:
                compounds.append(f"{a.text} {b.text}")

        people = [t.text for ent in doc.ents if ent.label_ in PERSON_LABELS for t in ent]
        places = [t.text for ent in doc.ents if ent.label_ in PLACE_LABELS for t in ent]

        return PhraseCandidates(nouns=nouns, compounds=compounds, people=people, places=places)


class StaticTagger:
    """PhraseTagger answering from a fixed lookup table (offline imports, tests)."""

    def __init__(self, table: Optional[Dict[str, PhraseCandidates]] = None):
        self.table: Dict[str, PhraseCandidates] = dict(table or {})

    def add(self, text: str, candidates: PhraseCandidates):
        self.table[text.strip()] = candidates

    def analyze(self, text: str) -> PhraseCandidates:
        return self.table.get(text.strip(), PhraseCandidates())


# --- Anchor extraction ---
class AnchorExtractor:
    """
    Turns entry text into a small canonical anchor set.

    Candidates from the tagger (single nouns, merged compounds, people and
    places) are normalized, then anything shorter than the minimum length or
    present in a stopword set is dropped.
    """

    def __init__(self, tagger: Optional[PhraseTagger] = None, min_length: Optional[int] = None):
        self.tagger = tagger if tagger is not None else SpacyTagger()
        self.min_length = min_length or Config.extraction.MIN_TERM_LENGTH

    def candidates(self, text: str) -> List[str]:
        """Raw (unnormalized) candidate terms in appearance order."""
        try:
            phrases = self.tagger.analyze(text)
        except Exception as e:
            logger.error(f"Linguistic tagger failed, no anchors extracted: {e}")
            return []

        merged = [merge_phrase(p) for p in phrases.compounds]
        return [*phrases.nouns, *phrases.people, *phrases.places, *merged]

    def extract_ordered(self, text: str) -> List[str]:
        if not text or not text.strip():
            return []
        return canonical_terms(self.candidates(text), self.min_length)

    def extract(self, text: str) -> Set[str]:
        return set(self.extract_ordered(text))


_default_extractor: Optional[AnchorExtractor] = None


def get_extractor() -> AnchorExtractor:
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = AnchorExtractor()
    return _default_extractor


def extract_anchors(text: str) -> Set[str]:
    return get_extractor().extract(text)
