"""
Term normalization for anchor words.

Every anchor stored in the graph passes through `normalize_word`, so two
spellings that differ only in case or punctuation share one node:

    normalize_word("Ocean!")   -> "ocean"
    normalize_word("  Café's") -> "cafés"

The module also holds the curated stopword sets used to reject low-information
terms, and the compound merging rule ("school project" -> "schoolproject").
"""

import re

# Anything that is not a letter, a digit or whitespace. `\w` is Unicode-aware
# but also admits the underscore, which counts as punctuation here.
_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")

MIN_TERM_LENGTH = 3


# --- Curated semantic stopwords ---
SEMANTIC_STOPWORDS = frozenset([
    # Generic / filler
    "thing", "things", "stuff", "something", "anything", "everything", "nothing",
    "place", "time", "day", "days", "week", "weeks", "year", "years", "moment",
    "life", "world", "area", "point", "part", "kind", "sort", "type",

    # Pronouns & people
    "i", "me", "my", "mine", "myself", "you", "your", "yours", "yourself",
    "he", "him", "his", "himself", "she", "her", "hers", "herself",
    "they", "them", "their", "theirs", "themselves", "we", "us", "our", "ours", "ourselves",
    "someone", "somebody", "anyone", "anybody", "everyone", "everybody",
    "person", "people", "nobody", "noone",

    # Evaluative adjectives / vague descriptors
    "good", "bad", "great", "nice", "cool", "fun", "boring", "awesome", "amazing",
    "better", "best", "worst", "favorite", "perfect", "fine", "okay",

    # Abstract / meta
    "thought", "thoughts", "idea", "ideas", "concept", "feeling", "feelings", "emotion",
    "experience", "experiences", "story", "stories", "conversation", "talk", "discussion",
    "situation", "fact", "truth", "way",

    # Empty intensifiers
    "really", "very", "quite", "just", "maybe", "probably", "perhaps",

    # Low-info nouns / verbs-as-nouns
    "work", "works", "job", "jobs", "doing", "done", "making", "make", "try", "trying",
    "use", "using", "used", "help", "helping",

    # Positional and other generic
    "lot", "lots", "end", "start", "beginning", "middle",
    "back", "front", "side", "top", "bottom",

    # Time units
    "minute", "minutes", "hour", "hours",
])

# General English function words, applied after the semantic set.
ENGLISH_STOPWORDS = frozenset("""
a about above after again against all also am an and another any are as at
be because been before being below between both but by can could did do does
down during each few for from further get got had has have having here how if
in into is it its itself let like many more most much must no nor not now of
off on once only or other ought out over own said same see should since so
some still such than that the then there these this those through to too
under until up upon was were what when where which while who whom why will
with within without would yet
""".split())


def normalize_word(word: str) -> str:
    """Lowercase, strip punctuation (Unicode-aware) and trim."""
    if not word:
        return ""
    t = word.lower()
    t = _PUNCTUATION_RE.sub("", t)
    return t.strip()


def merge_phrase(phrase: str) -> str:
    """Collapse a multi-word phrase into one token: "New York" -> "newyork"."""
    return _WHITESPACE_RE.sub("", phrase.lower())


def is_stopword(term: str) -> bool:
    return term in SEMANTIC_STOPWORDS or term in ENGLISH_STOPWORDS


def is_anchor_term(term: str, min_length: int = MIN_TERM_LENGTH) -> bool:
    """True if an already-normalized term may act as an anchor."""
    return len(term) >= min_length and not is_stopword(term)


def canonical_terms(terms, min_length: int = MIN_TERM_LENGTH):
    """
    Normalize, filter and deduplicate a sequence of raw terms.

    Order of first appearance is preserved.
    """
    seen = set()
    out = []
    for raw in terms:
        term = normalize_word(raw)
        if term in seen or not is_anchor_term(term, min_length):
            continue
        seen.add(term)
        out.append(term)
    return out
