"""Tag vocabulary and remote symbol/tag suggestion.

This module exposes:

* `Tag` / `TagCategory`, the closed vocabulary users file entries under.
* `parse_tag` / `parse_tags`, boundary validation from free text to `Tag`.
* `ChatProvider` / `OpenAIChatProvider`, the remote language-model seam.
* `SymbolSuggester`, which asks the provider for symbols and tags and keeps
  an owned LRU cache of answers for repeated texts.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Hashable, Iterable, List, Optional, Protocol

from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------
class TagCategory(str, Enum):
    MOOD = "mood"
    CLARITY = "clarity"
    THEME = "theme"
    ARCHETYPE = "archetype"
    SOURCE = "source"


class Tag(str, Enum):
    # Mood
    CALM = "calm"
    ANXIOUS = "anxious"
    ECSTATIC = "ecstatic"
    ANGRY = "angry"
    FEARFUL = "fearful"
    PEACEFUL = "peaceful"
    CONFUSED = "confused"
    JOYFUL = "joyful"
    LONELY = "lonely"
    # Clarity
    LUCID = "lucid"
    VIVID = "vivid"
    FRAGMENTED = "fragmented"
    BLURRY = "blurry"
    SURREAL = "surreal"
    # Theme
    FALLING = "falling"
    FLYING = "flying"
    PURSUIT = "pursuit"
    TRANSFORMATION = "transformation"
    DEATH = "death"
    BIRTH = "birth"
    LOSS = "loss"
    DISCOVERY = "discovery"
    BETRAYAL = "betrayal"
    ESCAPE = "escape"
    REUNION = "reunion"
    # Archetype
    SHADOW = "shadow"
    ANIMA = "anima"
    ANIMUS = "animus"
    SELF = "self"
    EGO = "ego"
    WISE_OLD = "wise_old"
    TRICKSTER = "trickster"
    # Source
    RECURRING = "recurring"
    CHILDHOOD = "childhood"
    RECENT_EVENT = "recent_event"
    STRESS = "stress"
    RELATIONSHIP = "relationship"

    @property
    def category(self) -> TagCategory:
        for category, tags in TAG_CATEGORIES.items():
            if self in tags:
                return category
        raise LookupError(self.value)  # every member is listed below


TAG_CATEGORIES: Dict[TagCategory, tuple] = {
    TagCategory.MOOD: (Tag.CALM, Tag.ANXIOUS, Tag.ECSTATIC, Tag.ANGRY, Tag.FEARFUL,
                       Tag.PEACEFUL, Tag.CONFUSED, Tag.JOYFUL, Tag.LONELY),
    TagCategory.CLARITY: (Tag.LUCID, Tag.VIVID, Tag.FRAGMENTED, Tag.BLURRY, Tag.SURREAL),
    TagCategory.THEME: (Tag.FALLING, Tag.FLYING, Tag.PURSUIT, Tag.TRANSFORMATION, Tag.DEATH,
                        Tag.BIRTH, Tag.LOSS, Tag.DISCOVERY, Tag.BETRAYAL, Tag.ESCAPE, Tag.REUNION),
    TagCategory.ARCHETYPE: (Tag.SHADOW, Tag.ANIMA, Tag.ANIMUS, Tag.SELF, Tag.EGO,
                            Tag.WISE_OLD, Tag.TRICKSTER),
    TagCategory.SOURCE: (Tag.RECURRING, Tag.CHILDHOOD, Tag.RECENT_EVENT, Tag.STRESS,
                         Tag.RELATIONSHIP),
}

TAG_DEFINITIONS: Dict[Tag, str] = {
    Tag.SHADOW: "The unconscious aspects of yourself you hide or deny.",
    Tag.ANIMA: "The feminine inner archetype in a man's psyche.",
    Tag.ANIMUS: "The masculine inner archetype in a woman's psyche.",
    Tag.SELF: "The integrated totality of the psyche; wholeness.",
    Tag.EGO: "The conscious identity that mediates between self and world.",
}


def parse_tag(value) -> Tag:
    """Convert external text to a `Tag`, rejecting anything outside the vocabulary."""
    if isinstance(value, Tag):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Tag must be a string, got {type(value).__name__}")
    key = value.strip().lower()
    try:
        return Tag(key)
    except ValueError:
        raise ValueError(f"Unknown tag: {value!r}") from None


def parse_tags(values: Optional[Iterable], strict: bool = False) -> List[Tag]:
    """
    Validate a collection of tag strings.

    Unknown values raise in strict mode and are dropped (with a warning)
    otherwise. Duplicates collapse, first occurrence wins.
    """
    out: List[Tag] = []
    for value in values or []:
        try:
            tag = parse_tag(value)
        except ValueError:
            if strict:
                raise
            logger.warning(f"Dropping tag outside vocabulary: {value!r}")
            continue
        if tag not in out:
            out.append(tag)
    return out


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------
class LRUCache:
    """Bounded mapping that evicts the least recently used key."""

    def __init__(self, maxsize: int = 256):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.maxsize = maxsize
        self._data: "OrderedDict[Hashable, object]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default=None):
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
                self.hits += 1
                return self._data[key]
            self.misses += 1
            return default

    def put(self, key: Hashable, value) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# Provider abstractions
# ---------------------------------------------------------------------------
class ChatProvider(Protocol):
    """Minimal protocol for LLM chat providers."""

    def generate(self, messages: List[Dict[str, str]]) -> str:
        """Return the assistant response given an OpenAI-style message list."""


class OpenAIChatProvider:
    """Thin wrapper around the official OpenAI client."""

    def __init__(self, api_key: str, model: Optional[str] = None, max_tokens: Optional[int] = None):
        try:
            from openai import OpenAI
        except ImportError as exc:  # pragma: no cover - exercised when missing dep
            raise RuntimeError(
                "openai package is required for OpenAIChatProvider. Install it with"
                " `pip install openai`."
            ) from exc

        self._client = OpenAI(api_key=api_key)
        self.model = model or Config.tagging.MODEL
        self.max_tokens = max_tokens or Config.tagging.MAX_TOKENS

    def generate(self, messages: List[Dict[str, str]]) -> str:
        completion = self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_completion_tokens=self.max_tokens,
        )
        content = completion.choices[0].message.content
        return (content or "").strip()


def resolve_provider(api_key: Optional[str] = None, model: Optional[str] = None) -> Optional[ChatProvider]:
    """Build the OpenAI provider from an explicit key, the environment or `.env`."""
    from dotenv import load_dotenv
    load_dotenv()

    key = api_key or os.getenv("OPENAI_API_KEY")
    if not key:
        logger.warning("OPENAI_API_KEY not set - symbol suggestions disabled.")
        return None
    try:
        return OpenAIChatProvider(api_key=key, model=model)
    except RuntimeError as exc:
        logger.warning(f"Symbol suggestions disabled: {exc}")
        return None


# ---------------------------------------------------------------------------
# Suggester
# ---------------------------------------------------------------------------
def _vocabulary_listing() -> str:
    lines = []
    for category, tags in TAG_CATEGORIES.items():
        lines.append(f"**{category.value.title()}**")
        lines.append(", ".join(t.value for t in tags))
        for tag in tags:
            if tag in TAG_DEFINITIONS:
                lines.append(f"- {tag.value}: {TAG_DEFINITIONS[tag]}")
        lines.append("")
    return "\n".join(lines)


SYSTEM_PROMPT = f"""You are an intuitive dream interpreter and linguistic analyst.

Your task is to extract two things from a dream journal entry:
1. The most symbolically significant nouns or imagery ("symbols").
2. The psychological and emotional themes that best describe the dream ("tags").

### Symbol Extraction
Identify concrete, visual, or emotionally charged nouns that could appear as symbols in the dreamer's mind.
Focus on people, animals, objects, places, elements, and archetypal imagery (e.g. "mirror," "door," "ocean," "father," "snake," "city," "shadow," "light").
Avoid verbs, filler words, or abstractions.

### Tag Selection
Choose one or more tags that apply **only** from this fixed list:

{_vocabulary_listing()}
Only include tags that clearly match the emotional tone, structure, or archetypal theme of the dream.
Do not create new tags.

### Output Format
Respond ONLY with a valid JSON object like this:
{{
  "symbols": ["mirror", "ocean", "snake"],
  "tags": ["fearful", "shadow", "transformation"]
}}"""

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


@dataclass
class Suggestion:
    symbols: List[str] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"symbols": list(self.symbols), "tags": [t.value for t in self.tags]}


def parse_suggestion(raw: str) -> Suggestion:
    """
    Parse a provider reply into a `Suggestion`.

    Falls back to the first `{...}` block when the reply is not pure JSON.
    Symbols are lowercased, trimmed, at least 3 characters and unique; tags
    outside the vocabulary are dropped.
    """
    data = None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Could not parse suggestion JSON. Attempting recovery...")
        match = _JSON_BLOCK_RE.search(raw or "")
        if match:
            try:
                data = json.loads(match.group(0))
            except json.JSONDecodeError as e:
                logger.warning(f"Failed JSON recovery: {e}")

    if not isinstance(data, dict):
        return Suggestion()

    symbols: List[str] = []
    for word in data.get("symbols") or []:
        if not isinstance(word, str):
            continue
        w = word.lower().strip()
        if len(w) >= 3 and w not in symbols:
            symbols.append(w)

    tags = parse_tags([t for t in data.get("tags") or [] if isinstance(t, str)])
    return Suggestion(symbols=symbols, tags=tags)


class SymbolSuggester:
    """Asks a chat provider for symbols and tags, caching answers per text."""

    def __init__(self, provider: ChatProvider, cache_size: Optional[int] = None):
        self.provider = provider
        self.cache = LRUCache(cache_size or Config.tagging.CACHE_SIZE)

    def suggest(self, text: str) -> Suggestion:
        trimmed = (text or "").strip()
        if not trimmed:
            return Suggestion()

        cached = self.cache.get(trimmed)
        if cached is not None:
            logger.debug("Suggestion cache hit")
            return cached

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Extract symbol words and tags from this text:\n\n{trimmed}"},
        ]
        try:
            raw = self.provider.generate(messages)
        except Exception as e:
            # Not cached: a later call may succeed
            logger.error(f"Symbol suggestion failed: {e}")
            return Suggestion()

        logger.debug(f"Raw suggestion output: {raw}")
        result = parse_suggestion(raw)
        self.cache.put(trimmed, result)
        logger.info(f"Cached suggestion (cache size: {len(self.cache)})")
        return result


__all__ = [
    "Tag",
    "TagCategory",
    "TAG_CATEGORIES",
    "TAG_DEFINITIONS",
    "parse_tag",
    "parse_tags",
    "LRUCache",
    "ChatProvider",
    "OpenAIChatProvider",
    "resolve_provider",
    "Suggestion",
    "parse_suggestion",
    "SymbolSuggester",
]
