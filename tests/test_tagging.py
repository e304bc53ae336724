import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from anchorweb.tagging import (
    SYSTEM_PROMPT,
    TAG_DEFINITIONS,
    LRUCache,
    SymbolSuggester,
    Tag,
    TagCategory,
    parse_suggestion,
    parse_tag,
    parse_tags,
    resolve_provider,
)


class FakeProvider:
    """ChatProvider returning canned replies and recording every call."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def generate(self, messages):
        self.calls.append(messages)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def test_parse_tag():
    assert parse_tag(" Calm ") is Tag.CALM
    assert parse_tag(Tag.SHADOW) is Tag.SHADOW
    with pytest.raises(ValueError):
        parse_tag("sleepy")
    with pytest.raises(ValueError):
        parse_tag(7)


def test_parse_tags_lenient_and_strict():
    assert parse_tags(["calm", "sleepy", "CALM", "shadow"]) == [Tag.CALM, Tag.SHADOW]
    assert parse_tags(None) == []
    with pytest.raises(ValueError):
        parse_tags(["calm", "sleepy"], strict=True)


def test_tag_categories():
    assert Tag.FEARFUL.category is TagCategory.MOOD
    assert Tag.WISE_OLD.category is TagCategory.ARCHETYPE
    assert Tag.RECENT_EVENT.category is TagCategory.SOURCE


def test_prompt_carries_tag_definitions():
    assert f"- shadow: {TAG_DEFINITIONS[Tag.SHADOW]}" in SYSTEM_PROMPT


class TestLRUCache:
    def test_evicts_least_recently_used(self):
        cache = LRUCache(maxsize=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_hit_and_miss_counters(self):
        cache = LRUCache(maxsize=4)
        cache.put("a", 1)
        cache.get("a")
        cache.get("missing")
        assert (cache.hits, cache.misses) == (1, 1)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LRUCache(maxsize=0)

    def test_shared_between_threads(self):
        cache = LRUCache(maxsize=2)

        def work(i):
            key = f"k{i % 5}"
            cache.put(key, i)
            cache.get(key)
            return len(cache)

        with ThreadPoolExecutor(max_workers=8) as pool:
            sizes = list(pool.map(work, range(500)))
        assert max(sizes) <= 2
        assert len(cache) == 2
        assert cache.hits + cache.misses == 500


class TestParseSuggestion:
    def test_clean_json(self):
        raw = json.dumps({"symbols": ["Mirror", " ocean ", "ox", "mirror"], "tags": ["fearful", "unknown"]})
        result = parse_suggestion(raw)
        assert result.symbols == ["mirror", "ocean"]
        assert result.tags == [Tag.FEARFUL]

    def test_recovers_embedded_block(self):
        raw = 'Sure! Here you go:\n```json\n{"symbols": ["snake"], "tags": ["shadow"]}\n```'
        result = parse_suggestion(raw)
        assert result.symbols == ["snake"]
        assert result.tags == [Tag.SHADOW]

    def test_garbage_is_empty(self):
        result = parse_suggestion("no json here {at all")
        assert result.symbols == []
        assert result.tags == []


class TestSymbolSuggester:
    def test_caches_per_text(self):
        provider = FakeProvider('{"symbols": ["ocean"], "tags": ["calm"]}')
        suggester = SymbolSuggester(provider, cache_size=8)

        first = suggester.suggest("A calm ocean")
        second = suggester.suggest("  A calm ocean  ")

        assert first.symbols == ["ocean"]
        assert second is first
        assert len(provider.calls) == 1
        assert provider.calls[0][0]["role"] == "system"

    def test_blank_text_skips_provider(self):
        provider = FakeProvider("{}")
        assert SymbolSuggester(provider).suggest("   ").symbols == []
        assert provider.calls == []

    def test_provider_failure_is_not_cached(self):
        provider = FakeProvider(ConnectionError("offline"))
        suggester = SymbolSuggester(provider)

        assert suggester.suggest("storm at sea").symbols == []
        provider.reply = '{"symbols": ["storm"], "tags": []}'
        assert suggester.suggest("storm at sea").symbols == ["storm"]
        assert len(provider.calls) == 2

    def test_to_dict(self):
        provider = FakeProvider('{"symbols": ["moon"], "tags": ["lucid"]}')
        assert SymbolSuggester(provider).suggest("moon").to_dict() == {"symbols": ["moon"], "tags": ["lucid"]}


def test_resolve_provider_without_key(monkeypatch):
    monkeypatch.setattr("dotenv.load_dotenv", lambda *a, **k: False)
    assert resolve_provider() is None
