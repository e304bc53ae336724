"""
Pytest configuration and shared fixtures for test isolation.
"""
import pytest

from anchorweb.text_utils import PhraseCandidates, StaticTagger


# Reset global state between tests
@pytest.fixture(autouse=True)
def reset_global_state(monkeypatch):
    """Reset global state before each test to ensure isolation."""
    from anchorweb.config import Config
    from anchorweb.server import journal_instances

    # No test may reach the remote suggester
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    snapshot = Config.to_dict()
    journal_instances.clear()

    yield

    journal_instances.clear()
    Config.from_dict(snapshot, apply_env_overrides=False)


@pytest.fixture
def temp_memory_dir(tmp_path):
    """Provide a temporary memory directory for tests."""
    from anchorweb.config import Config

    memory_dir = tmp_path / "test_memory"
    memory_dir.mkdir(exist_ok=True)
    Config.storage.MEMORY_DIR = str(memory_dir)
    yield memory_dir


@pytest.fixture
def dream_tagger():
    """Tagger answering for the texts used across the journal tests."""
    return StaticTagger({
        "I saw a mirror and a snake near the ocean": PhraseCandidates(
            nouns=["mirror", "snake", "ocean"],
        ),
        "The ocean reflected in the mirror": PhraseCandidates(
            nouns=["ocean", "mirror"],
        ),
        "A snake crossed the school project in New York": PhraseCandidates(
            nouns=["snake", "school", "project"],
            compounds=["school project", "New York"],
        ),
    })


@pytest.fixture
def journal(dream_tagger):
    """In-memory journal with a static tagger and no suggester."""
    from anchorweb.api import Journal
    return Journal.init(owner="tester", tagger=dream_tagger)


@pytest.fixture
def test_client():
    """Provide a TestClient for API testing with clean state."""
    from fastapi.testclient import TestClient
    from anchorweb.server import app, journal_instances

    journal_instances.clear()
    client = TestClient(app)
    yield client
    journal_instances.clear()
