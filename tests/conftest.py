"""
Shared fixtures: an in-memory Supabase, a clean cache and production config.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from fakes import FakeSupabase
from funnelcms.core.cache import cache
from funnelcms.core.config import Config


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Every test starts with an empty cache, production mode and no API keys."""
    cache.clear()
    monkeypatch.setattr(Config, "APP_ENV", "production")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "")
    monkeypatch.setattr(Config, "FUNNELCMS_API_KEY", "")
    monkeypatch.setattr(Config, "RUN_CALLBACK_SECRET", "")
    yield
    cache.clear()


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def development(monkeypatch):
    monkeypatch.setattr(Config, "APP_ENV", "development")


def make_embedding_client(vector=None):
    """MagicMock OpenAI client whose embeddings.create returns one vector per input."""
    vector = vector or [0.1, 0.2, 0.3]
    client = MagicMock()

    def create(input, model):
        texts = input if isinstance(input, list) else [input]
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(vector)) for _ in texts])

    client.embeddings.create.side_effect = create
    return client


@pytest.fixture
def openai_client():
    return make_embedding_client()
