import pytest

from magi.model_config import DEFAULT_MODELS, canonical_model_for, get_env_key, resolve_model_with_source
from magi.models import Provider


@pytest.fixture(autouse=True)
def clear_model_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for provider in Provider:
        monkeypatch.delenv(get_env_key(provider), raising=False)


def test_default_model_per_provider() -> None:
    for provider in Provider:
        assert canonical_model_for(provider) == DEFAULT_MODELS[provider]
    assert resolve_model_with_source(Provider.OPENAI, "   ") == (DEFAULT_MODELS[Provider.OPENAI], "default")


def test_agent_model_beats_default() -> None:
    assert resolve_model_with_source(Provider.ANTHROPIC, " claude-opus ") == ("claude-opus", "agent")


def test_env_override_beats_agent_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAGI_GROK_MODEL", "grok-3")
    assert get_env_key(Provider.GROK) == "MAGI_GROK_MODEL"
    assert resolve_model_with_source(Provider.GROK, "grok-4") == ("grok-3", "env")
    assert canonical_model_for(Provider.OPENAI, "gpt-4o") == "gpt-4o"
