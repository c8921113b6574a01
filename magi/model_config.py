from __future__ import annotations

import os

from .models import Provider

DEFAULT_MODELS: dict[Provider, str] = {
    Provider.OPENAI: "gpt-5.1",
    Provider.ANTHROPIC: "claude-sonnet-4-5",
    Provider.GROK: "grok-4-fast-reasoning",
}


def get_env_key(provider: Provider) -> str:
    return f"MAGI_{provider.value.upper()}_MODEL"


def get_model_from_env(provider: Provider) -> str | None:
    value = os.getenv(get_env_key(provider), "").strip()
    return value or None


def canonical_model_for(provider: Provider, requested: str | None = None) -> str:
    """Resolve the model to call: env override, then the agent's model, then the default."""
    model, _ = resolve_model_with_source(provider, requested)
    return model


def resolve_model_with_source(provider: Provider, requested: str | None = None) -> tuple[str, str]:
    env_value = get_model_from_env(provider)
    if env_value:
        return env_value, "env"

    trimmed = (requested or "").strip()
    if trimmed:
        return trimmed, "agent"

    return DEFAULT_MODELS[provider], "default"
