"""Provider API keys: which environment variable each LiteLLM provider reads.

Keys live only in the environment (config files refuse them), so commands that
reach a provider check here first and tell the user what to export.
"""

from __future__ import annotations

import os
from collections.abc import Iterable

_KEY_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "gemini": "GEMINI_API_KEY",
    # Local servers.
    "ollama": None,
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Provider prefix of a LiteLLM model string; bare names route to OpenAI."""
    return model.split("/", 1)[0].lower() if "/" in model else "openai"


def key_env_var(provider: str) -> str | None:
    """Environment variable holding *provider*'s key, or None if none is known."""
    return _KEY_ENV.get(provider.lower())


def missing_keys(models: Iterable[str]) -> list[str]:
    """Providers among *models* whose key variable is unset, in first-use order.

    Providers without a known variable (local servers, unlisted providers) are
    assumed to be configured; LiteLLM reports their errors at call time.
    """
    missing: list[str] = []
    for model in models:
        provider = provider_of(model)
        env_var = key_env_var(provider)
        if env_var and not os.getenv(env_var) and provider not in missing:
            missing.append(provider)
    return missing
