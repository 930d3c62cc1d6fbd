"""Thin LiteLLM wrapper for the two model calls Memoria makes.

- ``embed``: one text → one vector (indexing and query embedding).
- ``complete``: one chat completion (conversation compaction).

Both rely on LiteLLM's own retry with exponential backoff. Provider keys
come from the environment only; ``validate_api_key`` checks for them up
front so a missing key degrades the caller instead of failing per request.
"""

from __future__ import annotations

import os

import litellm

litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

DEFAULT_RETRIES = 3

# Env var holding each provider's key. None: local provider, no key needed.
# Providers not listed here are assumed to use <PROVIDER>_API_KEY.
_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,
    "ollama_chat": None,
    "huggingface": None,
}


def provider_of(model: str) -> str:
    """Provider prefix of a LiteLLM model string; bare names are OpenAI models."""
    if "/" not in model:
        return "openai"
    return model.split("/", 1)[0].lower()


def _key_env_var(provider: str) -> str | None:
    if provider in _PROVIDER_ENV:
        return _PROVIDER_ENV[provider]
    return f"{provider.upper()}_API_KEY"


def validate_api_key(model: str) -> None:
    """Raise EnvironmentError if *model*'s provider key is not set."""
    provider = provider_of(model)
    env_var = _key_env_var(provider)
    if env_var is None or os.getenv(env_var):
        return
    raise EnvironmentError(
        f"No API key for provider '{provider}' (model {model}). "
        f"Export {env_var} or choose another model in memoria.yaml."
    )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    num_retries: int = DEFAULT_RETRIES,
    timeout: float | None = None,
) -> str:
    """Run one chat completion and return the reply text ('' if the model sent none).

    Raises whatever LiteLLM raises once its retries are exhausted.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        timeout=timeout,
    )
    return response.choices[0].message.content or ""


def embed(model: str, text: str, num_retries: int = DEFAULT_RETRIES) -> list[float]:
    """Embed a single *text* with *model*."""
    response = litellm.embedding(model=model, input=[text], num_retries=num_retries)
    return response.data[0]["embedding"]
