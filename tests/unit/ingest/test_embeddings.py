"""Tests for the lazily-loaded embedding backend."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from memoria.ingest.embeddings import BackendState, EmbeddingBackend


def _fixed(vec):
    return lambda text: vec


def test_starts_not_loaded():
    backend = EmbeddingBackend(dimensions=2, embed_fn=_fixed([1.0, 0.0]))
    assert backend.state is BackendState.NOT_LOADED


def test_first_embed_loads_backend():
    backend = EmbeddingBackend(dimensions=2, embed_fn=_fixed([1.0, 0.0]))
    assert backend.embed("hello") == [1.0, 0.0]
    assert backend.state is BackendState.READY
    assert backend.available is True


def test_disabled_backend_never_embeds():
    backend = EmbeddingBackend.unavailable()
    assert backend.state is BackendState.UNAVAILABLE
    assert backend.available is False
    assert backend.embed("hello") is None


def test_missing_api_key_is_permanently_unavailable(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    backend = EmbeddingBackend(model="openai/text-embedding-3-small", dimensions=3)
    assert backend.embed("hello") is None
    assert backend.state is BackendState.UNAVAILABLE

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert backend.embed("hello") is None
    assert backend.state is BackendState.UNAVAILABLE


def test_litellm_embedding_used_when_key_present(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [0.1, 0.2, 0.3]}]

    backend = EmbeddingBackend(model="openai/text-embedding-3-small", dimensions=3)
    with patch(
        "memoria.rag.llm_client.litellm.embedding", return_value=mock_response
    ) as mock_embed:
        vec = backend.embed("hello")

    assert vec == [0.1, 0.2, 0.3]
    assert mock_embed.call_args.kwargs["model"] == "openai/text-embedding-3-small"
    assert mock_embed.call_args.kwargs["input"] == ["hello"]


def test_failing_call_returns_none_but_stays_ready():
    calls = {"n": 0}

    def flaky(text):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("rate limited")
        return [1.0, 2.0]

    backend = EmbeddingBackend(dimensions=2, embed_fn=flaky)
    assert backend.embed("a") is None
    assert backend.state is BackendState.READY
    assert backend.embed("b") == [1.0, 2.0]


def test_wrong_dimension_vector_dropped():
    backend = EmbeddingBackend(dimensions=4, embed_fn=_fixed([1.0, 2.0]))
    assert backend.embed("hello") is None
    assert backend.state is BackendState.READY


def test_local_provider_needs_no_key(monkeypatch):
    for var in ("OPENAI_API_KEY", "OLLAMA_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    backend = EmbeddingBackend(model="ollama/nomic-embed-text", dimensions=768)
    assert backend.load() is True
    assert backend.state is BackendState.READY
