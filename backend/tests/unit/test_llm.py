"""
Unit Tests — AI capability layer
═════════════════════════════════
Tests for:
  • crypto                 — AES-GCM round trip, wrong secret, key masking
  • resolve_*_config       — provider / key / feature resolution
  • AIClients              — per-call settings reads, require_feature
  • FixedWindowRateLimiter — window accounting with a fake clock
  • LangChainModelClient   — error mapping, content flattening
  • OpenAIEmbeddingClient  — order restoration, count mismatch
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.exceptions import InvalidTag

from docintel.core.crypto import EncryptionKeyMissing, decrypt, encrypt, mask_api_key
from docintel.core.exceptions import (
    AIFeatureDisabledError,
    AINotConfiguredError,
    AIProviderError,
    AIRateLimitError,
    EmbeddingBatchError,
    handle_ai_error,
)
from docintel.llm.clients import AIClients
from docintel.llm.config import (
    AIConfig,
    EmbeddingConfig,
    SettingKeys,
    parse_features,
    resolve_ai_config,
    resolve_embedding_config,
)
from docintel.llm.gateway import LangChainModelClient
from docintel.llm.rate_limit import SWEEP_INTERVAL, FixedWindowRateLimiter
from docintel.processing.embeddings import OpenAIEmbeddingClient
from tests.fakes import FakeSettingsStore

SECRET = "unit-test-secret"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ─────────────────────────────────────────────────────────────────────────────
# crypto
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestCrypto:

    def test_round_trip(self):
        token = encrypt("sk-live-123", SECRET)
        assert token != "sk-live-123"
        assert decrypt(token, SECRET) == "sk-live-123"

    def test_each_encryption_is_salted(self):
        assert encrypt("same", SECRET) != encrypt("same", SECRET)

    def test_wrong_secret_fails(self):
        with pytest.raises(InvalidTag):
            decrypt(encrypt("sk-live-123", SECRET), "other-secret")

    def test_missing_secret(self):
        with pytest.raises(EncryptionKeyMissing):
            encrypt("x", "")

    @pytest.mark.parametrize("key,masked", [
        ("sk-proj-abcdef1234", "sk-****...1234"),
        ("short", "****"),
    ])
    def test_mask(self, key, masked):
        assert mask_api_key(key) == masked


# ─────────────────────────────────────────────────────────────────────────────
# Config resolution
# ─────────────────────────────────────────────────────────────────────────────

def _raw(**values) -> dict:
    return {key: values.get(key) for key in SettingKeys.ALL}


@pytest.mark.unit
class TestResolveAIConfig:

    def test_no_provider(self):
        assert resolve_ai_config(_raw()) is None

    def test_unknown_provider(self):
        assert resolve_ai_config(_raw(ai_provider="anthropic", ai_api_key=encrypt("k", SECRET)), SECRET) is None

    def test_openai_without_key(self):
        assert resolve_ai_config(_raw(ai_provider="openai"), SECRET) is None

    def test_openai_with_key_uses_default_model(self):
        config = resolve_ai_config(_raw(ai_provider="OpenAI", ai_api_key=encrypt("sk-1", SECRET)), SECRET)
        assert config.provider == "openai"
        assert config.api_key == "sk-1"
        assert config.model == "gpt-4o-mini"
        assert config.feature_enabled("document_analysis")
        assert not config.feature_enabled("rag")

    def test_undecryptable_key_is_not_configured(self):
        raw = _raw(ai_provider="openai", ai_api_key=encrypt("sk-1", "rotated-away"))
        assert resolve_ai_config(raw, SECRET) is None

    def test_ollama_needs_no_key(self):
        config = resolve_ai_config(_raw(ai_provider="ollama", ai_ollama_endpoint="http://gpu:11434"), SECRET)
        assert config.api_key is None
        assert config.model == "llama3.2"
        assert config.ollama_endpoint == "http://gpu:11434"

    def test_feature_overrides(self):
        raw = _raw(ai_provider="ollama", ai_features='{"rag": true, "chat": false}')
        config = resolve_ai_config(raw, SECRET)
        assert config.feature_enabled("rag")
        assert not config.feature_enabled("chat")
        assert not config.feature_enabled("unknown_feature")

    def test_invalid_features_json_uses_defaults(self):
        assert parse_features("{not json") == parse_features(None)


@pytest.mark.unit
class TestResolveEmbeddingConfig:

    def test_falls_back_to_chat_provider(self):
        config = resolve_embedding_config(_raw(ai_provider="openai", ai_api_key=encrypt("sk-1", SECRET)), SECRET)
        assert config.provider == "openai"
        assert config.model == "text-embedding-3-small"
        assert config.dimensions == 1536

    def test_azure_chat_cannot_embed(self):
        raw = _raw(ai_provider="azure", ai_api_key=encrypt("sk-1", SECRET))
        assert resolve_ai_config(raw, SECRET) is not None
        assert resolve_embedding_config(raw, SECRET) is None

    def test_dedicated_ollama_embedding_provider(self):
        raw = _raw(ai_provider="azure", ai_embedding_provider="ollama", ai_embedding_model="mxbai-embed-large")
        config = resolve_embedding_config(raw, SECRET)
        assert config.provider == "ollama"
        assert config.dimensions == 1024

    def test_unknown_model_gets_default_dimensions(self):
        raw = _raw(ai_provider="ollama", ai_embedding_model="custom-embedder")
        assert resolve_embedding_config(raw, SECRET).dimensions == 768


# ─────────────────────────────────────────────────────────────────────────────
# AIClients
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestAIClients:

    @pytest.fixture
    def store(self):
        return FakeSettingsStore(values={
            "org-ai":   {"ai_provider": "openai", "ai_api_key": encrypt("sk-1", SECRET)},
            "org-rag":  {"ai_provider": "ollama", "ai_features": '{"rag": true}'},
        })

    async def test_unconfigured_org_has_no_clients(self, store):
        clients = AIClients(store, SECRET)
        assert await clients.model_client("org-none") is None
        assert await clients.embedding_client("org-none") is None

    async def test_configured_org_gets_clients(self, store):
        clients = AIClients(store, SECRET)
        model = await clients.model_client("org-ai")
        embedder = await clients.embedding_client("org-ai")
        assert isinstance(model, LangChainModelClient)
        assert model.model_name == "gpt-4o-mini"
        assert isinstance(embedder, OpenAIEmbeddingClient)

    async def test_settings_are_read_on_every_call(self, store):
        clients = AIClients(store, SECRET)
        await clients.ai_config("org-ai")
        store.values["org-ai"] = {}
        assert await clients.ai_config("org-ai") is None
        assert store.reads == 2

    async def test_require_feature(self, store):
        clients = AIClients(store, SECRET)
        with pytest.raises(AINotConfiguredError):
            await clients.require_feature("org-none", "rag")
        with pytest.raises(AIFeatureDisabledError):
            await clients.require_feature("org-ai", "rag")
        config = await clients.require_feature("org-rag", "rag")
        assert config.provider == "ollama"


# ─────────────────────────────────────────────────────────────────────────────
# Rate limiter
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestFixedWindowRateLimiter:

    def test_limit_within_window(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(limit=3, window_seconds=60, clock=clock)

        decisions = [limiter.check("analysis:u1") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[-1].retry_after(clock.now) == pytest.approx(60)

    def test_window_resets(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
        assert limiter.check("k").allowed
        assert not limiter.check("k").allowed

        clock.now += 60
        assert limiter.check("k").allowed

    def test_keys_are_independent(self):
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=FakeClock())
        assert limiter.check("analysis:u1").allowed
        assert limiter.check("analysis:u2").allowed

    def test_expired_windows_are_swept(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(limit=5, window_seconds=10, clock=clock)
        limiter.check("a")
        limiter.check("b")
        assert len(limiter) == 2

        clock.now += SWEEP_INTERVAL
        limiter.check("c")
        assert len(limiter) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Error mapping
# ─────────────────────────────────────────────────────────────────────────────

class RateLimitError(Exception):
    status_code = 429


class APIConnectionError(Exception):
    pass


class BadRequest(Exception):
    status_code = 400


@pytest.mark.unit
class TestHandleAIError:

    @pytest.mark.parametrize("exc,code", [
        (AINotConfiguredError(), "AI_NOT_CONFIGURED"),
        (AIRateLimitError(30), "AI_RATE_LIMITED"),
        (RateLimitError("slow down"), "AI_RATE_LIMITED"),
        (APIConnectionError("refused"), "AI_CONNECTION_ERROR"),
        (ConnectionResetError(), "AI_CONNECTION_ERROR"),
        (BadRequest("bad"), "AI_PROVIDER_ERROR"),
        (ValueError("odd"), "AI_ERROR"),
    ])
    def test_codes(self, exc, code):
        assert handle_ai_error(exc)[0] == code


# ─────────────────────────────────────────────────────────────────────────────
# LangChain chat client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestLangChainModelClient:

    def _client(self, response=None, error=None):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock(return_value=response, side_effect=error)
        client = LangChainModelClient(AIConfig(provider="openai", model="gpt-4o-mini", api_key="sk"))
        return client, chat_model

    async def test_returns_text_and_reported_model(self):
        response = SimpleNamespace(content="contract", response_metadata={"model_name": "gpt-4o-mini-2024"})
        client, chat_model = self._client(response)

        with patch.object(client, "_build_chat_model", return_value=chat_model) as build:
            reply = await client.generate("system", "prompt", 20)

        assert reply == "contract"
        assert client.model_name == "gpt-4o-mini-2024"
        build.assert_called_once_with(20)
        messages = chat_model.ainvoke.await_args.args[0]
        assert [m.content for m in messages] == ["system", "prompt"]

    async def test_flattens_content_parts(self):
        response = SimpleNamespace(content=[{"type": "text", "text": "a"}, "b"], response_metadata={})
        client, chat_model = self._client(response)
        with patch.object(client, "_build_chat_model", return_value=chat_model):
            assert await client.generate("s", "p", 5) == "ab"

    async def test_rate_limit_maps_to_ai_rate_limit(self):
        client, chat_model = self._client(error=RateLimitError("429"))
        with patch.object(client, "_build_chat_model", return_value=chat_model):
            with pytest.raises(AIRateLimitError):
                await client.generate("s", "p", 5)

    async def test_other_errors_map_to_provider_error(self):
        client, chat_model = self._client(error=BadRequest("invalid model"))
        with patch.object(client, "_build_chat_model", return_value=chat_model):
            with pytest.raises(AIProviderError) as exc_info:
                await client.generate("s", "p", 5)
        assert exc_info.value.status_code == 400

    def test_unsupported_provider(self):
        client = LangChainModelClient(AIConfig(provider="cohere", model="m", api_key="k"))
        with pytest.raises(ValueError):
            client._build_chat_model(10)


# ─────────────────────────────────────────────────────────────────────────────
# Embedding client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestOpenAIEmbeddingClient:

    def _client(self, data, model="text-embedding-3-small"):
        client = OpenAIEmbeddingClient(EmbeddingConfig(
            provider="openai", model="text-embedding-3-small", api_key="sk", dimensions=1536,
        ))
        fake = MagicMock()
        fake.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=data, model=model))
        client._client = fake
        return client, fake

    async def test_restores_input_order(self):
        data = [
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ]
        client, fake = self._client(data)

        batch = await client.embed(["first", "second"])

        assert batch.vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert batch.dimensions == 2
        assert batch.model == "text-embedding-3-small"
        fake.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input=["first", "second"])

    async def test_count_mismatch_raises(self):
        client, _ = self._client([SimpleNamespace(index=0, embedding=[1.0])])
        with pytest.raises(EmbeddingBatchError):
            await client.embed(["a", "b"])

    async def test_empty_input_makes_no_request(self):
        client, fake = self._client([])
        batch = await client.embed([])
        assert batch.vectors == []
        fake.embeddings.create.assert_not_awaited()
