"""
Per-organization AI configuration (bring-your-own-key).

Raw values come from the system_settings table; this module turns them into
typed configs. A config resolves to None whenever the capability is not
usable (no provider, no key, key cannot be decrypted, provider cannot
embed), and callers treat None as "not configured" rather than an error.

Embedding provider/model fall back to the chat provider when no dedicated
embedding provider is set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Mapping

from docintel.core.crypto import EncryptionKeyMissing, decrypt

logger = logging.getLogger(__name__)


class SettingKeys:
    PROVIDER           = "ai_provider"
    API_KEY            = "ai_api_key"
    MODEL              = "ai_model"
    OLLAMA_ENDPOINT    = "ai_ollama_endpoint"
    FEATURES           = "ai_features"
    EMBEDDING_PROVIDER = "ai_embedding_provider"
    EMBEDDING_MODEL    = "ai_embedding_model"

    ALL = (
        PROVIDER, API_KEY, MODEL, OLLAMA_ENDPOINT, FEATURES,
        EMBEDDING_PROVIDER, EMBEDDING_MODEL,
    )


# ---------------------------------------------------------------------------
# Provider catalogue
# ---------------------------------------------------------------------------

CHAT_PROVIDERS = frozenset({"openai", "azure", "ollama"})
EMBEDDING_PROVIDERS = frozenset({"openai", "ollama"})

DEFAULT_CHAT_MODELS = {
    "openai": "gpt-4o-mini",
    "azure":  "gpt-4o-mini",
    "ollama": "llama3.2",
}

DEFAULT_EMBEDDING_MODELS = {
    "openai": "text-embedding-3-small",
    "ollama": "nomic-embed-text",
}

EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "nomic-embed-text":       768,
    "mxbai-embed-large":      1024,
}
DEFAULT_EMBEDDING_DIMENSIONS = 768

DEFAULT_FEATURES = {
    "chat":              True,
    "document_analysis": True,
    "email_draft":       True,
    "insights":          True,
    "rag":               False,
}


# ---------------------------------------------------------------------------
# Typed configs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AIConfig:
    provider:        str
    model:           str
    api_key:         str | None
    ollama_endpoint: str | None = None
    features:        dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_FEATURES))

    def feature_enabled(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))


@dataclass(frozen=True)
class EmbeddingConfig:
    provider:        str
    model:           str
    api_key:         str | None
    dimensions:      int
    ollama_endpoint: str | None = None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def parse_features(raw: str | None) -> dict[str, bool]:
    features = dict(DEFAULT_FEATURES)
    if not raw:
        return features
    try:
        overrides = json.loads(raw)
    except ValueError:
        logger.warning("Invalid ai_features JSON, using defaults")
        return features
    if isinstance(overrides, dict):
        features.update({str(k): bool(v) for k, v in overrides.items()})
    return features


def _decrypt_key(encrypted: str | None, secret: str | None) -> str | None:
    if not encrypted:
        return None
    try:
        return decrypt(encrypted, secret)
    except EncryptionKeyMissing:
        logger.error("AI_ENCRYPTION_KEY missing; stored API keys are unusable")
        return None
    except Exception as exc:
        logger.warning("API key decryption failed: %s", type(exc).__name__)
        return None


def resolve_ai_config(raw: Mapping[str, str | None], secret: str | None = None) -> AIConfig | None:
    provider = (raw.get(SettingKeys.PROVIDER) or "").strip().lower()
    if provider not in CHAT_PROVIDERS:
        return None

    api_key = None
    if provider != "ollama":
        api_key = _decrypt_key(raw.get(SettingKeys.API_KEY), secret)
        if not api_key:
            return None

    return AIConfig(
        provider=provider,
        model=raw.get(SettingKeys.MODEL) or DEFAULT_CHAT_MODELS[provider],
        api_key=api_key,
        ollama_endpoint=raw.get(SettingKeys.OLLAMA_ENDPOINT) or None,
        features=parse_features(raw.get(SettingKeys.FEATURES)),
    )


def resolve_embedding_config(
    raw: Mapping[str, str | None],
    secret: str | None = None,
) -> EmbeddingConfig | None:
    provider = (
        raw.get(SettingKeys.EMBEDDING_PROVIDER) or raw.get(SettingKeys.PROVIDER) or ""
    ).strip().lower()
    if provider not in EMBEDDING_PROVIDERS:
        return None

    model = raw.get(SettingKeys.EMBEDDING_MODEL) or DEFAULT_EMBEDDING_MODELS[provider]

    api_key = None
    if provider != "ollama":
        api_key = _decrypt_key(raw.get(SettingKeys.API_KEY), secret)
        if not api_key:
            return None

    return EmbeddingConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        dimensions=EMBEDDING_DIMENSIONS.get(model, DEFAULT_EMBEDDING_DIMENSIONS),
        ollama_endpoint=raw.get(SettingKeys.OLLAMA_ENDPOINT) or None,
    )
