"""
Per-organization access to AI capabilities.

    model_client(org)      → ModelClient | None      (None = AI not configured)
    embedding_client(org)  → EmbeddingClient | None  (None = embeddings not configured)
    feature_enabled(org, feature)

Settings are re-read on every call: organizations can change provider or
rotate keys at any time, and a run resumed hours later must see the
current configuration.
"""

from __future__ import annotations

import logging

from docintel.core.exceptions import AIFeatureDisabledError, AINotConfiguredError
from docintel.llm.config import (
    AIConfig,
    EmbeddingConfig,
    SettingKeys,
    resolve_ai_config,
    resolve_embedding_config,
)
from docintel.llm.gateway import LangChainModelClient, ModelClient
from docintel.processing.embeddings import EmbeddingClient, OpenAIEmbeddingClient
from docintel.repositories.base import SettingsStore

logger = logging.getLogger(__name__)


class AIClients:
    def __init__(self, settings_store: SettingsStore, secret: str | None = None) -> None:
        self._settings = settings_store
        self._secret   = secret

    async def _raw(self, organization_id: str) -> dict[str, str | None]:
        return await self._settings.get_values(organization_id, SettingKeys.ALL)

    async def ai_config(self, organization_id: str) -> AIConfig | None:
        return resolve_ai_config(await self._raw(organization_id), self._secret)

    async def embedding_config(self, organization_id: str) -> EmbeddingConfig | None:
        return resolve_embedding_config(await self._raw(organization_id), self._secret)

    async def model_client(self, organization_id: str) -> ModelClient | None:
        config = await self.ai_config(organization_id)
        if config is None:
            logger.debug("AI not configured | org=%s", organization_id)
            return None
        return LangChainModelClient(config)

    async def embedding_client(self, organization_id: str) -> EmbeddingClient | None:
        config = await self.embedding_config(organization_id)
        if config is None:
            logger.debug("Embeddings not configured | org=%s", organization_id)
            return None
        return OpenAIEmbeddingClient(config)

    async def feature_enabled(self, organization_id: str, feature: str) -> bool:
        config = await self.ai_config(organization_id)
        return config is not None and config.feature_enabled(feature)

    async def require_feature(self, organization_id: str, feature: str) -> AIConfig:
        """Raise AINotConfiguredError / AIFeatureDisabledError instead of returning None."""
        config = await self.ai_config(organization_id)
        if config is None:
            raise AINotConfiguredError()
        if not config.feature_enabled(feature):
            raise AIFeatureDisabledError(feature)
        return config
