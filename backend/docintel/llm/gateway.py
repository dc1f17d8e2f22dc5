"""
AI Model Client — the narrow `generate` surface every stage talks to.

    ModelClient.generate(system, prompt, max_tokens) -> str

The LangChain-backed implementation builds a chat model per call from the
organization's AIConfig:

    openai → ChatOpenAI
    azure  → AzureChatOpenAI   (deployment = configured model)
    ollama → ChatOllama        (organization endpoint or OLLAMA_BASE_URL)

Provider exceptions are normalized to AIRateLimitError / AIProviderError so
stage code never needs to know a provider's exception types.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from docintel.core.config import settings
from docintel.core.exceptions import AIProviderError, AIRateLimitError, handle_ai_error
from docintel.llm.config import AIConfig

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    model_name: str

    async def generate(self, system: str, prompt: str, max_tokens: int) -> str: ...


class LangChainModelClient:
    """Provider-agnostic chat completion over LangChain chat models."""

    def __init__(self, config: AIConfig) -> None:
        self._config = config
        self.model_name = config.model

    # -----------------------------------------------------------------------
    # Provider-specific builders
    # -----------------------------------------------------------------------

    def _build_chat_model(self, max_tokens: int) -> BaseChatModel:
        cfg = self._config

        if cfg.provider == "openai":
            from langchain_openai import ChatOpenAI
            return ChatOpenAI(
                model=cfg.model,
                api_key=cfg.api_key,
                temperature=settings.llm_temperature,
                max_tokens=max_tokens,
                timeout=settings.llm_timeout_seconds,
            )

        if cfg.provider == "azure":
            from langchain_openai import AzureChatOpenAI
            return AzureChatOpenAI(
                azure_deployment=cfg.model,
                azure_endpoint=settings.azure_openai_endpoint,
                api_key=cfg.api_key,
                api_version=settings.azure_openai_api_version,
                temperature=settings.llm_temperature,
                max_tokens=max_tokens,
                timeout=settings.llm_timeout_seconds,
            )

        if cfg.provider == "ollama":
            from langchain_community.chat_models import ChatOllama
            return ChatOllama(
                model=cfg.model,
                base_url=cfg.ollama_endpoint or settings.ollama_base_url,
                temperature=settings.llm_temperature,
                num_predict=max_tokens,
            )

        raise ValueError(f"Unsupported provider: {cfg.provider}")

    # -----------------------------------------------------------------------
    # Non-streaming invoke
    # -----------------------------------------------------------------------

    async def generate(self, system: str, prompt: str, max_tokens: int) -> str:
        chat_model = self._build_chat_model(max_tokens)
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]

        t0 = time.perf_counter()
        try:
            response = await chat_model.ainvoke(messages)
        except Exception as exc:
            code, message = handle_ai_error(exc)
            logger.warning(
                "LLM call failed | provider=%s model=%s code=%s error=%s",
                self._config.provider, self._config.model, code, exc,
            )
            if code == "AI_RATE_LIMITED":
                raise AIRateLimitError() from exc
            raise AIProviderError(
                message,
                status_code=getattr(exc, "status_code", None),
                provider_message=str(exc),
            ) from exc

        latency_ms = (time.perf_counter() - t0) * 1000
        metadata = getattr(response, "response_metadata", None) or {}
        self.model_name = metadata.get("model_name") or metadata.get("model") or self._config.model

        logger.info(
            "LLM call ok | provider=%s model=%s latency_ms=%.0f",
            self._config.provider, self.model_name, latency_ms,
        )

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )
        return str(content)
