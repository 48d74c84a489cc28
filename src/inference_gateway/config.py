"""Load gateway configuration from YAML and environment variables. No secrets in files."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, Optional

import httpx
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from inference_gateway.embeddings import DEFAULT_EMBEDDING_MODEL, EmbeddingService, NativeEmbeddingEngine
from inference_gateway.local_engine import LocalEngineAdapter, NativeEngine
from inference_gateway.providers import (
    BaseProvider,
    DeepseekProvider,
    OpenAIProvider,
    OpenRouterProvider,
    XAIProvider,
)
from inference_gateway.router import GatewayRouter
from inference_gateway.types import ApiKeyLookup, ProviderId


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class _Section(BaseSettings):
    """Environment variables override values passed in from YAML."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings, dotenv_settings, file_secret_settings


class ProviderSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_PROVIDER_", extra="ignore")
    enabled: list[ProviderId] = Field(default_factory=lambda: list(ProviderId))
    openai_base_url: Optional[str] = None
    deepseek_base_url: Optional[str] = None
    openrouter_base_url: Optional[str] = None
    xai_base_url: Optional[str] = None
    timeout_s: float = 60.0

    def base_url(self, provider: ProviderId) -> Optional[str]:
        return getattr(self, f"{provider.value}_base_url")


class OpenRouterSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_OPENROUTER_", extra="ignore")
    referer: Optional[str] = None
    title: Optional[str] = None


class LocalEngineSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_LOCAL_", extra="ignore", protected_namespaces=())
    model_path: Optional[str] = None
    context_size: int = 2048
    cancel_grace_s: float = 2.0


class StreamSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_STREAM_", extra="ignore")
    max_malformed_events: Optional[int] = None


class EmbeddingSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_EMBEDDING_", extra="ignore")
    backend: Literal["local", "remote"] = "remote"
    provider: Literal["openai", "openrouter"] = "openai"
    model: str = DEFAULT_EMBEDDING_MODEL


class LoggingSettings(_Section):
    model_config = SettingsConfigDict(env_prefix="GATEWAY_LOG_", extra="ignore")
    level: str = "INFO"
    use_json: bool = True


class GatewaySettings(BaseSettings):
    """Gateway config: YAML + env. API keys come from env only, see ``EnvApiKeyLookup``."""

    model_config = SettingsConfigDict(extra="ignore")

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    openrouter: OpenRouterSettings = Field(default_factory=OpenRouterSettings)
    local: LocalEngineSettings = Field(default_factory=LocalEngineSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "GatewaySettings":
        yaml_data = _load_yaml(Path(config_path)) if config_path else {}
        return cls(
            providers=ProviderSettings(**yaml_data.get("providers", {})),
            openrouter=OpenRouterSettings(**yaml_data.get("openrouter", {})),
            local=LocalEngineSettings(**yaml_data.get("local", {})),
            stream=StreamSettings(**yaml_data.get("stream", {})),
            embedding=EmbeddingSettings(**yaml_data.get("embedding", {})),
            logging=LoggingSettings(**yaml_data.get("logging", {})),
        )


def get_settings(config_path: str | Path | None = None) -> GatewaySettings:
    return GatewaySettings.load(config_path)


class EnvApiKeyLookup:
    """``api_key_lookup`` reading one environment variable per provider."""

    ENV_VARS: dict[ProviderId, str] = {
        ProviderId.OPENAI: "OPENAI_API_KEY",
        ProviderId.DEEPSEEK: "DEEPSEEK_API_KEY",
        ProviderId.OPENROUTER: "OPENROUTER_API_KEY",
        ProviderId.XAI: "XAI_API_KEY",
    }

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def __call__(self, provider: ProviderId) -> str | None:
        return self._environ.get(self.ENV_VARS[provider]) or None


_PROVIDER_CLASSES: dict[ProviderId, type[BaseProvider]] = {
    ProviderId.OPENAI: OpenAIProvider,
    ProviderId.DEEPSEEK: DeepseekProvider,
    ProviderId.OPENROUTER: OpenRouterProvider,
    ProviderId.XAI: XAIProvider,
}


def build_provider(
    settings: GatewaySettings,
    provider_id: ProviderId,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseProvider:
    kwargs: dict[str, Any] = {
        "base_url": settings.providers.base_url(provider_id),
        "timeout_s": settings.providers.timeout_s,
        "max_malformed_events": settings.stream.max_malformed_events,
        "transport": transport,
    }
    if provider_id is ProviderId.OPENROUTER:
        kwargs["referer"] = settings.openrouter.referer
        kwargs["title"] = settings.openrouter.title
    return _PROVIDER_CLASSES[provider_id](**kwargs)


def build_local_adapter(settings: GatewaySettings, engine: NativeEngine) -> LocalEngineAdapter:
    """Wrap ``engine``; loads ``local.model_path`` when one is configured."""
    adapter = LocalEngineAdapter(engine, cancel_grace_s=settings.local.cancel_grace_s)
    if settings.local.model_path:
        adapter.load(settings.local.model_path, settings.local.context_size)
    return adapter


def build_router(
    settings: GatewaySettings,
    local_adapter: LocalEngineAdapter | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GatewayRouter:
    providers = {
        provider_id.value: build_provider(settings, provider_id, transport=transport)
        for provider_id in settings.providers.enabled
    }
    return GatewayRouter(local=local_adapter, cancel_grace_s=settings.local.cancel_grace_s, **providers)


def build_embedding_service(
    settings: GatewaySettings,
    *,
    local_engine: NativeEmbeddingEngine | None = None,
    api_key_lookup: ApiKeyLookup | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EmbeddingService:
    if settings.embedding.backend == "local":
        if local_engine is None:
            raise ValueError("Local embeddings configured but no embedding engine given")
        return EmbeddingService(local=local_engine, model=settings.embedding.model)
    provider = build_provider(settings, ProviderId(settings.embedding.provider), transport=transport)
    return EmbeddingService(
        provider=provider,
        api_key_lookup=api_key_lookup or EnvApiKeyLookup(),
        model=settings.embedding.model,
    )
