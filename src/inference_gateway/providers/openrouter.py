"""OpenRouter provider implementation."""

from __future__ import annotations

from typing import Any

from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import ProviderId, ToolFlags

_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
_ONLINE_SUFFIX = ":online"


class OpenRouterProvider(BaseProvider):
    """Aggregator speaking the OpenAI chat-completions format.

    Web search is not a tool here: it is enabled by routing to the model's
    ``:online`` variant.
    """

    name = "openrouter"
    provider_id = ProviderId.OPENROUTER
    default_base_url = _DEFAULT_BASE_URL
    embeddings_path = "/embeddings"

    def __init__(
        self,
        *,
        referer: str | None = None,
        title: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._attribution: dict[str, str] = {}
        if referer:
            self._attribution["HTTP-Referer"] = referer
        if title:
            self._attribution["X-Title"] = title

    def _headers(self, api_key: str) -> dict[str, str]:
        return {**super()._headers(api_key), **self._attribution}

    def _wire_model(self, model: str, tools: ToolFlags | None) -> str:
        if tools is not None and tools.web_search and not model.endswith(_ONLINE_SUFFIX):
            return model + _ONLINE_SUFFIX
        return model
