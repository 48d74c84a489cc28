"""DeepSeek provider implementation."""

from __future__ import annotations

from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import ProviderId

_DEFAULT_BASE_URL = "https://api.deepseek.com"


class DeepseekProvider(BaseProvider):
    """OpenAI-compatible chat completions; text only, no tools, no embeddings."""

    name = "deepseek"
    provider_id = ProviderId.DEEPSEEK
    default_base_url = _DEFAULT_BASE_URL
