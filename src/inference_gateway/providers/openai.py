"""OpenAI provider implementation."""

from __future__ import annotations

from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import ProviderId

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIProvider(BaseProvider):
    """Chat Completions for plain turns; the Responses API when web search is requested.

    Reasoning models (o1/o3/o4) get no temperature/top_p, and the GPT-5 and
    reasoning generations name the output limit ``max_completion_tokens``;
    both rules come from the capability policy.
    """

    name = "openai"
    provider_id = ProviderId.OPENAI
    default_base_url = _DEFAULT_BASE_URL
    responses_path = "/responses"
    embeddings_path = "/embeddings"
