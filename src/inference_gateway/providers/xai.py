"""x.ai (Grok) provider implementation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import ProviderId, SamplingParams, ToolFlags, Turn

_DEFAULT_BASE_URL = "https://api.x.ai/v1"


class XAIProvider(BaseProvider):
    """Chat completions, plus the Responses API with ``web_search``/``x_search`` tools."""

    name = "xai"
    provider_id = ProviderId.XAI
    default_base_url = _DEFAULT_BASE_URL
    responses_path = "/responses"

    def _responses_tools(self, tools: ToolFlags) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        if tools.web_search:
            result.append({"type": "web_search"})
        if tools.x_search:
            result.append({"type": "x_search"})
        return result

    def _build_responses_payload(
        self,
        model: str,
        turns: Sequence[Turn],
        params: SamplingParams | None,
        tools: ToolFlags,
    ) -> dict[str, Any]:
        payload = super()._build_responses_payload(model, turns, params, tools)
        # Keep conversations off x.ai servers.
        payload["store"] = False
        return payload
