"""Provider definitions for inference_gateway."""

from .base import BaseProvider
from .deepseek import DeepseekProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider
from .xai import XAIProvider

__all__ = [
    "BaseProvider",
    "OpenAIProvider",
    "DeepseekProvider",
    "OpenRouterProvider",
    "XAIProvider",
]
