"""Unified streaming inference gateway for local and cloud language models."""

from .embeddings import EmbeddingService, cosine_similarity
from .errors import ErrorKind, GatewayError
from .local_engine import LocalEngineAdapter, NativeEngine, format_prompt
from .router import GatewayRouter, GenerationStream
from .types import (
    Attachment,
    GenerationRequest,
    LocalTarget,
    ProviderId,
    RemoteTarget,
    SamplingParams,
    StreamEvent,
    ToolFlags,
    Turn,
)

__all__ = [
    "Attachment",
    "EmbeddingService",
    "ErrorKind",
    "GatewayError",
    "GatewayRouter",
    "GenerationRequest",
    "GenerationStream",
    "LocalEngineAdapter",
    "LocalTarget",
    "NativeEngine",
    "ProviderId",
    "RemoteTarget",
    "SamplingParams",
    "StreamEvent",
    "ToolFlags",
    "Turn",
    "cosine_similarity",
    "format_prompt",
]
