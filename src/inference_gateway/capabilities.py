"""Per-model request shaping rules and multimodal limits.

``lookup`` is pure and total: every string, including ``""``, maps to a
``ModelCapabilities`` value. Unknown ids get a text-only profile with
legacy ``max_tokens`` naming.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Literal

from inference_gateway.errors import UnsupportedFeatureError
from inference_gateway.types import Attachment, LocalTarget, ProviderTarget, ToolFlags

TokenLimitParam = Literal["max_tokens", "max_completion_tokens"]

_MB = 1024 * 1024
_ONLINE_SUFFIX = ":online"
_IMAGE_FORMATS = ("jpeg", "jpg", "png", "gif", "webp")

# Model families that reject temperature/top_p outright.
_REASONING_PREFIXES = ("o1", "o3", "o4")
# Model generations that name the output limit max_completion_tokens.
_COMPLETION_TOKENS_PREFIXES = ("gpt-5", "o1", "o3", "o4")


@dataclass(frozen=True)
class ImageLimits:
    """``max_images`` of None means the provider documents no limit."""

    max_images: int | None
    max_size_per_image_mb: int
    max_total_payload_mb: int
    supported_formats: tuple[str, ...] = _IMAGE_FORMATS
    supports_detail: bool = True


@dataclass(frozen=True)
class DocumentLimits:
    max_documents: int
    max_size_per_document_mb: int
    supported_formats: tuple[str, ...]


@dataclass(frozen=True)
class ModelCapabilities:
    """Describes feature support for a model."""

    supports_vision: bool = False
    supports_documents: bool = False
    supports_web_search: bool = False
    supports_x_search: bool = False
    allows_sampling_params: bool = True
    token_limit_param: TokenLimitParam = "max_tokens"
    image_limits: ImageLimits | None = None
    document_limits: DocumentLimits | None = None
    total_attachments_limit: int | None = 0
    notes: str = ""

    @property
    def supports_attachments(self) -> bool:
        return self.supports_vision or self.supports_documents


DEFAULT_CAPABILITIES = ModelCapabilities(notes="No multimodal support for this model")

_GPT5 = ModelCapabilities(
    supports_vision=True,
    supports_documents=True,
    supports_web_search=True,
    image_limits=ImageLimits(max_images=500, max_size_per_image_mb=50, max_total_payload_mb=50),
    document_limits=DocumentLimits(
        max_documents=50,
        max_size_per_document_mb=50,
        supported_formats=("pdf", "txt", "doc", "docx"),
    ),
    total_attachments_limit=500,
    notes="GPT-5.x: up to 500 images or files, 50MB total payload. Web search via Responses API.",
)

_GPT4O = replace(
    _GPT5,
    document_limits=DocumentLimits(max_documents=50, max_size_per_document_mb=50, supported_formats=("pdf", "txt")),
    notes="GPT-4o: up to 500 images or files, 50MB total payload. Web search via Responses API.",
)

_GPT41 = replace(
    _GPT5,
    supports_documents=False,
    document_limits=None,
    notes="GPT-4.1: up to 500 images, 50MB total payload. Web search via Responses API.",
)

_OPENAI_REASONING = ModelCapabilities(
    supports_web_search=True,
    notes="OpenAI reasoning model: sampling parameters are rejected.",
)

_DEEPSEEK_TEXT = ModelCapabilities(notes="DeepSeek: text only.")

_ROUTER_TEXT = ModelCapabilities(
    supports_web_search=True,
    notes="Text only. Web search via :online.",
)

_ROUTER_VISION_10 = ModelCapabilities(
    supports_vision=True,
    supports_web_search=True,
    image_limits=ImageLimits(max_images=10, max_size_per_image_mb=20, max_total_payload_mb=100),
    total_attachments_limit=10,
    notes="Up to 10 images. Web search via :online.",
)

_CLAUDE = ModelCapabilities(
    supports_vision=True,
    supports_documents=True,
    supports_web_search=True,
    image_limits=ImageLimits(max_images=100, max_size_per_image_mb=30, max_total_payload_mb=32),
    document_limits=DocumentLimits(max_documents=10, max_size_per_document_mb=32, supported_formats=("pdf",)),
    total_attachments_limit=100,
    notes="Claude: up to 100 images or PDFs, 32MB total request size. Web search via :online.",
)

_GEMINI = ModelCapabilities(
    supports_vision=True,
    supports_documents=True,
    supports_web_search=True,
    image_limits=ImageLimits(max_images=3000, max_size_per_image_mb=100, max_total_payload_mb=100),
    document_limits=DocumentLimits(
        max_documents=10,
        max_size_per_document_mb=100,
        supported_formats=("pdf", "txt", "doc", "docx", "md", "csv"),
    ),
    total_attachments_limit=10,
    notes="Gemini: up to 10 files per prompt. Web search via :online.",
)

_GROK = ModelCapabilities(
    supports_vision=True,
    supports_documents=True,
    supports_web_search=True,
    supports_x_search=True,
    image_limits=ImageLimits(
        max_images=None,
        max_size_per_image_mb=20,
        max_total_payload_mb=100,
        supported_formats=("jpg", "jpeg", "png"),
    ),
    document_limits=DocumentLimits(
        max_documents=50,
        max_size_per_document_mb=48,
        supported_formats=("pdf", "txt", "md", "csv", "json", "py", "js", "java", "kt"),
    ),
    total_attachments_limit=None,
    notes="Grok: unlimited images (20MB each), 48MB files. Web search and X search via Responses API.",
)

_EXACT: dict[str, ModelCapabilities] = {
    "gpt-5.2": _GPT5,
    "gpt-5.1": _GPT5,
    "gpt-4o": _GPT4O,
    "gpt-4o-2024-08-06": _GPT4O,
    "gpt-4.1": _GPT41,
    "gpt-4.1-2025-04-14": _GPT41,
    "deepseek-chat": _DEEPSEEK_TEXT,
    "deepseek-reasoner": replace(_DEEPSEEK_TEXT, notes="DeepSeek Reasoner: text only, thinking mode."),
    "deepseek/deepseek-v3.2-exp": _ROUTER_VISION_10,
    "deepseek/deepseek-v3.2": _ROUTER_TEXT,
    "deepseek/deepseek-v3.2-speciale": _ROUTER_TEXT,
    "meta-llama/llama-4-maverick": _ROUTER_VISION_10,
    "meta-llama/llama-4-scout": _ROUTER_VISION_10,
    "sao10k/l3.1-euryale-70b": _ROUTER_TEXT,
    "nousresearch/hermes-3-llama-3.1-70b": _ROUTER_TEXT,
    "cohere/command-r-plus-08-2024": _ROUTER_TEXT,
    "mistralai/mistral-large": _ROUTER_TEXT,
    "qwen/qwen3-max": _ROUTER_TEXT,
    "openai/gpt-4o-2024-05-13": replace(_GPT4O, notes="GPT-4o via OpenRouter. Web search via :online."),
}

_FAMILIES: tuple[tuple[str, ModelCapabilities], ...] = (
    ("gpt-5", _GPT5),
    ("gpt-4o", _GPT4O),
    ("gpt-4.1", _GPT41),
    ("o1", _OPENAI_REASONING),
    ("o3", _OPENAI_REASONING),
    ("o4", _OPENAI_REASONING),
    ("grok-", _GROK),
    ("anthropic/claude-", _CLAUDE),
    ("google/gemini-", _GEMINI),
)


def normalize_model_id(model_id: str) -> str:
    key = model_id.strip().lower()
    if key.endswith(_ONLINE_SUFFIX):
        key = key[: -len(_ONLINE_SUFFIX)]
    return key


@lru_cache(maxsize=256)
def lookup(model_id: str) -> ModelCapabilities:
    """Return capabilities for ``model_id``; never raises."""
    key = normalize_model_id(model_id)
    base = _EXACT.get(key)
    if base is None:
        base = next((caps for prefix, caps in _FAMILIES if key.startswith(prefix)), DEFAULT_CAPABILITIES)
    token_param: TokenLimitParam = (
        "max_completion_tokens" if key.startswith(_COMPLETION_TOKENS_PREFIXES) else "max_tokens"
    )
    return replace(
        base,
        allows_sampling_params=not key.startswith(_REASONING_PREFIXES),
        token_limit_param=token_param,
    )


def supports_attachments(target: ProviderTarget) -> bool:
    # Local models don't take attachments.
    if isinstance(target, LocalTarget):
        return False
    return lookup(target.model_id).supports_attachments


def ensure_capabilities(
    attachments: list[Attachment],
    tools: ToolFlags,
    caps: ModelCapabilities,
) -> None:
    """Fail fast if the request asks for unsupported features."""

    images = [a for a in attachments if a.kind == "image"]
    documents = [a for a in attachments if a.kind == "document"]

    if images:
        if not caps.supports_vision or caps.image_limits is None:
            raise UnsupportedFeatureError("image attachments")
        limits = caps.image_limits
        if limits.max_images is not None and len(images) > limits.max_images:
            raise UnsupportedFeatureError(f"more than {limits.max_images} images")
        total = 0
        for image in images:
            if image.extension not in limits.supported_formats:
                raise UnsupportedFeatureError(f"image format '{image.extension}'")
            size = image.size_bytes
            if size > limits.max_size_per_image_mb * _MB:
                raise UnsupportedFeatureError(f"images over {limits.max_size_per_image_mb}MB")
            total += size
        if total > limits.max_total_payload_mb * _MB:
            raise UnsupportedFeatureError(f"image payload over {limits.max_total_payload_mb}MB")

    if documents:
        if not caps.supports_documents or caps.document_limits is None:
            raise UnsupportedFeatureError("document attachments")
        doc_limits = caps.document_limits
        if len(documents) > doc_limits.max_documents:
            raise UnsupportedFeatureError(f"more than {doc_limits.max_documents} documents")
        for document in documents:
            if document.extension not in doc_limits.supported_formats:
                raise UnsupportedFeatureError(f"document format '{document.extension}'")
            if document.size_bytes > doc_limits.max_size_per_document_mb * _MB:
                raise UnsupportedFeatureError(f"documents over {doc_limits.max_size_per_document_mb}MB")

    if caps.total_attachments_limit is not None and len(attachments) > caps.total_attachments_limit:
        raise UnsupportedFeatureError(f"more than {caps.total_attachments_limit} attachments")

    if tools.web_search and not caps.supports_web_search:
        raise UnsupportedFeatureError("web_search")
    if tools.x_search and not caps.supports_x_search:
        raise UnsupportedFeatureError("x_search")
