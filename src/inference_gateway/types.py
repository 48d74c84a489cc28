"""Provider-agnostic request, target and stream event models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from inference_gateway.errors import ErrorKind, GatewayError
from inference_gateway.multimodal import mime_for_filename

Role = Literal["system", "user", "assistant"]
AttachmentKind = Literal["image", "document"]


class ProviderId(str, Enum):
    """Closed set of remote providers the router can dispatch to."""

    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"
    XAI = "xai"


class Attachment(BaseModel):
    """Image or document attached to a turn, given inline or by file path."""

    kind: AttachmentKind
    filename: str
    data: bytes | None = None
    path: Path | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "Attachment":
        if (self.data is None) == (self.path is None):
            raise ValueError("attachment needs exactly one of 'data' or 'path'")
        return self

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lstrip(".").lower()

    @property
    def mime(self) -> str:
        return mime_for_filename(self.filename)

    @property
    def size_bytes(self) -> int:
        if self.data is not None:
            return len(self.data)
        return self._require_path().stat().st_size

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        return self._require_path().read_bytes()

    def _require_path(self) -> Path:
        if self.path is None:
            raise ValueError(f"attachment {self.filename} has neither data nor path")
        return self.path


class Turn(BaseModel):
    """Canonical chat turn."""

    role: Role
    text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)


class SamplingParams(BaseModel):
    """Optional sampling controls; ``None`` means the field is left out of the request."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, ge=1)


class ToolFlags(BaseModel):
    """Provider-side search tools."""

    web_search: bool = False
    x_search: bool = False

    @property
    def any(self) -> bool:
        return self.web_search or self.x_search


class GenerationRequest(BaseModel):
    """Normalized request shared by all backends."""

    turns: list[Turn] = Field(min_length=1)
    sampling: SamplingParams = Field(default_factory=SamplingParams)
    tools: ToolFlags = Field(default_factory=ToolFlags)

    @property
    def attachments(self) -> list[Attachment]:
        return [a for turn in self.turns for a in turn.attachments]


class LocalTarget(BaseModel):
    """On-device model reached through the local engine."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    model_ref: str


class RemoteTarget(BaseModel):
    """Cloud model behind one of the HTTP providers."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    provider: ProviderId
    model_id: str


ProviderTarget = Annotated[Union[LocalTarget, RemoteTarget], Field(discriminator="kind")]


class StreamEvent(BaseModel):
    """Streaming events emitted by every backend.

    Zero or more ``token`` events are followed by exactly one terminal
    event: ``completed``, ``cancelled`` or ``failed``.
    """

    type: Literal["token", "completed", "cancelled", "failed"]
    text: str | None = None
    error_kind: ErrorKind | None = None
    detail: str | None = None

    @classmethod
    def token(cls, text: str) -> "StreamEvent":
        return cls(type="token", text=text)

    @classmethod
    def completed(cls) -> "StreamEvent":
        return cls(type="completed")

    @classmethod
    def cancelled(cls) -> "StreamEvent":
        return cls(type="cancelled", error_kind=ErrorKind.CANCELLED)

    @classmethod
    def failed(cls, kind: ErrorKind, detail: str | None = None) -> "StreamEvent":
        return cls(type="failed", error_kind=kind, detail=detail)

    @classmethod
    def from_error(cls, exc: GatewayError) -> "StreamEvent":
        return cls.failed(exc.error_kind, str(exc))

    @property
    def is_terminal(self) -> bool:
        return self.type != "token"


@dataclass(frozen=True)
class EngineLoadState:
    """Snapshot of the local engine: ``model_name`` is None while unloaded."""

    model_name: str | None = None

    @property
    def is_loaded(self) -> bool:
        return self.model_name is not None


UNLOADED = EngineLoadState()


ApiKeyLookup = Callable[[ProviderId], str | None]
"""Resolves the credential for a provider; ``None`` or empty means no key."""
