"""Package specific exception hierarchy."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Terminal failure categories carried by ``StreamEvent.failed``."""

    NOT_LOADED = "not_loaded"
    BUSY = "busy"
    TRANSPORT_ERROR = "transport_error"
    UNAUTHORIZED = "unauthorized"
    MALFORMED_EVENT = "malformed_event"
    CANCELLED = "cancelled"
    EMPTY_RESPONSE = "empty_response"
    ENGINE_ERROR = "engine_error"
    UNSUPPORTED = "unsupported"


class GatewayError(Exception):
    """Base exception for inference_gateway package."""

    error_kind: ErrorKind = ErrorKind.TRANSPORT_ERROR


class ProviderError(GatewayError):
    """Represents provider-specific HTTP or API errors."""

    error_kind = ErrorKind.TRANSPORT_ERROR

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class UnauthorizedError(ProviderError):
    """Raised on 401/403 or a missing credential; the caller should ask for a new key."""

    error_kind = ErrorKind.UNAUTHORIZED


class EmptyResponseError(ProviderError):
    """Raised when a one-shot completion returns no text."""

    error_kind = ErrorKind.EMPTY_RESPONSE

    def __init__(self, provider: str) -> None:
        super().__init__(provider, "empty response")


class NotLoadedError(GatewayError):
    """Raised when the local engine has no model loaded."""

    error_kind = ErrorKind.NOT_LOADED

    def __init__(self, message: str = "Model not loaded") -> None:
        super().__init__(message)


class BusyError(GatewayError):
    """Raised when a generation is already in flight."""

    error_kind = ErrorKind.BUSY

    def __init__(self, message: str = "A generation is already active") -> None:
        super().__init__(message)


class EngineLoadError(GatewayError):
    """Raised when the native engine fails to load a model file."""

    error_kind = ErrorKind.NOT_LOADED


class EngineError(GatewayError):
    """Raised when the native engine reports a generation failure."""

    error_kind = ErrorKind.ENGINE_ERROR


class UnsupportedProviderError(GatewayError):
    """Raised when a provider has not been configured."""

    error_kind = ErrorKind.UNSUPPORTED

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")
        self.provider = provider


class UnsupportedFeatureError(GatewayError):
    """Raised when a requested feature is unsupported by a provider or model."""

    error_kind = ErrorKind.UNSUPPORTED

    def __init__(self, feature: str) -> None:
        super().__init__(f"Feature '{feature}' is not supported.")
        self.feature = feature
