"""Single entry point dispatching generations to the local engine or a remote provider."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Callable
from typing import assert_never

from inference_gateway.capabilities import supports_attachments
from inference_gateway.errors import (
    BusyError,
    ErrorKind,
    GatewayError,
    NotLoadedError,
    UnauthorizedError,
    UnsupportedFeatureError,
    UnsupportedProviderError,
)
from inference_gateway.local_engine import LocalEngineAdapter, format_prompt
from inference_gateway.providers.base import BaseProvider
from inference_gateway.types import (
    ApiKeyLookup,
    GenerationRequest,
    LocalTarget,
    ProviderId,
    ProviderTarget,
    RemoteTarget,
    StreamEvent,
)

logger = logging.getLogger(__name__)


async def _single(event: StreamEvent) -> AsyncIterator[StreamEvent]:
    yield event


class GenerationStream:
    """One routed generation: an async iterator of ``StreamEvent`` and an async context manager.

    The backend iterator is pumped by a worker task into a queue. After
    ``cancel()`` the consumer sees no further tokens and the stream ends
    with ``Cancelled`` within ``cancel_grace_s``. The router slot is freed
    as soon as the backend stops or is told to stop, whether or not the
    consumer reads on.
    """

    def __init__(
        self,
        source: AsyncIterator[StreamEvent],
        *,
        failure_kind: ErrorKind = ErrorKind.TRANSPORT_ERROR,
        cancel_backend: Callable[[], None] | None = None,
        on_finish: Callable[[GenerationStream], None] | None = None,
        cancel_grace_s: float = 2.0,
    ) -> None:
        self._source = source
        self._failure_kind = failure_kind
        self._cancel_backend = cancel_backend
        self._on_finish = on_finish
        self._cancel_grace_s = cancel_grace_s
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._cancelled = False
        self._finished = False
        self._released = False

    @classmethod
    def of_event(cls, event: StreamEvent) -> GenerationStream:
        """A stream that yields only ``event``."""
        return cls(_single(event))

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def released(self) -> bool:
        """True once the backend has stopped or been told to stop."""
        return self._released

    def __aiter__(self) -> GenerationStream:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        if self._worker is None and not self._cancelled:
            self._worker = asyncio.create_task(self._pump())
        while not self._cancelled:
            event = await self._queue.get()
            if event is None or self._cancelled:
                continue
            if event.is_terminal:
                await self._stop_worker()
                self._finish()
            return event
        await self._stop_worker()
        self._finish()
        return StreamEvent.cancelled()

    async def __aenter__(self) -> GenerationStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def cancel(self) -> None:
        """Request cancellation; a no-op once the stream has finished."""
        if self._finished or self._cancelled:
            return
        self._cancelled = True
        if self._cancel_backend is not None:
            self._cancel_backend()
        elif self._worker is not None:
            self._worker.cancel()
        self._queue.put_nowait(None)
        self._release()

    async def aclose(self) -> None:
        """Stop the backend without emitting further events and release the slot."""
        if self._finished:
            return
        self.cancel()
        await self._stop_worker()
        self._finish()

    async def _pump(self) -> None:
        if self._cancelled:
            return
        try:
            async for event in self._source:
                self._queue.put_nowait(event)
                if event.is_terminal:
                    return
            self._queue.put_nowait(StreamEvent.completed())
        except Exception as exc:
            logger.exception("Backend stream raised")
            self._queue.put_nowait(StreamEvent.failed(self._failure_kind, str(exc) or type(exc).__name__))
        finally:
            try:
                aclose = getattr(self._source, "aclose", None)
                if aclose is not None:
                    await aclose()
            finally:
                self._release()

    async def _stop_worker(self) -> None:
        worker = self._worker
        if worker is None or worker.done():
            return
        if self._cancelled and self._cancel_backend is None:
            worker.cancel()
        done, _ = await asyncio.wait({worker}, timeout=self._cancel_grace_s)
        if not done:
            logger.warning("Backend did not stop within %.1fs; abandoning it", self._cancel_grace_s)
            worker.cancel()

    def _finish(self) -> None:
        self._finished = True
        self._release()

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._on_finish is not None:
            self._on_finish(self)


class GatewayRouter:
    """High-level coordinator: at most one active generation across all backends."""

    def __init__(
        self,
        *,
        local: LocalEngineAdapter | None = None,
        openai: BaseProvider | None = None,
        deepseek: BaseProvider | None = None,
        openrouter: BaseProvider | None = None,
        xai: BaseProvider | None = None,
        cancel_grace_s: float = 2.0,
    ) -> None:
        providers = (openai, deepseek, openrouter, xai)
        self._providers: dict[ProviderId, BaseProvider] = {}
        for provider in providers:
            if provider is not None:
                self._providers[provider.provider_id] = provider
        self._local = local
        self._cancel_grace_s = cancel_grace_s
        self._active: weakref.ref[GenerationStream] | None = None

    @property
    def local(self) -> LocalEngineAdapter | None:
        return self._local

    @property
    def is_generating(self) -> bool:
        return self._active_stream() is not None

    def get_provider(self, provider_id: ProviderId) -> BaseProvider:
        """Return a configured provider by id."""
        try:
            return self._providers[provider_id]
        except KeyError as exc:
            raise UnsupportedProviderError(provider_id.value) from exc

    def generate(
        self,
        target: ProviderTarget,
        request: GenerationRequest,
        api_key_lookup: ApiKeyLookup,
    ) -> GenerationStream:
        """Start a generation; failures surface as the stream's ``Failed`` event."""
        if self._active_stream() is not None:
            logger.info("Rejecting generation: another one is active")
            return GenerationStream.of_event(StreamEvent.from_error(BusyError()))

        try:
            stream = self._dispatch(target, request, api_key_lookup)
        except GatewayError as exc:
            logger.warning("Generation rejected: %s", exc)
            return GenerationStream.of_event(StreamEvent.from_error(exc))

        self._active = weakref.ref(stream)
        return stream

    def cancel(self) -> None:
        """Cancel the active generation, if any."""
        stream = self._active_stream()
        if stream is not None:
            logger.info("Cancelling active generation")
            stream.cancel()

    async def aclose(self) -> None:
        stream = self._active_stream()
        if stream is not None:
            await stream.aclose()
        for provider in self._providers.values():
            await provider.aclose()

    def _active_stream(self) -> GenerationStream | None:
        # A stream dropped before it started never ran its backend.
        stream = self._active() if self._active is not None else None
        if stream is None or stream.released:
            self._active = None
            return None
        return stream

    def _release(self, stream: GenerationStream) -> None:
        if self._active is not None and self._active() is stream:
            self._active = None

    def _dispatch(
        self,
        target: ProviderTarget,
        request: GenerationRequest,
        api_key_lookup: ApiKeyLookup,
    ) -> GenerationStream:
        if isinstance(target, LocalTarget):
            adapter = self._local_adapter_for(target, request)
            source = adapter.generate_stream(format_prompt(request.turns), request.sampling)
            return GenerationStream(
                source,
                failure_kind=ErrorKind.ENGINE_ERROR,
                cancel_backend=adapter.cancel,
                on_finish=self._release,
                cancel_grace_s=self._cancel_grace_s,
            )
        elif isinstance(target, RemoteTarget):
            provider = self.get_provider(target.provider)
            api_key = api_key_lookup(target.provider)
            if not api_key:
                raise UnauthorizedError(provider.name, f"No API key configured for {provider.name}")
            source = provider.stream_complete(
                api_key,
                target.model_id,
                request.turns,
                request.sampling,
                tools=request.tools,
            )
            return GenerationStream(
                source,
                on_finish=self._release,
                cancel_grace_s=self._cancel_grace_s,
            )
        else:
            assert_never(target)

    def _local_adapter_for(self, target: LocalTarget, request: GenerationRequest) -> LocalEngineAdapter:
        adapter = self._local
        if adapter is None:
            raise NotLoadedError("No local engine configured")
        if adapter.current_model() != target.model_ref:
            raise NotLoadedError(f"Model {target.model_ref} is not loaded")
        if request.attachments and not supports_attachments(target):
            raise UnsupportedFeatureError("attachments on local models")
        return adapter
