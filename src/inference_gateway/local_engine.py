"""On-device inference behind a narrow native load/generate/cancel contract.

``LocalEngineAdapter`` owns the engine's load state and turns the native
callback stream into an async iterator of ``StreamEvent``. The native call
blocks, so it runs on an executor thread; callbacks are marshalled back to
the event loop. ``cancel()`` is a signal and never takes the state lock, so
it can reach a generation that is blocked inside native code.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from inference_gateway.errors import (
    BusyError,
    EngineError,
    EngineLoadError,
    ErrorKind,
    GatewayError,
    NotLoadedError,
)
from inference_gateway.types import UNLOADED, EngineLoadState, SamplingParams, StreamEvent, Turn
from inference_gateway.utf8 import Utf8ReassemblyBuffer

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_SIZE = 2048


class NativeEngine(Protocol):
    """Contract of the embedded inference engine; internals are opaque."""

    def load(self, path: str, context_size: int) -> bool: ...

    def unload(self) -> None: ...

    def generate_stream(
        self,
        prompt: str,
        on_delta: Callable[[str | bytes], None],
        on_complete: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        """Block until generation ends, reporting through the callbacks."""
        ...

    def generate(self, prompt: str) -> str: ...

    def cancel(self) -> None: ...


@runtime_checkable
class SamplingConfigurable(Protocol):
    """Optional engine extension: accepts sampling parameters before a run."""

    def set_sampling_params(self, params: SamplingParams) -> None: ...


def format_prompt(turns: Sequence[Turn]) -> str:
    """Render turns as ChatML, leaving an open assistant turn for the model."""
    parts = [f"<|im_start|>{turn.role}\n{turn.text}<|im_end|>\n" for turn in turns]
    parts.append("<|im_start|>assistant\n")
    return "".join(parts)


class LocalEngineAdapter:
    """Long-lived owner of one native engine: ``Unloaded -> Loaded <-> generating``."""

    def __init__(self, engine: NativeEngine, *, cancel_grace_s: float = 2.0) -> None:
        self._engine = engine
        self._cancel_grace_s = cancel_grace_s
        self._lock = threading.Lock()
        self._state: EngineLoadState = UNLOADED
        self._generating = False
        self._cancel_requested = threading.Event()
        self._wake: Callable[[], None] | None = None

    @property
    def state(self) -> EngineLoadState:
        return self._state

    def is_loaded(self) -> bool:
        return self._state.is_loaded

    def current_model(self) -> str | None:
        return self._state.model_name

    @property
    def is_generating(self) -> bool:
        return self._generating

    def load(self, path: str | os.PathLike[str], context_size: int = DEFAULT_CONTEXT_SIZE) -> None:
        """Replace any loaded model with ``path``; on failure the engine ends fully unloaded."""
        model_file = Path(path)
        with self._lock:
            if self._generating:
                raise BusyError("Cannot load a model while a generation is active")
            self._unload_locked()
            if not model_file.is_file():
                logger.error("Model file not found: %s", model_file)
                raise EngineLoadError(f"Model file not found: {model_file}")

            logger.info(
                "Loading model: %s, size: %dMB",
                model_file.name,
                model_file.stat().st_size // (1024 * 1024),
            )
            try:
                ok = self._engine.load(str(model_file.absolute()), context_size)
            except Exception as exc:
                logger.exception("Error loading model %s", model_file.name)
                self._reset_engine()
                raise EngineLoadError(f"Failed to load model {model_file.name}: {exc}") from exc
            if not ok:
                logger.error("Failed to load model: %s", model_file.name)
                self._reset_engine()
                raise EngineLoadError(f"Failed to load model {model_file.name}")

            self._state = EngineLoadState(model_name=model_file.name)
            logger.info("Model loaded successfully: %s", model_file.name)

    def unload(self) -> None:
        with self._lock:
            if self._generating:
                raise BusyError("Cannot unload a model while a generation is active")
            self._unload_locked()

    def _unload_locked(self) -> None:
        if not self._state.is_loaded:
            return
        logger.info("Unloading model: %s", self._state.model_name)
        try:
            self._engine.unload()
        finally:
            # State resets even if native shutdown fails.
            self._state = UNLOADED

    def _reset_engine(self) -> None:
        self._state = UNLOADED
        try:
            self._engine.unload()
        except Exception:
            logger.exception("Error releasing engine after failed load")

    def _begin_generation(self, wake: Callable[[], None]) -> str:
        with self._lock:
            if not self._state.is_loaded:
                raise NotLoadedError()
            if self._generating:
                raise BusyError()
            self._generating = True
            self._cancel_requested.clear()
            self._wake = wake
            return self._state.model_name or ""

    def _end_generation(self) -> None:
        with self._lock:
            self._generating = False

    def cancel(self) -> None:
        """Signal the active generation to stop; a no-op when nothing is running."""
        wake = self._wake
        if wake is None:
            return
        self._cancel_requested.set()
        try:
            self._engine.cancel()
        except Exception:
            logger.exception("Error cancelling generation")
        wake()
        logger.info("Generation cancelled")

    async def generate_stream(
        self,
        prompt: str,
        sampling: SamplingParams | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream tokens from the loaded model, ending in exactly one terminal event."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

        def post(kind: str, value: Any = None) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (kind, value))

        def wake() -> None:
            post("cancel")

        try:
            model = self._begin_generation(wake)
        except GatewayError as exc:
            yield StreamEvent.from_error(exc)
            return

        utf8 = Utf8ReassemblyBuffer()
        engine = self._engine

        def on_delta(delta: str | bytes) -> None:
            if self._cancel_requested.is_set():
                # Engines may reset their own flag on entry, after an early cancel.
                engine.cancel()
                return
            text = utf8.append(delta) if isinstance(delta, bytes) else utf8.append_text(delta)
            if text:
                post("token", text)

        def on_complete() -> None:
            tail = utf8.flush()
            if tail and not self._cancel_requested.is_set():
                post("token", tail)
            post("complete")

        def on_error(message: str) -> None:
            logger.error("Generation error: %s", message)
            post("error", message)

        def run() -> None:
            try:
                if sampling is not None and isinstance(engine, SamplingConfigurable):
                    engine.set_sampling_params(sampling)
                if not self._cancel_requested.is_set():
                    engine.generate_stream(prompt, on_delta, on_complete, on_error)
            except Exception as exc:
                logger.exception("Error during generation")
                post("error", str(exc) or type(exc).__name__)
            finally:
                self._end_generation()
                post("finished", utf8.flush())

        logger.debug("Starting generation on %s, prompt length %d", model, len(prompt))
        worker = loop.run_in_executor(None, run)
        terminal: StreamEvent | None = None
        try:
            while terminal is None:
                kind, value = await queue.get()
                if self._cancel_requested.is_set():
                    terminal = StreamEvent.cancelled()
                elif kind == "token":
                    yield StreamEvent.token(value)
                elif kind == "error":
                    terminal = StreamEvent.failed(ErrorKind.ENGINE_ERROR, value)
                elif kind == "complete":
                    terminal = StreamEvent.completed()
                elif kind == "finished":
                    # Engine returned without reporting completion.
                    if value:
                        yield StreamEvent.token(value)
                    terminal = StreamEvent.completed()
        finally:
            if not worker.done():
                if terminal is None or terminal.type == "cancelled":
                    self._cancel_requested.set()
                    engine.cancel()
                try:
                    await asyncio.wait_for(asyncio.shield(worker), self._cancel_grace_s)
                except asyncio.TimeoutError:
                    logger.warning("Native generation still running %.1fs after cancel", self._cancel_grace_s)
            if self._wake is wake:
                self._wake = None
        yield terminal

    async def generate(self, prompt: str) -> str:
        """Blocking native generation on a worker thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._generate_blocking, prompt)

    def _generate_blocking(self, prompt: str) -> str:
        self._begin_generation(lambda: None)
        try:
            return self._engine.generate(prompt)
        except Exception as exc:
            logger.exception("Error during non-streaming generation")
            raise EngineError(str(exc) or type(exc).__name__) from exc
        finally:
            self._end_generation()
            self._wake = None
