"""``NativeEngine`` binding over llama-cpp-python.

Characteristics:
- completion-based; chat turns arrive pre-rendered by ``format_prompt``
- model loaded into process, one at a time
- streaming checks a cancel flag between tokens
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from inference_gateway.errors import NotLoadedError
from inference_gateway.types import SamplingParams

logger = logging.getLogger(__name__)

_STOP_SEQUENCES = ["<|im_end|>", "<|im_start|>"]


class LlamaCppEngine:
    """Implements ``NativeEngine``, ``SamplingConfigurable`` and ``NativeEmbeddingEngine``."""

    def __init__(
        self,
        *,
        n_gpu_layers: int = 0,
        n_batch: int = 512,
        max_tokens: int = 2048,
        embedding: bool = False,
        verbose: bool = False,
    ) -> None:
        # Optional dependency: installed with the ``local`` extra.
        from llama_cpp import Llama

        self._llama_cls = Llama
        self._llm: Any = None
        self._n_gpu_layers = n_gpu_layers
        self._n_batch = n_batch
        self._embedding = embedding
        self._verbose = verbose
        self._cancel = threading.Event()
        self.default_generation_params: dict[str, Any] = {
            "temperature": 0.7,
            "top_p": 0.9,
            "repeat_penalty": 1.1,
            "max_tokens": max_tokens,
        }
        self._overrides: dict[str, Any] = {}

    def load(self, path: str, context_size: int) -> bool:
        self.unload()
        try:
            self._llm = self._llama_cls(
                model_path=path,
                n_ctx=context_size,
                n_gpu_layers=self._n_gpu_layers,
                n_batch=self._n_batch,
                embedding=self._embedding,
                verbose=self._verbose,
            )
        except ValueError as exc:
            logger.error("llama.cpp rejected model %s: %s", path, exc)
            self._llm = None
            return False
        return True

    def unload(self) -> None:
        llm, self._llm = self._llm, None
        if llm is not None and hasattr(llm, "close"):
            llm.close()

    def set_sampling_params(self, params: SamplingParams) -> None:
        overrides: dict[str, Any] = {}
        if params.temperature is not None:
            overrides["temperature"] = params.temperature
        if params.top_p is not None:
            overrides["top_p"] = params.top_p
        if params.max_tokens is not None:
            overrides["max_tokens"] = params.max_tokens
        self._overrides = overrides

    def _generation_params(self) -> dict[str, Any]:
        params = {**self.default_generation_params, **self._overrides}
        self._overrides = {}
        return params

    def _require_model(self) -> Any:
        if self._llm is None:
            raise NotLoadedError()
        return self._llm

    def generate_stream(
        self,
        prompt: str,
        on_delta: Callable[[str | bytes], None],
        on_complete: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self._cancel.clear()
        try:
            llm = self._require_model()
            chunks = llm.create_completion(
                prompt,
                stream=True,
                echo=False,
                stop=_STOP_SEQUENCES,
                **self._generation_params(),
            )
            for chunk in chunks:
                if self._cancel.is_set():
                    return
                text = chunk["choices"][0].get("text") or ""
                if text:
                    on_delta(text)
        except Exception as exc:
            on_error(str(exc) or type(exc).__name__)
            return
        on_complete()

    def generate(self, prompt: str) -> str:
        llm = self._require_model()
        result = llm.create_completion(prompt, echo=False, stop=_STOP_SEQUENCES, **self._generation_params())
        return result["choices"][0]["text"].strip()

    def cancel(self) -> None:
        self._cancel.set()

    def embed(self, text: str) -> list[float]:
        llm = self._require_model()
        vector = llm.embed(text)
        # Models without pooling return one vector per token.
        if vector and isinstance(vector[0], list):
            return [sum(column) / len(vector) for column in zip(*vector)]
        return list(vector)
