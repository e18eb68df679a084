"""Utilities for loading and accessing the local Large Language Model."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from docqa.config import _env_flag
from docqa.telemetry import emit_exception, emit_llm_provider_init, log_event

try:  # pragma: no cover - optional heavy dependencies
    import torch
    from transformers import AutoModelForCausalLM, AutoTokenizer
except Exception as import_error:  # pragma: no cover - optional heavy deps
    AutoModelForCausalLM = None
    AutoTokenizer = None
    torch = None  # type: ignore[assignment]
    _IMPORT_ERROR: Optional[Exception] = import_error
else:  # pragma: no cover - executed when heavy deps installed
    _IMPORT_ERROR = None


LOGGER = logging.getLogger(__name__)

MODEL_PATH_ENV_KEY = "LLM_MODEL_PATH"


@dataclass(slots=True)
class LLMStatus:
    """Structured status information about the configured LLM backend."""

    model_loaded: bool
    model_name: str
    device: str
    error: Optional[str] = None


class LLMError(RuntimeError):
    """Base exception raised for LLM provider issues."""


class LLMNotReadyError(LLMError):
    """Raised when the model cannot be loaded or is unavailable."""


class LLMGenerationError(LLMError):
    """Raised when text generation fails unexpectedly."""


class LLM:
    """Common interface exposed by language model implementations."""

    def complete(
        self,
        prompt: str,
        context: Optional[str] = None,
        *,
        max_tokens: int = 256,
        temperature: float = 0.0,
    ) -> str:
        """Generate a completion for ``prompt``; ``context`` is informational."""

        raise NotImplementedError

    def is_ready(self) -> bool:
        return self.model_loaded

    @property
    def model_loaded(self) -> bool:
        """Return ``True`` when the underlying model weights are loaded."""

        return False

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def device(self) -> str:
        return "cpu"

    @property
    def last_error(self) -> Optional[str]:
        return None

    def preload(self) -> None:
        """Eagerly load the model weights when supported."""

        return None

    def status(self) -> LLMStatus:
        """Return structured diagnostic information for health checks."""

        return LLMStatus(
            model_loaded=self.model_loaded,
            model_name=self.model_name,
            device=self.device,
            error=self.last_error,
        )


class LLMStub(LLM):
    """Placeholder used when no model is configured; never reports ready."""

    def __init__(self, *, reason: str | None = None) -> None:
        self._reason = reason or "LLM stub is active (model not configured)."

    def complete(
        self,
        prompt: str,
        context: Optional[str] = None,
        *,
        max_tokens: int = 256,
        temperature: float = 0.0,
    ) -> str:
        raise LLMNotReadyError(self._reason)

    @property
    def last_error(self) -> Optional[str]:
        return self._reason

    def update_reason(self, reason: str) -> None:
        self._reason = reason


def _resolve_llm_device() -> str:
    want = os.getenv("LLM_DEVICE", "auto").strip().lower()
    if want == "cpu":
        return "cpu"
    return "cuda" if torch is not None and torch.cuda.is_available() else "cpu"


@dataclass(slots=True)
class _LLMConfig:
    model_path: str


class TransformersLLM(LLM):
    """Lazy-loading wrapper around ``AutoModelForCausalLM``."""

    def __init__(self, config: _LLMConfig) -> None:
        self._config = config
        self._model: Optional["AutoModelForCausalLM"] = None
        self._tokenizer: Optional["AutoTokenizer"] = None
        self._lock = threading.RLock()
        self._load_error: Optional[Exception] = None
        self._device_label = "cpu"

    @property
    def model_loaded(self) -> bool:
        return self._model is not None and self._tokenizer is not None

    @property
    def model_name(self) -> str:
        if self._model is not None:
            return getattr(self._model.config, "_name_or_path", self._config.model_path)
        return self._config.model_path

    @property
    def device(self) -> str:
        return self._device_label

    @property
    def last_error(self) -> Optional[str]:
        if self._load_error is None:
            return None
        return str(self._load_error)

    def _ensure_loaded(self) -> None:
        if self.model_loaded:
            return
        with self._lock:
            if self.model_loaded:
                return

            if AutoModelForCausalLM is None or AutoTokenizer is None or torch is None:
                base_error = _IMPORT_ERROR or RuntimeError(
                    "PyTorch/Transformers are not available in the current environment"
                )
                self._load_error = base_error
                raise LLMNotReadyError(
                    "PyTorch/Transformers are not available in the current environment"
                ) from base_error

            device = _resolve_llm_device()
            use_cuda = device == "cuda"
            torch_dtype: object = "auto" if use_cuda else torch.float32
            started = time.perf_counter()
            log_event(
                LOGGER,
                "llm.load.start",
                details={"model_path": self._config.model_path, "device": device, "dtype": str(torch_dtype)},
            )
            try:
                model = AutoModelForCausalLM.from_pretrained(
                    self._config.model_path,
                    device_map="auto" if use_cuda else "cpu",
                    torch_dtype=torch_dtype,
                    low_cpu_mem_usage=True,
                    trust_remote_code=False,
                )
                tokenizer = AutoTokenizer.from_pretrained(self._config.model_path)
            except Exception as error:  # pragma: no cover - depends on hw/config
                LOGGER.warning("Failed to load LLM on %s: %s", device, error)
                emit_exception(module=__name__, error=error)
                self._load_error = error
                raise LLMNotReadyError("Failed to load the language model") from error

            if tokenizer.pad_token_id is None and tokenizer.eos_token_id is not None:  # pragma: no cover
                tokenizer.pad_token_id = tokenizer.eos_token_id

            self._model = model
            self._tokenizer = tokenizer
            self._device_label = "cuda:0" if use_cuda else "cpu"
            self._load_error = None
            log_event(
                LOGGER,
                "llm.load.success",
                duration_ms=(time.perf_counter() - started) * 1000.0,
                details={"model_name": self.model_name, "device": self._device_label},
            )

    def complete(
        self,
        prompt: str,
        context: Optional[str] = None,
        *,
        max_tokens: int = 256,
        temperature: float = 0.0,
    ) -> str:
        self._ensure_loaded()
        assert self._model is not None and self._tokenizer is not None

        effective_max_tokens = max_tokens if max_tokens and max_tokens > 0 else 256
        do_sample = temperature > 0.0
        try:
            tokenizer_inputs = self._tokenizer(
                prompt.strip(),
                return_tensors="pt",
                truncation=True,
                max_length=getattr(self._tokenizer, "model_max_length", 4096),
            ).to(self._device_label)
            generation_kwargs = {
                "max_new_tokens": effective_max_tokens,
                "do_sample": do_sample,
                "pad_token_id": self._tokenizer.pad_token_id,
                "eos_token_id": self._tokenizer.eos_token_id,
            }
            if do_sample:
                generation_kwargs["temperature"] = float(temperature)
            output_ids = self._model.generate(**tokenizer_inputs, **generation_kwargs)
            input_length = tokenizer_inputs["input_ids"].shape[1]
            text = self._tokenizer.decode(output_ids[0, input_length:], skip_special_tokens=True)
        except Exception as error:  # pragma: no cover - depends on runtime behaviour
            LOGGER.exception("LLM generation failed")
            raise LLMGenerationError("LLM generation failed") from error

        return text.strip()

    def preload(self) -> None:
        self._ensure_loaded()


_GLOBAL_LLM: Optional[LLM] = None
_GLOBAL_STUB = LLMStub()


def _resolve_model_path_from_env() -> Optional[str]:
    raw_value = os.getenv(MODEL_PATH_ENV_KEY)
    if raw_value is None or not raw_value.strip():
        return None
    path = Path(os.path.expanduser(raw_value.strip()))
    if not path.exists():
        LOGGER.warning("Configured %s '%s' does not exist.", MODEL_PATH_ENV_KEY, path)
    return str(path)


def get_llm() -> LLM:
    """Return a lazily initialised LLM instance or a stub fallback."""

    global _GLOBAL_LLM

    if _GLOBAL_LLM is not None:
        return _GLOBAL_LLM

    if _env_flag("LLM_STUB"):
        LOGGER.warning("LLM_STUB flag enabled; model loading disabled.")
        _GLOBAL_STUB.update_reason("LLM_STUB flag enabled; model loading disabled.")
        emit_llm_provider_init(provider="stub", ready=False, reason="LLM_STUB")
        _GLOBAL_LLM = _GLOBAL_STUB
        return _GLOBAL_LLM

    model_path = _resolve_model_path_from_env()
    if model_path is None:
        LOGGER.warning("%s is not configured; questions will be rejected until a model is loaded.", MODEL_PATH_ENV_KEY)
        _GLOBAL_STUB.update_reason(f"{MODEL_PATH_ENV_KEY} is not configured.")
        emit_llm_provider_init(provider="stub", ready=False, reason="no model path")
        _GLOBAL_LLM = _GLOBAL_STUB
        return _GLOBAL_LLM

    _GLOBAL_LLM = TransformersLLM(_LLMConfig(model_path=model_path))
    emit_llm_provider_init(provider="transformers", ready=False)
    return _GLOBAL_LLM


def reset_llm() -> None:
    """Forget the cached provider so the next :func:`get_llm` re-reads the environment."""

    global _GLOBAL_LLM
    _GLOBAL_LLM = None


def load_llm_on_startup() -> Tuple[bool, Optional[Exception]]:
    """Attempt to load the configured LLM eagerly when ``FORCE_LOAD_ON_START`` is set.

    Returns a tuple ``(attempted, error)``.
    """

    if not _env_flag("FORCE_LOAD_ON_START"):
        return False, None

    llm = get_llm()
    if isinstance(llm, LLMStub):
        LOGGER.info("Startup model loading requested but the stub backend is active; skipping.")
        return False, None

    try:
        llm.preload()
    except Exception as error:  # pragma: no cover - depends on environment
        LOGGER.exception("failed to load model %s", llm.model_name)
        return True, error

    LOGGER.info("model loaded")
    return True, None


def get_llm_status() -> LLMStatus:
    """Return structured status information about the configured LLM."""

    return get_llm().status()


__all__ = [
    "LLM",
    "LLMError",
    "LLMGenerationError",
    "LLMNotReadyError",
    "LLMStatus",
    "LLMStub",
    "TransformersLLM",
    "get_llm",
    "get_llm_status",
    "load_llm_on_startup",
    "reset_llm",
]
