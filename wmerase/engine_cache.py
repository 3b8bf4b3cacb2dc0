"""Process-wide inference engine cache with single-flight initialization.

The cache owns the inpainting engine and the raw model bytes. Loading is
expensive (a network download of a few hundred MB followed by session
construction), so at most one acquisition runs at a time: the first caller
starts it on a background worker and every concurrent caller receives the same
`concurrent.futures.Future`, sharing its outcome and its progress stream.

State machine::

    UNINITIALIZED --begin_initialize--> INITIALIZING --success--> READY
    INITIALIZING --failure--> UNINITIALIZED   (retained bytes discarded)
    READY --dispose--> UNINITIALIZED          (bytes retained)
    READY|UNINITIALIZED --clear_cache--> UNINITIALIZED (bytes discarded)
"""

import enum, functools, logging, threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import numpy as np

from wmerase.config import MODEL_INPUT_SIZE, ProgressSteps, RuntimeConfig
from wmerase.engine.base import EngineBase
from wmerase.errors import EngineLoadError, InferenceError, NotInitializedError
from wmerase.model_cache import require_digest
from wmerase.model_registry import resolve_model_source, stream_model_bytes
from wmerase.progress import ProgressEvent, ProgressSink
from wmerase.validation import format_file_size


log = logging.getLogger(__name__)

EngineFactory = Callable[[bytes, RuntimeConfig], EngineBase]
ModelFetcher = Callable[..., bytes]


class CacheState(enum.Enum):
    """Lifecycle states of the engine cache."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def _build_ort_engine(model_bytes: bytes, runtime: RuntimeConfig) -> EngineBase:
    from wmerase.engine.ort import EngineORT

    return EngineORT(model_bytes, runtime=runtime)


def _configure_ort_runtime(runtime: RuntimeConfig) -> None:
    from wmerase.engine.providers import configure_onnxruntime

    configure_onnxruntime(runtime)


class EngineCache:
    """Owns one inference engine plus its model bytes."""

    def __init__(
        self,
        model_source: str | None = None,
        runtime: RuntimeConfig | None = None,
        progress_steps: ProgressSteps | None = None,
        input_size: int = MODEL_INPUT_SIZE,
        engine_factory: EngineFactory | None = None,
        fetcher: ModelFetcher | None = None,
        configure_runtime: Callable[[RuntimeConfig], None] | None = None,
        backend_name: str | None = None,
        expected_sha256: str | None = None,
        logger=None,
    ):
        if model_source is None:
            model_source, expected_sha256 = resolve_model_source()
        self.model_source = model_source
        self.expected_sha256 = expected_sha256
        self.runtime = runtime or RuntimeConfig()
        self.progress_steps = progress_steps or ProgressSteps()
        self.input_size = int(input_size)
        self.log = logger or logging.getLogger(__name__)
        self._engine_factory = engine_factory or _build_ort_engine
        self._fetcher = fetcher or functools.partial(stream_model_bytes, backend_name=backend_name)
        self._configure_runtime = configure_runtime or _configure_ort_runtime

        self._lock = threading.Lock()
        self._state = CacheState.UNINITIALIZED
        self._engine: EngineBase | None = None
        self._model_bytes: bytes | None = None
        self._pending: Future | None = None
        self._listeners: list[ProgressSink] = []
        self._executor: ThreadPoolExecutor | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> CacheState:
        with self._lock:
            return self._state

    # ---------------------------------------------------------------
    # initialization
    # ---------------------------------------------------------------
    def begin_initialize(self, on_progress: ProgressSink | None = None) -> Future:
        """Start (or join) engine acquisition without blocking the caller."""
        with self._lock:
            if self._state is CacheState.READY:
                done: Future = Future()
                done.set_result(None)
                return done

            if on_progress is not None:
                self._listeners.append(on_progress)

            # Join the acquisition already in flight.
            if self._state is CacheState.INITIALIZING:
                assert self._pending is not None, "initializing state without a pending handle"
                self.log.debug("joining in-flight engine initialization")
                return self._pending

            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="wmerase-engine")
            self._state = CacheState.INITIALIZING
            self._pending = self._executor.submit(self._acquire)
            return self._pending

    def initialize(self, on_progress: ProgressSink | None = None, timeout: float | None = None) -> None:
        """Ensure the engine is ready, waiting on the shared acquisition."""
        self.begin_initialize(on_progress).result(timeout=timeout)

    def _emit(self, event: ProgressEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            # A failing sink must not abort the shared acquisition.
            try:
                listener(event)
            except Exception:
                self.log.warning(f"progress listener {listener!r} failed at {event.percent}%", exc_info=True)

    def _on_download_progress(self, received: int, total: int | None) -> None:
        """Map byte progress into the download sub-range of the pipeline scale."""
        steps = self.progress_steps
        percent = steps.model_download_start
        if total:
            fraction = min(received / total, 1.0)
            percent = round(steps.model_download_start + fraction * (steps.model_download_end - steps.model_download_start))
        self._emit(ProgressEvent(percent, f"Downloading model ({format_file_size(received)})...", received))

    def _acquire(self) -> None:
        """Fetch model bytes when needed and construct the engine."""
        steps = self.progress_steps
        engine = None
        try:
            self._configure_runtime(self.runtime)

            with self._lock:
                model_bytes = self._model_bytes
            if model_bytes is None:
                self._emit(ProgressEvent(steps.model_download_start, "Downloading model...", 0))
                model_bytes = self._fetcher(
                    self.model_source,
                    on_progress=self._on_download_progress,
                    chunk_size=self.runtime.chunk_size,
                    timeout_s=self.runtime.fetch_timeout_s,
                )
                self.log.info(f"fetched {len(model_bytes):,} model bytes from\n    {self.model_source}")
                if self.expected_sha256:
                    require_digest(model_bytes, self.expected_sha256, self.model_source)
            else:
                self.log.debug(f"reusing {len(model_bytes):,} retained model bytes")

            self._emit(ProgressEvent(steps.model_init, "Initializing neural engine..."))
            engine = self._engine_factory(model_bytes, self.runtime)
            self._emit(ProgressEvent(steps.model_ready, "AI model ready"))
        except Exception as err:
            if engine is not None:
                engine.release()
            with self._lock:
                self._state = CacheState.UNINITIALIZED
                self._pending = None
                self._model_bytes = None
                self._listeners.clear()
                self.last_error = f"{err}"
            self.log.error(f"engine initialization failed: {err}")
            raise EngineLoadError(f"Failed to load AI model: {err}") from err

        with self._lock:
            self._engine = engine
            self._model_bytes = model_bytes
            self._state = CacheState.READY
            self._pending = None
            self._listeners.clear()
            self.last_error = None

    # ---------------------------------------------------------------
    # inference
    # ---------------------------------------------------------------
    def run_inference(self, feeds: dict[str, np.ndarray]) -> np.ndarray:
        """Run the engine on image/mask feeds and return the first output."""
        with self._lock:
            engine = self._engine if self._state is CacheState.READY else None
        if engine is None:
            raise NotInitializedError("Model not initialized. Call initialize() first.")
        try:
            return engine.run(feeds)
        except Exception as err:
            raise InferenceError(f"Inference failed: {err}") from err

    # ---------------------------------------------------------------
    # teardown
    # ---------------------------------------------------------------
    def _release_locked(self, discard_bytes: bool) -> EngineBase | None:
        """Transition to UNINITIALIZED; caller must hold the lock."""
        if self._state is CacheState.INITIALIZING:
            self.log.warning("engine initialization in flight; teardown request ignored")
            return None
        engine, self._engine = self._engine, None
        self._state = CacheState.UNINITIALIZED
        if discard_bytes:
            self._model_bytes = None
        return engine

    def dispose(self) -> None:
        """Release the engine, keeping model bytes for a fast re-initialize."""
        with self._lock:
            engine = self._release_locked(discard_bytes=False)
        if engine is not None:
            engine.release()
            self.log.debug("disposed inference engine; model bytes retained")

    def clear_cache(self) -> None:
        """Release the engine and discard model bytes."""
        with self._lock:
            engine = self._release_locked(discard_bytes=True)
        if engine is not None:
            engine.release()
        self.log.debug("cleared engine cache")

    def get_info(self) -> dict[str, Any]:
        """Return a snapshot of the cache state."""
        with self._lock:
            return {
                "state": self._state.value,
                "is_initialized": self._state is CacheState.READY,
                "has_model_buffer": self._model_bytes is not None,
                "model_source": self.model_source,
                "input_size": self.input_size,
                "last_error": self.last_error,
            }


_ENGINE_CACHE: EngineCache | None = None
_ENGINE_CACHE_LOCK = threading.Lock()


def get_engine_cache(**kwargs) -> EngineCache:
    """Return the process-wide engine cache; kwargs apply only on first creation."""
    global _ENGINE_CACHE
    if _ENGINE_CACHE is None:
        with _ENGINE_CACHE_LOCK:
            if _ENGINE_CACHE is None:
                _ENGINE_CACHE = EngineCache(**kwargs)
    return _ENGINE_CACHE


def reset_engine_cache() -> None:
    """Clear and drop the process-wide engine cache."""
    global _ENGINE_CACHE
    with _ENGINE_CACHE_LOCK:
        cache, _ENGINE_CACHE = _ENGINE_CACHE, None
    if cache is not None:
        cache.clear_cache()
