"""End-to-end watermark removal pipeline."""

import logging, time
from dataclasses import dataclass
from pathlib import Path

from wmerase.compositor import compose
from wmerase.config import DEFAULT_CONFIG, AppConfig
from wmerase.engine_cache import EngineCache, get_engine_cache
from wmerase.errors import WmeraseError
from wmerase.image_buffer import ImageBuffer
from wmerase.progress import MonotonicProgress, ProgressSink
from wmerase.tensor_codec import from_tensor, to_tensors


@dataclass(frozen=True, eq=False)
class RestorationResult:
    """Buffers produced by one pipeline run."""

    original: ImageBuffer
    restored: ImageBuffer
    final: ImageBuffer
    runtime_s: float


def remove_watermark(
    source: str | Path | ImageBuffer,
    *,
    engine_cache: EngineCache | None = None,
    config: AppConfig | None = None,
    on_progress: ProgressSink | None = None,
    logger=None,
) -> RestorationResult:
    """Restore the watermark corner of `source` and return the full-resolution result."""
    log = logger or logging.getLogger(__name__)
    config = config or DEFAULT_CONFIG
    steps = config.progress
    size = config.model_input_size
    progress = MonotonicProgress(on_progress)
    cache = engine_cache or get_engine_cache(
        runtime=config.runtime, progress_steps=steps, input_size=size
    )
    start = time.perf_counter()
    stage = "file read"
    try:
        # Load the source at full resolution.
        progress.emit(steps.file_read, "Loading image...")
        original = source if isinstance(source, ImageBuffer) else ImageBuffer.load(source)
        log.info(f"image loaded: {original.width}x{original.height}px")

        # Make sure the engine is ready, relaying its download/init events.
        stage = "engine check"
        progress.emit(steps.model_check, "Checking AI model...")
        cache.initialize(on_progress=progress)

        # Down-scale to the model's square input and build tensors.
        stage = "preprocessing"
        progress.emit(steps.preprocessing, "Preparing image for AI processing...")
        model_input = original.resized(size, size)
        tensors = to_tensors(model_input, watermark=config.watermark)
        log.info(f"preprocessed to {size}x{size}px")

        stage = "inference"
        progress.emit(steps.inference, "Removing watermark with AI...")
        output = cache.run_inference(tensors.as_feeds())
        log.info("AI processing complete")

        # Decode and paste the restored corner back at full resolution.
        stage = "postprocessing"
        progress.emit(steps.postprocessing, "Composing final high-resolution image...")
        restored = from_tensor(output, size, size)
        final = compose(
            original,
            restored,
            extended_ratio=config.watermark.extended_ratio,
            expected_restored_size=size,
            logger=log,
        )
        log.info("final image composed at original resolution")
    except WmeraseError as err:
        log.error(f"processing failed during {stage}: {err}")
        raise

    progress.emit(steps.complete, "Complete!")
    runtime_s = time.perf_counter() - start
    log.info(f"watermark removal finished in {runtime_s:.3f}s")
    return RestorationResult(original=original, restored=restored, final=final, runtime_s=float(runtime_s))
