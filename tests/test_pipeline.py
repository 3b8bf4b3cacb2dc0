"""Tests for the end-to-end restoration pipeline."""

import numpy as np
import pytest

from conftest import CountingEngineFactory, make_gradient_image, make_image
from wmerase.config import DEFAULT_CONFIG
from wmerase.engine_cache import EngineCache
from wmerase.errors import EngineLoadError, FetchError, ImageLoadError, InferenceError
from wmerase.pipeline import remove_watermark
from wmerase.region import compute_region


pytestmark = pytest.mark.unit


def test_remove_watermark_end_to_end_red_512(engine_cache, logger):
    """Ensure a 512x512 red source keeps pixels outside the extended region and stays well-formed."""
    source = make_image(512, 512, rgba=(255, 0, 0, 255))
    result = remove_watermark(source, engine_cache=engine_cache, logger=logger)

    final = result.final
    assert final.size == (512, 512)
    assert final.pixels.dtype == np.uint8
    region = compute_region(512, 512, DEFAULT_CONFIG.watermark.extended_ratio)
    outside = np.ones((512, 512), dtype=bool)
    outside[region.slices()] = False
    assert np.array_equal(final.pixels[outside], source.pixels[outside])

    # Stub engine blacks out the mask; the mask sits inside the extended region.
    mask_region = compute_region(512, 512)
    assert np.all(final.pixels[mask_region.slices()][..., :3] == 0)
    assert np.all(final.pixels[..., 3] == 255)


def test_remove_watermark_preserves_non_square_resolution(engine_cache, logger):
    """Ensure the final image keeps the original size and untouched top-left area."""
    source = make_gradient_image(640, 360, seed=5)
    result = remove_watermark(source, engine_cache=engine_cache, logger=logger)
    region = compute_region(640, 360, DEFAULT_CONFIG.watermark.extended_ratio)
    assert result.final.size == (640, 360)
    assert result.restored.size == (DEFAULT_CONFIG.model_input_size,) * 2
    assert np.array_equal(result.final.pixels[: region.y], source.pixels[: region.y])
    assert np.array_equal(result.final.pixels[:, : region.x], source.pixels[:, : region.x])
    assert result.runtime_s >= 0.0


def test_remove_watermark_progress_milestones_are_monotonic(engine_cache, logger):
    """Ensure one milestone per stage, engine events included, in non-decreasing order."""
    events = []
    remove_watermark(make_image(64, 64), engine_cache=engine_cache, on_progress=events.append, logger=logger)
    steps = DEFAULT_CONFIG.progress
    percents = [event.percent for event in events]
    assert percents == sorted(percents)
    for milestone in (
        steps.file_read,
        steps.model_check,
        steps.model_ready,
        steps.preprocessing,
        steps.inference,
        steps.postprocessing,
        steps.complete,
    ):
        assert milestone in percents
    assert events[-1].message == "Complete!"


def test_remove_watermark_skips_engine_events_when_ready(engine_cache, fetcher, logger):
    """Ensure a second run reuses the ready engine without fetching again."""
    remove_watermark(make_image(32, 32), engine_cache=engine_cache, logger=logger)
    events = []
    remove_watermark(make_image(32, 32), engine_cache=engine_cache, on_progress=events.append, logger=logger)
    assert fetcher.calls == 1
    assert not any(event.bytes_loaded for event in events)


def test_remove_watermark_reads_image_files(engine_cache, tmp_path, logger):
    """Ensure a path source is decoded through Pillow."""
    source_fp = tmp_path / "source.png"
    make_gradient_image(80, 60, seed=1).save(source_fp)
    result = remove_watermark(source_fp, engine_cache=engine_cache, logger=logger)
    assert result.original.size == (80, 60)
    assert result.final.size == (80, 60)


def test_remove_watermark_raises_image_load_error(engine_cache, tmp_path, logger):
    """Ensure undecodable files abort the run with ImageLoadError."""
    bad_fp = tmp_path / "broken.png"
    bad_fp.write_bytes(b"not an image")
    with pytest.raises(ImageLoadError):
        remove_watermark(bad_fp, engine_cache=engine_cache, logger=logger)


def test_remove_watermark_propagates_engine_load_error(fetcher, logger):
    """Ensure a failed model download aborts the run with EngineLoadError."""
    fetcher.error = FetchError("connection refused")
    cache = EngineCache(
        model_source="https://example.invalid/lama.onnx",
        engine_factory=CountingEngineFactory(),
        fetcher=fetcher,
        configure_runtime=lambda runtime: None,
        logger=logger,
    )
    with pytest.raises(EngineLoadError) as exc_info:
        remove_watermark(make_image(32, 32), engine_cache=cache, logger=logger)
    assert "connection refused" in str(exc_info.value)


def test_remove_watermark_propagates_inference_error(fetcher, logger):
    """Ensure engine failures abort the run with InferenceError."""
    cache = EngineCache(
        model_source="https://example.invalid/lama.onnx",
        engine_factory=CountingEngineFactory(fail_run=True),
        fetcher=fetcher,
        configure_runtime=lambda runtime: None,
        logger=logger,
    )
    with pytest.raises(InferenceError):
        remove_watermark(make_image(32, 32), engine_cache=cache, logger=logger)
