"""Blend the restored watermark corner back into the full-resolution image."""

import logging

import numpy as np
from PIL import Image

from wmerase.config import WatermarkConfig
from wmerase.errors import CompositionError
from wmerase.image_buffer import ImageBuffer
from wmerase.region import compute_region


log = logging.getLogger(__name__)


def compose(
    original: ImageBuffer,
    restored: ImageBuffer,
    extended_ratio: float | None = None,
    expected_restored_size: int | None = None,
    logger=None,
) -> ImageBuffer:
    """Paste the extended corner of `restored`, resampled, over a copy of `original`.

    The extended region is computed with the same ratio on both images, so the
    restored patch is scaled from model resolution to the original's region
    size. Pixels outside the extended region are byte-identical to `original`.
    """
    log = logger or logging.getLogger(__name__)
    if original.width == 0 or original.height == 0:
        raise CompositionError(f"original image is empty: {original.width}x{original.height}")
    if restored.width == 0 or restored.height == 0:
        raise CompositionError(f"restored image is empty: {restored.width}x{restored.height}")
    if expected_restored_size is not None and restored.size != (expected_restored_size, expected_restored_size):
        raise CompositionError(
            f"restored image is {restored.width}x{restored.height}; "
            f"expected {expected_restored_size}x{expected_restored_size}"
        )

    ratio = WatermarkConfig().extended_ratio if extended_ratio is None else extended_ratio
    src_region = compute_region(restored.width, restored.height, ratio)
    dst_region = compute_region(original.width, original.height, ratio)
    pixels = np.array(original.pixels, copy=True)
    if src_region.is_empty() or dst_region.is_empty():
        log.warning(f"extended region is empty (src={src_region}, dst={dst_region}); returning original pixels")
        return ImageBuffer(width=original.width, height=original.height, pixels=pixels)

    # Crop the restored corner and scale it to the destination region.
    patch = restored.to_pil().crop(
        (src_region.x, src_region.y, src_region.x + src_region.width, src_region.y + src_region.height)
    )
    if patch.size != (dst_region.width, dst_region.height):
        patch = patch.resize((dst_region.width, dst_region.height), Image.Resampling.BILINEAR)

    rows, cols = dst_region.slices()
    pixels[rows, cols] = np.asarray(patch, dtype=np.uint8)
    log.debug(
        f"composed {restored.width}x{restored.height} restored region {src_region} "
        f"into {original.width}x{original.height} original at {dst_region}"
    )
    return ImageBuffer(width=original.width, height=original.height, pixels=pixels)
