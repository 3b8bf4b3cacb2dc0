"""Conversion between RGBA buffers and planar float32 model tensors."""

import logging
from dataclasses import dataclass

import numpy as np

from wmerase.config import WatermarkConfig
from wmerase.image_buffer import ImageBuffer
from wmerase.region import compute_region


log = logging.getLogger(__name__)

# Leading first-plane values inspected when guessing the output scale.
RANGE_SAMPLE_SIZE = 1000
# Sampled magnitudes at or below this are treated as [0, 1] output.
NORMALIZED_MAX = 2.0


@dataclass(frozen=True, eq=False)
class TensorPair:
    """Image [1,3,H,W] and mask [1,1,H,W] tensors for one model call."""

    image_tensor: np.ndarray
    mask_tensor: np.ndarray

    def as_feeds(self) -> dict[str, np.ndarray]:
        """Return the named feed mapping expected by the engine."""
        return {"image": self.image_tensor, "mask": self.mask_tensor}


def to_tensors(
    image: ImageBuffer,
    ratio: float | None = None,
    watermark: WatermarkConfig | None = None,
) -> TensorPair:
    """Encode RGBA pixels into a normalized CHW image tensor plus a binary mask."""
    width, height = image.width, image.height
    assert width > 0 and height > 0, f"image must be non-empty; got {(width, height)}"

    # Drop alpha, scale to [0, 1] and move channels to planes.
    rgb = image.pixels[:, :, :3].astype(np.float32) / np.float32(255.0)
    image_tensor = np.ascontiguousarray(rgb.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

    # Mark the watermark corner for regeneration.
    region = compute_region(width, height, ratio, watermark=watermark)
    mask_tensor = np.zeros((1, 1, height, width), dtype=np.float32)
    rows, cols = region.slices()
    mask_tensor[0, 0, rows, cols] = 1.0

    log.debug(
        f"encoded {width}x{height} image to tensors; image_shape={image_tensor.shape}, "
        f"mask_region={region}"
    )
    return TensorPair(image_tensor=image_tensor, mask_tensor=mask_tensor)


def is_normalized_output(values: np.ndarray, sample_size: int = RANGE_SAMPLE_SIZE) -> bool:
    """Guess whether model output is in [0, 1] (True) or already in [0, 255]."""
    flat = np.asarray(values, dtype=np.float32).reshape(-1)
    sample = flat[: min(sample_size, flat.size)]
    if sample.size == 0:
        return True
    max_abs = float(np.max(np.abs(sample)))
    return max_abs <= NORMALIZED_MAX


def from_tensor(output: np.ndarray, width: int, height: int) -> ImageBuffer:
    """Decode a [1,3,H,W] (or flat) model output into an opaque RGBA buffer."""
    flat = np.asarray(output, dtype=np.float32).reshape(-1)
    plane = width * height
    assert flat.size == 3 * plane, f"output tensor has {flat.size} values; expected {3 * plane} for {width}x{height}"

    # Only the first plane is sampled.
    normalized = is_normalized_output(flat[:plane])
    chw = flat.reshape((3, height, width))
    if normalized:
        chw = chw * np.float32(255.0)

    # Round half up, clamp to byte range and add an opaque alpha plane.
    rounded = np.floor(np.nan_to_num(chw, nan=0.0) + 0.5)
    rgb = np.clip(rounded, 0, 255).astype(np.uint8).transpose(1, 2, 0)
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    log.debug(f"decoded output tensor to {width}x{height} image; normalized={normalized}")
    return ImageBuffer(width=width, height=height, pixels=np.concatenate([rgb, alpha], axis=2))
