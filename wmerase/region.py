"""Watermark region geometry."""

import math
from dataclasses import dataclass

from wmerase.config import WatermarkConfig


@dataclass(frozen=True)
class Region:
    """Integer rectangle anchored to the bottom-right corner of an image."""

    x: int
    y: int
    width: int
    height: int

    def slices(self) -> tuple[slice, slice]:
        """Return (rows, cols) slices selecting this region from an HW array."""
        return (slice(self.y, self.y + self.height), slice(self.x, self.x + self.width))

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


def compute_region(
    width: int,
    height: int,
    ratio: float | None = None,
    watermark: WatermarkConfig | None = None,
) -> Region:
    """Compute the bottom-right region covering `ratio` of each image dimension.

    When `ratio` is omitted the configured width/height ratios are used. Inputs
    are not validated.
    """
    watermark = watermark or WatermarkConfig()
    width_ratio = watermark.width_ratio if ratio is None else ratio
    height_ratio = watermark.height_ratio if ratio is None else ratio

    region_width = math.floor(width * width_ratio)
    region_height = math.floor(height * height_ratio)
    return Region(
        x=width - region_width,
        y=height - region_height,
        width=region_width,
        height=region_height,
    )
