"""Tests for watermark region geometry."""

import pytest

from wmerase.config import WatermarkConfig
from wmerase.region import Region, compute_region


pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "width, height, ratio",
    [
        pytest.param(100, 100, 0.3, id="square_extended"),
        pytest.param(1920, 1080, 0.2, id="landscape_primary"),
        pytest.param(333, 777, 0.17, id="odd_dims"),
        pytest.param(512, 512, 1.0, id="full_image"),
        pytest.param(7, 3, 0.01, id="tiny_ratio_rounds_to_zero"),
    ],
)
def test_compute_region_is_anchored_bottom_right(width: int, height: int, ratio: float):
    """Ensure regions always end at the image's right and bottom edges."""
    region = compute_region(width, height, ratio)
    assert region.x + region.width == width
    assert region.y + region.height == height
    assert 0 <= region.width <= width
    assert 0 <= region.height <= height


def test_compute_region_floors_dimensions():
    """Ensure region size is floor(dim * ratio)."""
    region = compute_region(101, 55, 0.3)
    assert region == Region(x=101 - 30, y=55 - 16, width=30, height=16)


def test_compute_region_defaults_to_configured_ratios():
    """Ensure omitted ratio falls back to per-axis configured ratios."""
    watermark = WatermarkConfig(width_ratio=0.25, height_ratio=0.1)
    region = compute_region(200, 100, watermark=watermark)
    assert region == Region(x=150, y=90, width=50, height=10)

    default_region = compute_region(100, 100)
    assert default_region.width == int(100 * WatermarkConfig().width_ratio)


def test_region_slices_select_corner():
    """Ensure slices address the region rows/cols in an HW array."""
    rows, cols = compute_region(10, 10, 0.3).slices()
    assert (rows.start, rows.stop) == (7, 10)
    assert (cols.start, cols.stop) == (7, 10)
