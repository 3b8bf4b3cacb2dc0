"""Tests for the source file gate."""

from pathlib import Path

import pytest

from wmerase.config import ImageConfig
from wmerase.validation import FILE_TOO_LARGE, INVALID_FILE_TYPE, check_image_file, format_file_size, validate_image_file


pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "num_bytes, expected",
    [
        pytest.param(0, "0 Bytes", id="zero"),
        pytest.param(512, "512 Bytes", id="bytes"),
        pytest.param(1536, "1.5 KB", id="kilobytes"),
        pytest.param(20 * 1024 * 1024, "20 MB", id="limit"),
        pytest.param(3 * 1024**3, "3 GB", id="gigabytes"),
    ],
)
def test_format_file_size(num_bytes: int, expected: str):
    """Ensure sizes render with base-1024 units and at most two decimals."""
    assert format_file_size(num_bytes) == expected


@pytest.mark.parametrize(
    "mime_type, size_bytes, expected_valid, expected_error",
    [
        pytest.param("image/png", 1024, True, None, id="png_ok"),
        pytest.param("image/jpeg", 20 * 1024 * 1024, True, None, id="jpeg_at_limit"),
        pytest.param("image/webp", 10, True, None, id="webp_ok"),
        pytest.param("image/gif", 10, False, INVALID_FILE_TYPE, id="gif_rejected"),
        pytest.param(None, 10, False, INVALID_FILE_TYPE, id="unknown_type"),
        pytest.param("image/png", 20 * 1024 * 1024 + 1, False, FILE_TOO_LARGE.format(limit="20 MB"), id="too_large"),
    ],
)
def test_check_image_file(mime_type, size_bytes: int, expected_valid: bool, expected_error):
    """Ensure type is checked before size and messages are user-facing."""
    result = check_image_file(mime_type, size_bytes)
    assert result.valid is expected_valid
    assert result.error == expected_error


def test_check_image_file_honours_config_limits():
    """Ensure a custom ImageConfig narrows accepted types and size."""
    config = ImageConfig(allowed_types=("image/png",), max_file_size=100)
    assert not check_image_file("image/jpeg", 10, image_config=config).valid
    assert check_image_file("image/png", 100, image_config=config).valid
    assert not check_image_file("image/png", 101, image_config=config).valid


@pytest.mark.parametrize(
    "file_name, expected_valid",
    [
        pytest.param("photo.png", True, id="png"),
        pytest.param("photo.JPG", True, id="upper_jpg"),
        pytest.param("photo.webp", True, id="webp"),
        pytest.param("photo.bmp", False, id="bmp"),
    ],
)
def test_validate_image_file_by_extension(tmp_path: Path, file_name: str, expected_valid: bool):
    """Ensure on-disk files are classified from their name."""
    fp = tmp_path / file_name
    fp.write_bytes(b"\x00" * 16)
    assert validate_image_file(fp).valid is expected_valid


def test_validate_image_file_missing(tmp_path: Path):
    """Ensure missing paths and None report an error instead of raising."""
    assert validate_image_file(None).error == "No file provided"
    result = validate_image_file(tmp_path / "missing.png")
    assert not result.valid
    assert "File not found" in result.error
