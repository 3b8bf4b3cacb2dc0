"""Source file gate applied before the pipeline runs."""

import logging, mimetypes
from dataclasses import dataclass
from pathlib import Path

from wmerase.config import ImageConfig


log = logging.getLogger(__name__)

INVALID_FILE_TYPE = "Invalid file type. Please upload a PNG, JPEG, or WebP image."
FILE_TOO_LARGE = "File too large. Maximum size is {limit}."

# Older mimetypes tables lack webp.
mimetypes.add_type("image/webp", ".webp")


@dataclass(frozen=True)
class FileValidation:
    """Outcome of the file gate."""

    valid: bool
    error: str | None = None


def format_file_size(num_bytes: int) -> str:
    """Format a byte count as e.g. '2.5 MB'."""
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{round(value, 2):g} GB"


def check_image_file(mime_type: str | None, size_bytes: int, image_config: ImageConfig | None = None) -> FileValidation:
    """Check a mime type and size against the configured limits."""
    image_config = image_config or ImageConfig()
    if mime_type not in image_config.allowed_types:
        return FileValidation(valid=False, error=INVALID_FILE_TYPE)
    if size_bytes > image_config.max_file_size:
        return FileValidation(valid=False, error=FILE_TOO_LARGE.format(limit=format_file_size(image_config.max_file_size)))
    return FileValidation(valid=True)


def validate_image_file(fp: str | Path | None, image_config: ImageConfig | None = None) -> FileValidation:
    """Validate a file on disk by guessed mime type and size."""
    if fp is None:
        return FileValidation(valid=False, error="No file provided")
    path = Path(fp).expanduser()
    if not path.is_file():
        return FileValidation(valid=False, error=f"File not found: {path}")
    mime_type, _ = mimetypes.guess_type(path.name)
    result = check_image_file(mime_type, path.stat().st_size, image_config=image_config)
    log.debug(f"validated\n    {path}\n    mime={mime_type}, valid={result.valid}")
    return result
