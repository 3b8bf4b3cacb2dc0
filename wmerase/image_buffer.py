"""RGBA pixel buffers and Pillow conversions."""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from wmerase.errors import ImageLoadError


log = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """Interleaved 8-bit RGBA pixels, row-major, shape (height, width, 4)."""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        assert self.width >= 0 and self.height >= 0, f"invalid size {(self.width, self.height)}"
        pixels = np.array(self.pixels, dtype=np.uint8, copy=True)
        if pixels.ndim == 1:
            pixels = pixels.reshape((self.height, self.width, 4))
        assert pixels.shape == (self.height, self.width, 4), (
            f"pixel array shape {pixels.shape} does not match {(self.height, self.width, 4)}"
        )
        # Own a read-only copy so buffers never alias one another.
        pixels.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)

    @property
    def data(self) -> np.ndarray:
        """Flat RGBA byte view."""
        return self.pixels.reshape(-1)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def from_rgba(cls, data, width: int, height: int) -> "ImageBuffer":
        """Build a buffer from flat interleaved RGBA bytes."""
        flat = np.frombuffer(bytes(data), dtype=np.uint8) if isinstance(data, (bytes, bytearray)) else np.asarray(data)
        assert flat.size == width * height * 4, f"expected {width * height * 4} bytes, got {flat.size}"
        return cls(width=width, height=height, pixels=flat.reshape((height, width, 4)))

    @classmethod
    def from_pil(cls, image: Image.Image) -> "ImageBuffer":
        rgba = image.convert("RGBA")
        return cls(width=rgba.width, height=rgba.height, pixels=np.asarray(rgba))

    @classmethod
    def load(cls, fp: str | Path) -> "ImageBuffer":
        """Decode an image file, honouring EXIF orientation."""
        path = Path(fp).expanduser().resolve()
        try:
            with Image.open(path) as image:
                oriented = ImageOps.exif_transpose(image)
                buffer = cls.from_pil(oriented)
        except (UnidentifiedImageError, OSError) as err:
            raise ImageLoadError(f"failed to read image '{path}': {err}") from err
        log.debug(f"loaded {buffer.width}x{buffer.height} image from\n    {path}")
        return buffer

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels, dtype=np.uint8))

    def resized(self, width: int, height: int) -> "ImageBuffer":
        """Return a bilinear-resampled copy at the requested size."""
        assert width > 0 and height > 0, f"resize target must be positive; got {(width, height)}"
        return ImageBuffer.from_pil(self.to_pil().resize((width, height), Image.Resampling.BILINEAR))

    def save(self, fp: str | Path, image_format: str | None = None, quality: int = 95) -> Path:
        """Encode to disk; formats without alpha are flattened to RGB."""
        path = Path(fp).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        fmt = (image_format or Image.registered_extensions().get(path.suffix.lower(), "PNG")).upper()
        image = self.to_pil()
        if fmt in {"JPEG", "BMP"}:
            image = image.convert("RGB")
        save_kwargs = {"quality": int(quality)} if fmt in {"JPEG", "WEBP"} else {}
        image.save(path, format=fmt, **save_kwargs)
        log.debug(f"wrote {fmt} image to\n    {path}")
        return path
