"""Corner watermark removal with LaMa ONNX inpainting."""

import importlib.metadata as md

try:
    __version__ = md.version(__name__)
except md.PackageNotFoundError:
    # Source checkout without an install.
    __version__ = "0+unknown"
