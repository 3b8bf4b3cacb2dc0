"""Execution provider helpers for runtime setup and diagnostics."""

import importlib.metadata as md
import logging

from wmerase.config import RuntimeConfig


log = logging.getLogger(__name__)


def configure_onnxruntime(runtime: RuntimeConfig, logger=None) -> None:
    """Apply process-wide ORT settings and check the requested provider exists."""
    import onnxruntime as ort

    log = logger or logging.getLogger(__name__)
    ort.set_default_logger_severity(int(runtime.log_severity))
    available = list(ort.get_available_providers())
    if runtime.execution_provider not in available:
        raise RuntimeError(
            f"execution provider '{runtime.execution_provider}' is not available; "
            f"available: {', '.join(available)}"
        )
    log.debug(
        f"configured onnxruntime: provider={runtime.execution_provider}, threads={runtime.num_threads}, "
        f"mode={runtime.execution_mode}, optimization={runtime.optimization_level}"
    )


def get_onnxruntime_info() -> dict[str, object]:
    """Return ORT installation and provider diagnostics."""
    import onnxruntime as ort

    return {
        "installed": True,
        "version": md.version("onnxruntime"),
        "available_providers": list(ort.get_available_providers()),
    }


def get_pillow_info() -> dict[str, object]:
    """Return Pillow installation diagnostics."""
    try:
        version = md.version("pillow")
    except md.PackageNotFoundError:
        return {
            "installed": False,
            "version": None,
        }
    return {
        "installed": True,
        "version": version,
    }
