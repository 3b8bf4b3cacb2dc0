"""Static configuration defaults and JSON overrides."""

import dataclasses, json, logging
from dataclasses import dataclass, field
from pathlib import Path


log = logging.getLogger(__name__)

# Square edge length the inpainting model was exported with.
MODEL_INPUT_SIZE = 512
DEFAULT_MODEL_VERSION = "lama_fp32"


@dataclass(frozen=True)
class WatermarkConfig:
    """Bottom-right watermark geometry as ratios of image size."""

    width_ratio: float = 0.2
    height_ratio: float = 0.2
    # Larger patch copied back during composition to hide resampling seams.
    extended_ratio: float = 0.3


@dataclass(frozen=True)
class RuntimeConfig:
    """ONNX Runtime session and model fetch settings."""

    execution_provider: str = "CPUExecutionProvider"
    num_threads: int = 4
    execution_mode: str = "sequential"
    optimization_level: str = "all"
    log_severity: int = 3
    fetch_timeout_s: float | None = 120.0
    chunk_size: int = 1024 * 1024


@dataclass(frozen=True)
class ProgressSteps:
    """Pipeline progress milestones on a 0-100 scale."""

    file_read: int = 5
    model_check: int = 10
    model_download_start: int = 10
    model_download_end: int = 70
    model_init: int = 75
    model_ready: int = 80
    preprocessing: int = 82
    inference: int = 85
    postprocessing: int = 95
    complete: int = 100


@dataclass(frozen=True)
class ImageConfig:
    """Accepted source images and output encoding."""

    allowed_types: tuple[str, ...] = ("image/png", "image/jpeg", "image/webp")
    max_file_size: int = 20 * 1024 * 1024
    output_format: str = "PNG"
    output_quality: int = 95


@dataclass(frozen=True)
class AppConfig:
    """Bundle of all configuration sections."""

    watermark: WatermarkConfig = field(default_factory=WatermarkConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    progress: ProgressSteps = field(default_factory=ProgressSteps)
    image: ImageConfig = field(default_factory=ImageConfig)
    model_input_size: int = MODEL_INPUT_SIZE


DEFAULT_CONFIG = AppConfig()


def _override_section(section, payload: dict, section_name: str):
    """Return a copy of a config section with JSON values applied."""
    if not isinstance(payload, dict):
        raise ValueError(f"config section '{section_name}' must be an object")
    known = {f.name for f in dataclasses.fields(section)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"unsupported keys in config section '{section_name}': {', '.join(unknown)}")
    values = dict(payload)
    if "allowed_types" in values:
        values["allowed_types"] = tuple(values["allowed_types"])
    return dataclasses.replace(section, **values)


def load_config(config_fp: str | Path | None = None, logger=None) -> AppConfig:
    """Load configuration defaults, applying overrides from an optional JSON file."""
    log = logger or logging.getLogger(__name__)
    if config_fp is None:
        return DEFAULT_CONFIG

    config_path = Path(config_fp).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"config file does not exist: {config_path}")
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    assert isinstance(payload, dict), f"config json must be an object: {config_path}"

    # Apply each known section; the input size is a scalar override.
    sections = {}
    for name in ("watermark", "runtime", "progress", "image"):
        if name in payload:
            sections[name] = _override_section(getattr(DEFAULT_CONFIG, name), payload[name], name)
    if "model_input_size" in payload:
        sections["model_input_size"] = int(payload["model_input_size"])
    unknown = sorted(set(payload) - {"watermark", "runtime", "progress", "image", "model_input_size"})
    if unknown:
        raise ValueError(f"unsupported config sections: {', '.join(unknown)}")

    config = dataclasses.replace(DEFAULT_CONFIG, **sections)
    log.debug(f"loaded config overrides from\n    {config_path}")
    return config
