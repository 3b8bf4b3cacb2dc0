"""Engine package exports."""

from wmerase.engine.ort import EngineORT
from wmerase.engine.providers import configure_onnxruntime, get_onnxruntime_info, get_pillow_info


__all__ = ["EngineORT", "configure_onnxruntime", "get_onnxruntime_info", "get_pillow_info"]
