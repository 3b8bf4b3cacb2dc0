"""ONNX Runtime engine implementation for wmerase."""

import logging, time
from dataclasses import dataclass
from typing import Any

import numpy as np
import onnxruntime as ort

from wmerase.config import RuntimeConfig
from wmerase.engine.base import EngineBase


_OPTIMIZATION_LEVELS = {
    "disabled": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}
_EXECUTION_MODES = {
    "sequential": ort.ExecutionMode.ORT_SEQUENTIAL,
    "parallel": ort.ExecutionMode.ORT_PARALLEL,
}


@dataclass(frozen=True)
class ModelIOContract:
    """Resolved model tensor names."""

    image_input_name: str
    mask_input_name: str
    output_name: str
    image_shape: tuple[Any, ...]
    mask_shape: tuple[Any, ...]


class EngineORT(EngineBase):
    """ONNX Runtime session built from in-memory model bytes."""

    def __init__(
        self,
        model_bytes: bytes,
        runtime: RuntimeConfig | None = None,
        logger=None,
    ):
        """Initialize and load an ORT session."""
        assert model_bytes, "model_bytes cannot be empty"
        self._model_bytes = bytes(model_bytes)
        self.runtime = runtime or RuntimeConfig()
        assert self.runtime.optimization_level in _OPTIMIZATION_LEVELS, (
            f"unsupported optimization_level: {self.runtime.optimization_level}"
        )
        assert self.runtime.execution_mode in _EXECUTION_MODES, (
            f"unsupported execution_mode: {self.runtime.execution_mode}"
        )
        self.log = logger or logging.getLogger(__name__)
        self.session: ort.InferenceSession | None = None
        self.contract: ModelIOContract | None = None
        self.load()

    def _build_session_options(self) -> ort.SessionOptions:
        options = ort.SessionOptions()
        options.intra_op_num_threads = int(self.runtime.num_threads)
        options.execution_mode = _EXECUTION_MODES[self.runtime.execution_mode]
        options.graph_optimization_level = _OPTIMIZATION_LEVELS[self.runtime.optimization_level]
        return options

    def load(self) -> None:
        """Build the session and resolve the model I/O contract."""
        self.log.debug(f"loading ORT session from {len(self._model_bytes):,} model bytes")
        start = time.perf_counter()
        self.session = ort.InferenceSession(
            self._model_bytes,
            sess_options=self._build_session_options(),
            providers=[self.runtime.execution_provider],
        )
        self.contract = self._resolve_contract()
        self.log.info(
            f"loaded ORT model with providers={self.session.get_providers()} "
            f"in {time.perf_counter() - start:.3f}s"
        )

    def _resolve_contract(self) -> ModelIOContract:
        """Map model inputs to image/mask roles by name, then by channel count."""
        assert self.session is not None, "session must be loaded before resolving contract"
        inputs = list(self.session.get_inputs())
        outputs = list(self.session.get_outputs())
        assert len(inputs) == 2, f"inpainting model must take 2 inputs; got {[node.name for node in inputs]}"
        assert len(outputs) > 0, "model outputs are empty"

        by_name = {node.name: node for node in inputs}
        if "image" in by_name and "mask" in by_name:
            image_node, mask_node = by_name["image"], by_name["mask"]
        else:
            # Rank-4 NCHW: the 3-channel input is the image.
            channels = {node.name: (node.shape[1] if len(node.shape) == 4 else None) for node in inputs}
            image_candidates = [node for node in inputs if channels[node.name] == 3]
            mask_candidates = [node for node in inputs if channels[node.name] == 1]
            assert len(image_candidates) == 1 and len(mask_candidates) == 1, (
                f"unable to identify image/mask inputs from shapes {channels}"
            )
            image_node, mask_node = image_candidates[0], mask_candidates[0]

        return ModelIOContract(
            image_input_name=image_node.name,
            mask_input_name=mask_node.name,
            output_name=outputs[0].name,
            image_shape=tuple(image_node.shape),
            mask_shape=tuple(mask_node.shape),
        )

    def _build_feed_dict(self, feeds: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        """Rename pipeline feeds to model input names and validate static dims."""
        assert self.contract is not None, "model contract must be available before inference"
        assert "image" in feeds and "mask" in feeds, f"feeds must contain 'image' and 'mask'; got {sorted(feeds)}"
        feed_dict = {
            self.contract.image_input_name: np.asarray(feeds["image"], dtype=np.float32),
            self.contract.mask_input_name: np.asarray(feeds["mask"], dtype=np.float32),
        }
        for name, expected in (
            (self.contract.image_input_name, self.contract.image_shape),
            (self.contract.mask_input_name, self.contract.mask_shape),
        ):
            got = feed_dict[name].shape
            assert len(got) == len(expected), f"input {name} expects rank {len(expected)}, got shape {got}"
            for axis, (got_dim, exp_dim) in enumerate(zip(got, expected)):
                if isinstance(exp_dim, int) and exp_dim > 0:
                    assert got_dim == exp_dim, (
                        f"input {name} axis {axis} expects {exp_dim}, got {got_dim}; "
                        f"expected shape={expected}, got={got}"
                    )
        return feed_dict

    def run(self, feeds: dict[str, np.ndarray]) -> np.ndarray:
        """Run the inpainting model and return its first output."""
        assert self.session is not None, "session must be loaded before inference"
        assert self.contract is not None, "model contract must be available before inference"
        start = time.perf_counter()
        feed_dict = self._build_feed_dict(feeds)
        outputs = self.session.run([self.contract.output_name], feed_dict)
        assert len(outputs) > 0, "model returned zero outputs"
        self.log.info(f"inference complete in {time.perf_counter() - start:.3f}s; output_shape={outputs[0].shape}")
        return outputs[0]

    def release(self) -> None:
        """Drop the ORT session."""
        self.session = None
        self.contract = None
        self.log.debug("released ORT session")
