"""Pytest fixtures for wmerase tests."""

import hashlib, json, logging, pathlib, threading

import numpy as np
import pytest

from wmerase.engine.base import EngineBase
from wmerase.image_buffer import ImageBuffer


class StubEngine(EngineBase):
    """In-memory engine returning image * (1 - mask), i.e. the masked corner blacked out."""

    def __init__(self, model_bytes: bytes = b"", runtime=None, fail_run: bool = False):
        self.model_bytes = model_bytes
        self.runtime = runtime
        self.fail_run = fail_run
        self.released = False
        self.calls = 0

    def load(self) -> None:
        """No-op load for stub engine."""

    def run(self, feeds):
        self.calls += 1
        if self.fail_run:
            raise RuntimeError("stub engine exploded")
        image = np.asarray(feeds["image"], dtype=np.float32)
        mask = np.asarray(feeds["mask"], dtype=np.float32)
        return image * (1.0 - mask)

    def release(self) -> None:
        self.released = True


class CountingFetcher:
    """Model fetcher stub that counts calls and can block until released."""

    def __init__(self, payload: bytes = b"stub-model-bytes", total: int | None = None, error: Exception | None = None):
        self.payload = payload
        self.total = len(payload) if total is None else total
        self.error = error
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self._lock = threading.Lock()

    def __call__(self, source, on_progress=None, chunk_size=None, timeout_s=None):
        with self._lock:
            self.calls += 1
        self.started.set()
        assert self.release.wait(timeout=10), "fetcher was never released"
        if self.error is not None:
            raise self.error
        half = len(self.payload) // 2
        if on_progress is not None:
            on_progress(half, self.total or None)
            on_progress(len(self.payload), self.total or None)
        return self.payload


class CountingEngineFactory:
    """Engine factory stub that records constructions."""

    def __init__(self, error: Exception | None = None, fail_run: bool = False):
        self.error = error
        self.fail_run = fail_run
        self.engines: list[StubEngine] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.engines)

    def __call__(self, model_bytes, runtime):
        if self.error is not None:
            raise self.error
        engine = StubEngine(model_bytes, runtime, fail_run=self.fail_run)
        with self._lock:
            self.engines.append(engine)
        return engine


def make_image(width: int, height: int, rgba=(255, 0, 0, 255)) -> ImageBuffer:
    """Build a solid-colour RGBA buffer."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[...] = np.asarray(rgba, dtype=np.uint8)
    return ImageBuffer(width=width, height=height, pixels=pixels)


def make_gradient_image(width: int, height: int, seed: int = 0) -> ImageBuffer:
    """Build a deterministic noisy RGBA buffer."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    return ImageBuffer(width=width, height=height, pixels=pixels)


#===============================================================================
# pytest custom config------------
#===============================================================================


def pytest_runtest_teardown(item, nextitem):
    """Custom teardown message."""
    test_name = item.name
    print(f"\n{'='*20} Test completed: {test_name} {'='*20}\n\n\n")


def pytest_report_header(config):
    """Show pytest invocation arguments in the test header."""
    return f"pytest arguments: {' '.join(config.invocation_params.args)}"


# -------------------
# ----- Fixtures -----
# -------------------
@pytest.fixture(scope="session")
def logger():
    """Simple logger fixture for the function under test."""
    log = logging.getLogger("pytest")
    log.setLevel(logging.DEBUG)
    # keep handlers minimal to avoid duplicate logs across runs
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
        handler.setFormatter(formatter)
        log.addHandler(handler)
    return log


@pytest.fixture(scope="function")
def models_manifest_fp(tmp_path: pathlib.Path) -> pathlib.Path:
    """Create a local one-model manifest fixture for registry/CLI tests."""
    source_fp = tmp_path / "source_model.onnx"
    source_fp.write_bytes(b"cli-test-model")
    sha256 = hashlib.sha256(source_fp.read_bytes()).hexdigest()
    manifest = {
        "models": {
            "v-cli": {
                "file_name": "model.onnx",
                "url": source_fp.as_uri(),
                "sha256": sha256,
                "description": "Local CLI test model.",
            }
        }
    }
    manifest_fp = tmp_path / "models.json"
    manifest_fp.write_text(json.dumps(manifest), encoding="utf-8")
    return manifest_fp


@pytest.fixture(scope="function")
def fetcher():
    return CountingFetcher()


@pytest.fixture(scope="function")
def engine_factory():
    return CountingEngineFactory()


@pytest.fixture(scope="function")
def engine_cache(fetcher, engine_factory, logger):
    """Engine cache wired to stub fetch/engine/runtime hooks."""
    from wmerase.engine_cache import EngineCache

    cache = EngineCache(
        model_source="https://example.invalid/lama.onnx",
        engine_factory=engine_factory,
        fetcher=fetcher,
        configure_runtime=lambda runtime: None,
        logger=logger,
    )
    yield cache
    cache.clear_cache()


@pytest.fixture(scope="session")
def inpaint_onnx_bytes():
    """Serialize a tiny ONNX graph with image/mask inputs: output = image * (1 - mask)."""
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper

    size = 8
    image = helper.make_tensor_value_info("image", TensorProto.FLOAT, [1, 3, size, size])
    mask = helper.make_tensor_value_info("mask", TensorProto.FLOAT, [1, 1, size, size])
    output = helper.make_tensor_value_info("output", TensorProto.FLOAT, [1, 3, size, size])
    one = helper.make_tensor("one", TensorProto.FLOAT, [1], [1.0])
    nodes = [
        helper.make_node("Sub", ["one", "mask"], ["keep"]),
        helper.make_node("Mul", ["image", "keep"], ["output"]),
    ]
    graph = helper.make_graph(nodes, "tiny_inpaint", [image, mask], [output], initializer=[one])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    return model.SerializeToString()
