"""Model manifest resolution and retrieval backends."""

import json, logging, sys
from contextlib import contextmanager
from dataclasses import dataclass
from http.client import HTTPException
from pathlib import Path
from typing import BinaryIO, Callable, Iterator
from urllib.error import HTTPError, URLError
from urllib.parse import unquote, urlparse
from urllib.request import Request, urlopen

from tqdm import tqdm

from wmerase.config import DEFAULT_CONFIG, DEFAULT_MODEL_VERSION
from wmerase.errors import FetchError
from wmerase.model_cache import cached_model_path, digest_matches, require_digest


DEFAULT_MANIFEST_FP = Path(__file__).with_name("models.json")
DEFAULT_CHUNK_SIZE = 1024 * 1024
log = logging.getLogger(__name__)

ChunkProgress = Callable[[int, int | None], None]


def _pump_stream(
    source: str,
    stream: BinaryIO,
    total_size: int | None,
    write: Callable[[bytes], object],
    on_progress: ChunkProgress | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy `stream` to `write` chunk by chunk, reporting bytes received.

    A body shorter or longer than the advertised `total_size` is a FetchError.
    """
    received = 0
    try:
        chunk = stream.read(chunk_size)
        while chunk:
            write(chunk)
            received += len(chunk)
            if on_progress is not None:
                on_progress(received, total_size)
            chunk = stream.read(chunk_size)
    except (HTTPException, OSError) as err:
        raise FetchError(f"download from '{source}' interrupted after {received:,} bytes ({err})") from err

    if total_size is not None and received != total_size:
        raise FetchError(f"incomplete download from '{source}': got {received:,} of {total_size:,} bytes")
    return received


def _parse_content_length(response) -> int | None:
    """Return the advertised body size, or None when absent or invalid."""
    total_bytes = response.headers.get("Content-Length")
    try:
        total_size = int(total_bytes) if total_bytes else None
    except ValueError:
        total_size = None
    return total_size if total_size else None


@dataclass(frozen=True)
class ModelRecord:
    """Resolved model metadata from the weights manifest."""

    version: str
    file_name: str
    url: str
    sha256: str | None = None
    description: str = ""


class WeightsRetrievalBackend:
    """Abstract retrieval backend for fetching model bytes."""

    name = "base"

    def open_stream(self, source: str, timeout_s: float | None = None):
        """Context manager yielding `(binary_stream, total_size_or_None)`."""
        raise NotImplementedError

    def retrieve_bytes(
        self,
        source: str,
        on_progress: ChunkProgress | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout_s: float | None = None,
    ) -> bytes:
        """Read model bytes from source into memory."""
        buffer = bytearray()
        with self.open_stream(source, timeout_s=timeout_s) as (stream, total_size):
            _pump_stream(source, stream, total_size, buffer.extend, on_progress=on_progress, chunk_size=chunk_size)
        log.debug(f"read {len(buffer):,} bytes from\n    {source}")
        return bytes(buffer)

    def retrieve(
        self,
        source: str,
        destination: Path,
        on_progress: ChunkProgress | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout_s: float | None = None,
    ) -> Path:
        """Stream model bytes from source straight into destination."""
        assert isinstance(destination, Path), "destination must be a pathlib.Path"
        destination.parent.mkdir(parents=True, exist_ok=True)
        with self.open_stream(source, timeout_s=timeout_s) as (stream, total_size), destination.open("wb") as out:
            received = _pump_stream(source, stream, total_size, out.write, on_progress=on_progress, chunk_size=chunk_size)
        log.debug(f"wrote {received:,} bytes to\n    {destination}")
        return destination


class HttpRetrievalBackend(WeightsRetrievalBackend):
    """Retrieve model weights from HTTP(S) sources."""

    name = "http"

    @contextmanager
    def open_stream(self, source: str, timeout_s: float | None = None) -> Iterator[tuple[BinaryIO, int | None]]:
        """Open an HTTP(S) response and yield it with its Content-Length."""
        assert source, "source cannot be empty"
        parsed = urlparse(source)
        if parsed.scheme.lower() not in {"http", "https"}:
            raise ValueError(f"unsupported scheme for http backend: {parsed.scheme}")

        log.info(f"downloading model from\n    {source}")
        try:
            response = urlopen(Request(source), timeout=timeout_s)  # nosec B310
        except HTTPError as err:
            raise FetchError(f"failed to download model from '{source}' (HTTP {err.code} {err.reason})") from err
        except (URLError, TimeoutError) as err:
            raise FetchError(f"failed to download model from '{source}' ({err})") from err
        with response:
            yield response, _parse_content_length(response)


class FileRetrievalBackend(WeightsRetrievalBackend):
    """Retrieve model weights from file paths or file:// URIs."""

    name = "file"

    @staticmethod
    def _resolve_path(source: str) -> Path:
        parsed = urlparse(source)
        if parsed.scheme.lower() in {"", "file"}:
            source_fp = (
                Path(f"//{parsed.netloc}{unquote(parsed.path)}")
                if parsed.netloc
                else Path(unquote(parsed.path) or source)
            )
        elif len(parsed.scheme) == 1:
            # Windows drive letters parse as a one-letter scheme.
            source_fp = Path(source)
        else:
            raise ValueError(f"unsupported scheme for file backend: {parsed.scheme}")
        return source_fp.expanduser().resolve()

    @contextmanager
    def open_stream(self, source: str, timeout_s: float | None = None) -> Iterator[tuple[BinaryIO, int | None]]:
        """Open a local model file and yield it with its size."""
        source_fp = self._resolve_path(source)
        if not source_fp.is_file():
            raise FetchError(f"source model not found: {source_fp}")
        with source_fp.open("rb") as stream:
            yield stream, source_fp.stat().st_size


def load_models_manifest(manifest_fp: str | Path | None = None) -> dict:
    """Load the model manifest from disk."""
    manifest_path = Path(manifest_fp).expanduser().resolve() if manifest_fp else DEFAULT_MANIFEST_FP
    if not manifest_path.exists():
        raise FileNotFoundError(f"manifest does not exist: {manifest_path}")

    # Read JSON manifest and return the payload.
    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    models = manifest.get("models", {})
    if not isinstance(models, dict):
        raise ValueError("manifest field 'models' must be a dictionary")
    return models


def _record_from_payload(version: str, payload: dict) -> ModelRecord:
    return ModelRecord(
        version=version,
        file_name=payload["file_name"],
        url=payload["url"],
        sha256=payload.get("sha256") or None,
        description=payload.get("description", ""),
    )


def list_models(manifest_fp: str | Path | None = None) -> list[ModelRecord]:
    """Return all models defined in the manifest."""
    return [
        _record_from_payload(version, payload)
        for version, payload in sorted(load_models_manifest(manifest_fp).items())
    ]


def resolve_model(model_version: str | None = None, manifest_fp: str | Path | None = None) -> ModelRecord:
    """Resolve one model entry from the manifest."""
    model_version = model_version or DEFAULT_MODEL_VERSION
    models = load_models_manifest(manifest_fp)
    if model_version not in models:
        available = ", ".join(sorted(models))
        raise KeyError(f"model '{model_version}' not found. available: {available}")
    return _record_from_payload(model_version, models[model_version])


def get_retrieval_backend(source_url: str, backend_name: str | None = None) -> WeightsRetrievalBackend:
    """Select a retrieval backend from explicit name or URL scheme."""
    if backend_name == "http":
        return HttpRetrievalBackend()
    if backend_name == "file":
        return FileRetrievalBackend()
    if backend_name is not None:
        raise ValueError(f"unsupported backend '{backend_name}'")

    # Derive backend selection from URI scheme when no override is provided.
    scheme = urlparse(source_url).scheme.lower()
    if scheme in {"http", "https"}:
        return HttpRetrievalBackend()
    if scheme in {"", "file"} or len(scheme) == 1:
        return FileRetrievalBackend()
    raise ValueError(f"unable to select backend for URL scheme '{scheme}'")


def stream_model_bytes(
    source: str,
    on_progress: ChunkProgress | None = None,
    backend_name: str | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    timeout_s: float | None = None,
) -> bytes:
    """Read a model into memory from any supported source."""
    backend = get_retrieval_backend(source, backend_name=backend_name)
    payload = backend.retrieve_bytes(source, on_progress=on_progress, chunk_size=chunk_size, timeout_s=timeout_s)
    if not payload:
        raise FetchError(f"model source returned no bytes: {source}")
    return payload


def _tqdm_chunk_progress(bar: tqdm) -> ChunkProgress:
    """Adapt byte counts onto a tqdm bar."""

    def _update(received: int, total: int | None) -> None:
        if total and bar.total != total:
            bar.total = total
        bar.update(received - bar.n)

    return _update


def fetch_model(
    model_version: str | None = None,
    cache_dir: str | Path | None = None,
    manifest_fp: str | Path | None = None,
    backend_name: str | None = None,
    force: bool = False,
    timeout_s: float | None = DEFAULT_CONFIG.runtime.fetch_timeout_s,
) -> Path:
    """Fetch one model to the disk cache and verify its checksum; `timeout_s=None` waits forever."""
    model = resolve_model(model_version, manifest_fp=manifest_fp)
    model_fp = cached_model_path(model.version, model.file_name, cache_dir=cache_dir)
    part_fp = model_fp.with_suffix(f"{model_fp.suffix}.part")

    # Reuse an existing cached model only when checksum validation passes.
    if model_fp.exists() and not force and (model.sha256 is None or digest_matches(model_fp, model.sha256)):
        log.debug(f"using cached model\n    {model_fp}")
        return model_fp

    # Download to a temporary file first and atomically replace on success.
    if part_fp.exists():
        part_fp.unlink()
    backend = get_retrieval_backend(model.url, backend_name=backend_name)
    try:
        with tqdm(unit="B", unit_scale=True, desc=model.version, disable=not sys.stderr.isatty()) as bar:
            backend.retrieve(model.url, part_fp, on_progress=_tqdm_chunk_progress(bar), timeout_s=timeout_s)
        if model.sha256 is not None:
            require_digest(part_fp, model.sha256, model.url)
        else:
            log.warning(f"model '{model.version}' has no sha256 in manifest; skipping checksum verification")
        part_fp.replace(model_fp)
    finally:
        if part_fp.exists():
            part_fp.unlink()
    return model_fp


def resolve_model_source(
    model_version: str | None = None,
    model_path: str | Path | None = None,
    cache_dir: str | Path | None = None,
    manifest_fp: str | Path | None = None,
) -> tuple[str, str | None]:
    """Return `(source, expected_sha256)` for the engine: explicit path, verified cache copy, or manifest URL."""
    if model_path is not None:
        model_fp = Path(model_path).expanduser().resolve()
        if not model_fp.exists():
            raise FileNotFoundError(f"model path does not exist: {model_fp}")
        return model_fp.as_uri(), None

    model = resolve_model(model_version, manifest_fp=manifest_fp)
    cached_fp = cached_model_path(model.version, model.file_name, cache_dir=cache_dir)
    if cached_fp.exists() and (model.sha256 is None or digest_matches(cached_fp, model.sha256)):
        log.debug(f"resolved model '{model.version}' to cached copy\n    {cached_fp}")
        return cached_fp.as_uri(), None
    log.debug(f"resolved model '{model.version}' to remote source\n    {model.url}")
    return model.url, model.sha256
