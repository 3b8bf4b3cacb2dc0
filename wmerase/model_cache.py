"""On-disk weights cache layout and SHA256 integrity checks."""

import hashlib, logging
from pathlib import Path

from platformdirs import user_cache_dir

from wmerase.errors import FetchError


APP_NAME = "wmerase"
HASH_CHUNK_SIZE = 1024 * 1024
log = logging.getLogger(__name__)

Digestible = bytes | bytearray | memoryview | str | Path


def cache_root(cache_dir: str | Path | None = None) -> Path:
    """Return the weights cache root, creating it on first use."""
    if cache_dir is not None:
        root = Path(cache_dir).expanduser().resolve()
    else:
        root = Path(user_cache_dir(APP_NAME, appauthor=False))
    root.mkdir(parents=True, exist_ok=True)
    return root


def cached_model_path(version: str, file_name: str, cache_dir: str | Path | None = None) -> Path:
    """Return `<root>/<version>/<file_name>`; the version folder is created, the file is not."""
    assert version, "version cannot be empty"
    assert file_name and Path(file_name).name == file_name, f"file_name must be a bare name; got {file_name!r}"
    version_dir = cache_root(cache_dir) / version
    version_dir.mkdir(exist_ok=True)
    return version_dir / file_name


def sha256_of(source: Digestible) -> str:
    """Hex SHA256 of in-memory model bytes or of a file streamed in chunks."""
    digest = hashlib.sha256()
    if isinstance(source, (bytes, bytearray, memoryview)):
        digest.update(source)
        return digest.hexdigest()

    path = Path(source)
    assert path.is_file(), f"path is not a file: {path}"
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _normalize(expected_sha256: str) -> str:
    assert expected_sha256, "expected_sha256 cannot be empty"
    return expected_sha256.strip().lower()


def digest_matches(source: Digestible, expected_sha256: str) -> bool:
    """True when `source` hashes to `expected_sha256` (case-insensitive)."""
    return sha256_of(source) == _normalize(expected_sha256)


def require_digest(source: Digestible, expected_sha256: str, label: str) -> None:
    """Raise FetchError naming `label` when the digest does not match."""
    actual = sha256_of(source)
    if actual != _normalize(expected_sha256):
        raise FetchError(f"checksum mismatch for {label}: expected {expected_sha256}, got {actual}")
    log.debug(f"sha256 ok for\n    {label}")
