"""Content fingerprints for local model files."""

from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from provenance.errors import FileSystemError
from provenance.models import Fingerprint, FingerprintMode

_LOGGER = logging.getLogger(__name__)

LARGE_FILE_THRESHOLD = 100 * 1024 * 1024
SAMPLE_CHUNK_SIZE = 8192
READ_CHUNK_SIZE = 1024 * 1024

MODEL_EXTENSIONS = frozenset(
    {
        ".safetensors",
        ".ckpt",
        ".pth",
        ".pt",
        ".gguf",
        ".model",
        ".bin",
        ".h5",
        ".onnx",
        ".tflite",
        ".pb",
        ".trt",
    }
)

PathLike = Union[str, Path]


def is_model_file(filename: str) -> bool:
    """Return ``True`` when the extension marks a model file."""
    return Path(filename).suffix.lower() in MODEL_EXTENSIONS


class Fingerprinter:
    """Compute and cache SHA-256 fingerprints per artifact path.

    Files larger than ``sampled_threshold`` are fingerprinted from their
    first and last ``SAMPLE_CHUNK_SIZE`` bytes salted with the total size.
    Two large files that agree on those regions and on size share a
    fingerprint; set ``sampling=False`` to always hash the full stream.
    """

    def __init__(
        self,
        *,
        sampled_threshold: int = LARGE_FILE_THRESHOLD,
        sampling: bool = True,
    ) -> None:
        if sampled_threshold < 2 * SAMPLE_CHUNK_SIZE:
            raise ValueError(
                "sampled_threshold must cover both sample chunks."
            )
        self._threshold = sampled_threshold
        self._sampling = sampling
        self._cache: Dict[str, Fingerprint] = {}
        self._lock = threading.Lock()

    def fingerprint(self, path: PathLike) -> Fingerprint:
        key = str(path)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        result = self._compute(Path(path))
        with self._lock:
            self._cache[key] = result
        return result

    def verify(self, path: PathLike, expected: Optional[str]) -> bool:
        """Compare the artifact fingerprint with an expected hex digest."""
        if not expected:
            return False
        try:
            return self.fingerprint(path).matches(expected)
        except FileSystemError as exc:
            _LOGGER.warning("Unable to verify hash for %s: %s", path, exc)
            return False

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def _compute(self, path: Path) -> Fingerprint:
        try:
            size = path.stat().st_size
            if self._sampling and size > self._threshold:
                _LOGGER.info(
                    "Large file detected (%d MB), using sampled hash for %s",
                    size // (1024 * 1024),
                    path,
                )
                return Fingerprint(
                    value=self._sampled_digest(path, size),
                    mode=FingerprintMode.SAMPLED,
                )
            return Fingerprint(
                value=self._full_digest(path),
                mode=FingerprintMode.FULL,
            )
        except OSError as exc:
            raise FileSystemError(
                f"Unable to fingerprint {path}: {exc}"
            ) from exc

    @staticmethod
    def _full_digest(path: Path) -> str:
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(READ_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest().upper()

    @staticmethod
    def _sampled_digest(path: Path, size: int) -> str:
        digest = hashlib.sha256()
        with path.open("rb") as handle:
            digest.update(handle.read(SAMPLE_CHUNK_SIZE))
            handle.seek(size - SAMPLE_CHUNK_SIZE)
            digest.update(handle.read(SAMPLE_CHUNK_SIZE))
        digest.update(str(size).encode("ascii"))
        return digest.hexdigest().upper()
