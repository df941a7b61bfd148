"""Structured header built from a resolution and persisted per artifact.

The header field names are a contract: downstream tooling re-reads the
``provider`` field to detect a manual override and force re-resolution
against the edited provider.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from provenance.errors import FileSystemError
from provenance.models import Artifact, Provider, ResolvedMetadata

_LOGGER = logging.getLogger(__name__)

MAX_TAGS = 20
HUGGINGFACE_URL = "https://huggingface.co"
CIVITAI_URL = "https://civitai.com/models"

HEADER_FIELDS: Tuple[str, ...] = (
    "provider",
    "downloads",
    "likes",
    "verified",
    "author",
    "model_type",
    "pipeline",
    "relationship_base_model",
    "model_id",
    "model_filename",
    "model_path",
    "source",
    "tags",
    "license",
    "last_synced",
)

_DIRECTORY_TYPES: Tuple[Tuple[str, str], ...] = (
    ("checkpoints", "Checkpoint"),
    ("loras", "LoRA"),
    ("embeddings", "Embedding"),
    ("vae", "VAE"),
    ("upscale_models", "Upscaler"),
    ("controlnet", "ControlNet"),
    ("clip", "CLIP"),
    ("unet", "UNet"),
    ("LLM", "Large Language Model"),
)

_EXTENSION_TYPES: Dict[str, str] = {
    ".safetensors": "Neural Network Model",
    ".ckpt": "Neural Network Model",
    ".pth": "PyTorch Model",
    ".pt": "PyTorch Model",
    ".gguf": "GGUF Model",
    ".onnx": "ONNX Model",
}


def infer_model_type(model_path: str) -> str:
    """Guess a display type from the folder layout, then the extension."""
    path = PurePosixPath(model_path.replace("\\", "/"))
    parts = path.parts
    for directory, label in _DIRECTORY_TYPES:
        if directory in parts:
            return label
    return _EXTENSION_TYPES.get(path.suffix.lower(), "AI Model")


def split_tags(tags: Tuple[str, ...]) -> Tuple[List[str], Optional[str]]:
    """Drop license and region tags, returning any ``license:`` value."""
    kept: List[str] = []
    license_value: Optional[str] = None
    for tag in tags:
        lowered = tag.lower()
        if lowered.startswith("license:"):
            license_value = tag[len("license:"):]
        elif "license" not in lowered and not lowered.startswith("region:"):
            kept.append(tag)
    return kept[:MAX_TAGS], license_value


def build_header(metadata: ResolvedMetadata) -> "OrderedDict[str, Any]":
    artifact = metadata.artifact
    values: Dict[str, Any] = {
        "provider": Provider(metadata.provider).value,
        "model_type": infer_model_type(artifact.model_path),
        "model_filename": artifact.filename,
        "model_path": artifact.model_path,
    }

    license_value: Optional[str] = None
    hf_record = metadata.huggingface_record
    civitai_record = metadata.civitai_record
    if hf_record is not None:
        tags, license_value = split_tags(hf_record.tags)
        values.update(
            downloads=hf_record.downloads or None,
            likes=hf_record.likes or None,
            verified=metadata.verified,
            author=hf_record.author,
            pipeline=[hf_record.pipeline_tag] if hf_record.pipeline_tag
            else None,
            model_id=hf_record.id,
            source=f"{HUGGINGFACE_URL}/{hf_record.id}",
            tags=tags or None,
            license=hf_record.license or license_value,
        )
    elif civitai_record is not None:
        tags, license_value = split_tags(civitai_record.tags)
        if license_value is None and civitai_record.allow_no_credit is not None:
            license_value = (
                "permissive" if civitai_record.allow_no_credit
                else "restricted"
            )
        values.update(
            downloads=civitai_record.download_count or None,
            likes=civitai_record.favorite_count or None,
            verified=metadata.verified,
            author=civitai_record.creator,
            model_id=civitai_record.id,
            source=f"{CIVITAI_URL}/{civitai_record.id}",
            tags=tags or None,
            license=license_value,
        )

    if metadata.found:
        base_model = metadata.relationships.base_model
        if base_model and base_model != "Unknown":
            values["relationship_base_model"] = base_model
        values["last_synced"] = metadata.resolved_at.isoformat()

    header: "OrderedDict[str, Any]" = OrderedDict()
    for name in HEADER_FIELDS:
        value = values.get(name)
        if value is not None:
            header[name] = value
    return header


def _provider_from_source(source: Any) -> Optional[Provider]:
    if not isinstance(source, str):
        return None
    lowered = source.strip().lower()
    if "huggingface.co" in lowered:
        return Provider.HUGGINGFACE
    if "civitai.com" in lowered:
        return Provider.CIVITAI
    return None


def read_provider_override(header: Mapping[str, Any]) -> Optional[Provider]:
    """Return the provider named by a (possibly hand-edited) header.

    ``unknown`` yields ``None``. When the field is absent the ``source``
    URL is used instead. Any other value raises :class:`ValueError`.
    """
    raw = header.get("provider")
    if raw is None:
        return _provider_from_source(header.get("source"))

    value = str(raw).strip().strip("'\"").lower()
    if value == Provider.UNKNOWN.value or not value:
        return None
    if value in (Provider.CIVITAI.value, Provider.HUGGINGFACE.value):
        return Provider(value)
    raise ValueError(f"Unsupported provider in header: {raw!r}")


def detect_provider_change(
    header: Mapping[str, Any],
    current: Union[Provider, str],
) -> Optional[Provider]:
    """Return the edited provider when it differs from ``current``."""
    override = read_provider_override(header)
    if override is None or override is Provider(current):
        return None
    return override


class JsonHeaderEmitter:
    """Persist one JSON header per artifact below ``output_dir``."""

    def __init__(self, output_dir: Union[str, Path]) -> None:
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def header_path(self, artifact: Artifact) -> Path:
        relative = PurePosixPath(artifact.model_path).with_suffix(".json")
        parts = relative.parts[1:] if relative.is_absolute() else relative.parts
        return self._output_dir.joinpath(*parts)

    def exists(self, artifact: Artifact) -> bool:
        return self.header_path(artifact).is_file()

    def read(self, artifact: Artifact) -> Optional[Dict[str, Any]]:
        target = self.header_path(artifact)
        if not target.is_file():
            return None
        try:
            with target.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            raise FileSystemError(f"Unreadable header {target}: {exc}") from exc

    def emit(self, artifact: Artifact, metadata: ResolvedMetadata) -> None:
        target = self.header_path(artifact)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8") as handle:
                json.dump(build_header(metadata), handle, indent=2)
                handle.write("\n")
        except OSError as exc:
            raise FileSystemError(f"Cannot write {target}: {exc}") from exc
        _LOGGER.info("Wrote header for %s to %s", artifact.filename, target)

    __call__ = emit
