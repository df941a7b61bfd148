"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Tests for the persisted header contract.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

from provenance.header import (HEADER_FIELDS, MAX_TAGS, JsonHeaderEmitter,
                               build_header, detect_provider_change,
                               infer_model_type, read_provider_override)
from provenance.models import (Artifact, CivitaiRecord, HuggingFaceRecord,
                               Provider, Relationships, ResolvedMetadata)

SYNCED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _artifact(relative: str = "checkpoints/cyber.safetensors") -> Artifact:
    return Artifact.from_path(Path("/models") / relative, root="/models")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("checkpoints/sd15/model.safetensors", "Checkpoint"),
        ("loras/style.safetensors", "LoRA"),
        ("upscale_models/4x.pth", "Upscaler"),
        ("LLM/llama.gguf", "Large Language Model"),
        ("misc/model.ckpt", "Neural Network Model"),
        ("misc/model.onnx", "ONNX Model"),
        ("misc/model.h5", "AI Model"),
    ],
)
def test_infer_model_type(path: str, expected: str) -> None:
    assert infer_model_type(path) == expected


def test_huggingface_header_fields() -> None:
    """
    test_huggingface_header_fields: Function description.
    :param:
    :returns:
    """

    record = HuggingFaceRecord(
        id="org/model",
        author="org",
        downloads=120,
        likes=7,
        tags=("diffusers", "license:apache-2.0", "region:us", "text-to-image"),
        pipeline_tag="text-to-image",
        base_model="stabilityai/sdxl",
    )
    metadata = ResolvedMetadata(
        artifact=_artifact(),
        provider=Provider.HUGGINGFACE,
        huggingface_record=record,
        relationships=Relationships(base_model="stabilityai/sdxl"),
        verified=True,
        resolved_at=SYNCED,
    )

    header = build_header(metadata)

    assert list(header) == [
        name for name in HEADER_FIELDS if name in header
    ]
    assert header["provider"] == "huggingface"
    assert header["downloads"] == 120
    assert header["verified"] is True
    assert header["pipeline"] == ["text-to-image"]
    assert header["model_type"] == "Checkpoint"
    assert header["model_path"] == "checkpoints/cyber.safetensors"
    assert header["source"] == "https://huggingface.co/org/model"
    assert header["tags"] == ["diffusers", "text-to-image"]
    assert header["license"] == "apache-2.0"
    assert header["relationship_base_model"] == "stabilityai/sdxl"
    assert header["last_synced"] == "2024-05-01T12:00:00+00:00"


def test_civitai_header_license_fallback(
    civitai_model: Callable[..., Dict[str, Any]],
) -> None:
    restricted = CivitaiRecord.from_payload(
        civitai_model(allow_no_credit=False, tags=["anime"] * 30)
    )
    metadata = ResolvedMetadata(
        artifact=_artifact(),
        provider=Provider.CIVITAI,
        civitai_record=restricted,
        civitai_version=restricted.versions[0],
        relationships=Relationships(base_model="SD 1.5"),
    )

    header = build_header(metadata)

    assert header["license"] == "restricted"
    assert header["author"] == "cyberdelia"
    assert header["model_id"] == 123
    assert header["source"] == "https://civitai.com/models/123"
    assert header["likes"] == 40
    assert len(header["tags"]) == MAX_TAGS
    assert "pipeline" not in header


def test_unknown_header_has_only_local_fields() -> None:
    header = build_header(ResolvedMetadata.unknown(_artifact("x/y.pt")))

    assert dict(header) == {
        "provider": "unknown",
        "model_type": "PyTorch Model",
        "model_filename": "y.pt",
        "model_path": "x/y.pt",
    }


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ({"provider": "civitai"}, Provider.CIVITAI),
        ({"provider": " HuggingFace "}, Provider.HUGGINGFACE),
        ({"provider": "'civitai'"}, Provider.CIVITAI),
        ({"provider": "unknown"}, None),
        ({"source": "https://civitai.com/models/1"}, Provider.CIVITAI),
        ({}, None),
    ],
)
def test_read_provider_override(
    header: Dict[str, Any], expected: Any
) -> None:
    assert read_provider_override(header) == expected


def test_read_provider_override_rejects_other_values() -> None:
    with pytest.raises(ValueError):
        read_provider_override({"provider": "modelscope"})


def test_detect_provider_change() -> None:
    header = {"provider": "civitai"}

    assert detect_provider_change(header, "huggingface") is Provider.CIVITAI
    assert detect_provider_change(header, Provider.CIVITAI) is None
    assert detect_provider_change({"provider": "unknown"}, "civitai") is None


def test_json_emitter_writes_and_reads_header(tmp_path: Path) -> None:
    emitter = JsonHeaderEmitter(tmp_path / "notes")
    artifact = _artifact("loras/style.safetensors")
    metadata = ResolvedMetadata.unknown(artifact)

    assert emitter.exists(artifact) is False
    emitter.emit(artifact, metadata)

    target = tmp_path / "notes" / "loras" / "style.json"
    assert target.is_file()
    assert emitter.exists(artifact) is True
    assert json.loads(target.read_text(encoding="utf-8"))["model_type"] \
        == "LoRA"
    assert emitter.read(artifact) == dict(build_header(metadata))


def test_json_emitter_handles_absolute_paths(tmp_path: Path) -> None:
    emitter = JsonHeaderEmitter(tmp_path)
    artifact = Artifact.from_path("/abs/dir/model.ckpt")

    assert emitter.header_path(artifact) == tmp_path / "abs" / "dir" \
        / "model.json"
