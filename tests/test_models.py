"""Tests for the domain records."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from provenance.models import (Artifact, CivitaiFile, CivitaiRecord,
                               Fingerprint, FingerprintMode,
                               HuggingFaceRecord, Provider, ResolvedMetadata)


def test_artifact_from_path_with_root() -> None:
    artifact = Artifact.from_path(
        Path("/models/loras/style.safetensors"), root="/models"
    )

    assert artifact.filename == "style.safetensors"
    assert artifact.relative_path == "loras/style.safetensors"
    assert artifact.model_path == "loras/style.safetensors"


def test_provider_must_match_records() -> None:
    artifact = Artifact.from_path("/models/a.pt")
    record = CivitaiRecord(id=1, name="a")

    with pytest.raises(ValueError):
        ResolvedMetadata(artifact=artifact, provider=Provider.HUGGINGFACE,
                         civitai_record=record)
    with pytest.raises(ValueError):
        ResolvedMetadata(artifact=artifact, civitai_record=record)

    resolved = ResolvedMetadata(
        artifact=artifact, provider=Provider.CIVITAI, civitai_record=record
    )
    assert resolved.found is True
    assert resolved.record is record


def test_unknown_carries_no_record() -> None:
    artifact = Artifact.from_path("/models/a.pt")
    fingerprint = Fingerprint("AB", FingerprintMode.FULL)

    unknown = ResolvedMetadata.unknown(artifact, fingerprint)

    assert unknown.provider is Provider.UNKNOWN
    assert unknown.record is None
    assert unknown.fingerprint is fingerprint


def test_civitai_file_hash_keys() -> None:
    item = CivitaiFile.from_payload(
        {"name": "a.pt", "hashes": {"AutoV1": "0A1B", "CRC32": "ff"}}
    )

    assert item.matches_hash(Fingerprint("0a1b", FingerprintMode.FULL))
    assert not item.matches_hash(Fingerprint("FF", FingerprintMode.FULL))


def test_civitai_record_tolerates_sparse_payload() -> None:
    record = CivitaiRecord.from_payload(
        {"id": "12", "name": None, "stats": {}, "modelVersions": [None]}
    )

    assert record.id == 12
    assert record.name == ""
    assert record.versions == ()
    assert record.allow_no_credit is None


def test_huggingface_record_from_object() -> None:
    info = SimpleNamespace(
        id="org/model",
        author=None,
        downloads=None,
        likes=3,
        tags=["a", 1],
        card_data=None,
        siblings=[SimpleNamespace(rfilename="model.gguf")],
    )

    record = HuggingFaceRecord.from_model_info(info)

    assert record.author == "org"
    assert record.downloads == 0
    assert record.tags == ("a",)
    assert record.siblings == ("model.gguf",)
    assert record.license is None
