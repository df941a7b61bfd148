"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Domain models for artifacts, registry records and resolution results.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class Provider(str, Enum):
    """Registry that supplied a resolution."""

    CIVITAI = "civitai"
    HUGGINGFACE = "huggingface"
    UNKNOWN = "unknown"


class FingerprintMode(str, Enum):
    FULL = "full"
    SAMPLED = "sampled"


@dataclass(frozen=True)
class Artifact:
    """A local model file whose provenance is unknown a priori."""

    local_path: str
    filename: str
    relative_path: Optional[str] = None

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        *,
        root: Optional[Union[str, Path]] = None,
    ) -> "Artifact":
        resolved = Path(path)
        relative: Optional[str] = None
        if root is not None:
            relative = Path(os.path.relpath(resolved, root)).as_posix()
        return cls(
            local_path=str(resolved),
            filename=resolved.name,
            relative_path=relative,
        )

    @property
    def model_path(self) -> str:
        """Path reported downstream; relative to the scan root if known."""
        return self.relative_path or Path(self.local_path).as_posix()


@dataclass(frozen=True)
class Fingerprint:
    value: str
    mode: FingerprintMode

    def matches(self, other: Optional[str]) -> bool:
        return bool(other) and self.value.lower() == str(other).lower()


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_tags(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(tag) for tag in value if isinstance(tag, str))


# CivitAI ------------------------------------------------------------------


@dataclass(frozen=True)
class CivitaiFile:
    name: str
    hashes: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CivitaiFile":
        hashes = payload.get("hashes") or {}
        return cls(
            name=str(payload.get("name") or ""),
            hashes={
                str(key): str(value)
                for key, value in hashes.items()
                if value
            },
        )

    def matches_hash(self, fingerprint: Fingerprint) -> bool:
        return any(
            fingerprint.matches(self.hashes.get(key))
            for key in ("SHA256", "AutoV2", "AutoV1")
        )


@dataclass(frozen=True)
class CivitaiVersion:
    id: int
    model_id: int
    name: str
    base_model: Optional[str]
    files: Tuple[CivitaiFile, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CivitaiVersion":
        return cls(
            id=_as_int(payload.get("id")),
            model_id=_as_int(payload.get("modelId")),
            name=str(payload.get("name") or ""),
            base_model=payload.get("baseModel") or None,
            files=tuple(
                CivitaiFile.from_payload(item)
                for item in payload.get("files") or []
                if isinstance(item, Mapping)
            ),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class CivitaiRecord:
    """Model payload returned by the CivitAI registry."""

    id: int
    name: str
    type: Optional[str] = None
    creator: Optional[str] = None
    tags: Tuple[str, ...] = ()
    download_count: int = 0
    favorite_count: int = 0
    rating: float = 0.0
    allow_no_credit: Optional[bool] = None
    versions: Tuple[CivitaiVersion, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CivitaiRecord":
        stats = payload.get("stats") or {}
        creator = payload.get("creator") or {}
        allow_no_credit = payload.get("allowNoCredit")
        return cls(
            id=_as_int(payload.get("id")),
            name=str(payload.get("name") or ""),
            type=payload.get("type"),
            creator=creator.get("username") if isinstance(
                creator, Mapping
            ) else None,
            tags=_as_tags(payload.get("tags")),
            download_count=_as_int(stats.get("downloadCount")),
            favorite_count=_as_int(stats.get("favoriteCount")),
            rating=float(stats.get("rating") or 0.0),
            allow_no_credit=(
                bool(allow_no_credit) if allow_no_credit is not None else None
            ),
            versions=tuple(
                CivitaiVersion.from_payload(item)
                for item in payload.get("modelVersions") or []
                if isinstance(item, Mapping)
            ),
            raw=dict(payload),
        )


# HuggingFace --------------------------------------------------------------


@dataclass(frozen=True)
class HuggingFaceRecord:
    """Model repository returned by the HuggingFace Hub."""

    id: str
    author: Optional[str] = None
    downloads: int = 0
    likes: int = 0
    tags: Tuple[str, ...] = ()
    pipeline_tag: Optional[str] = None
    library_name: Optional[str] = None
    license: Optional[str] = None
    base_model: Optional[str] = None
    siblings: Tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_model_info(cls, info: Any) -> "HuggingFaceRecord":
        """Build a record from a ``huggingface_hub.ModelInfo`` or a dict."""

        def _get(name: str, *aliases: str) -> Any:
            for key in (name, *aliases):
                if isinstance(info, Mapping):
                    value = info.get(key)
                else:
                    value = getattr(info, key, None)
                if value is not None:
                    return value
            return None

        repo_id = str(_get("id", "modelId") or "")
        card = _get("card_data", "cardData") or {}
        if not isinstance(card, Mapping):
            card = card.to_dict() if hasattr(card, "to_dict") else {}

        base_model = card.get("base_model")
        if isinstance(base_model, (list, tuple)):
            base_model = base_model[0] if base_model else None

        siblings = []
        for sibling in _get("siblings") or []:
            if isinstance(sibling, Mapping):
                name = sibling.get("rfilename")
            else:
                name = getattr(sibling, "rfilename", None)
            if isinstance(name, str):
                siblings.append(name)

        author = _get("author")
        if author is None and "/" in repo_id:
            author = repo_id.split("/", 1)[0]

        raw: Dict[str, Any]
        if isinstance(info, Mapping):
            raw = dict(info)
        else:
            raw = {"id": repo_id}

        return cls(
            id=repo_id,
            author=author,
            downloads=_as_int(_get("downloads")),
            likes=_as_int(_get("likes")),
            tags=_as_tags(_get("tags")),
            pipeline_tag=_get("pipeline_tag"),
            library_name=_get("library_name"),
            license=card.get("license"),
            base_model=base_model,
            siblings=tuple(siblings),
            raw=raw,
        )


RegistryRecord = Union[CivitaiRecord, HuggingFaceRecord]


# Resolution ---------------------------------------------------------------


@dataclass(frozen=True)
class Relationships:
    base_model: str = "Unknown"
    parent_model_id: Optional[int] = None
    compatible_models: Tuple[int, ...] = ()
    child_models: Tuple[int, ...] = ()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolvedMetadata:
    """Immutable snapshot of one artifact resolution.

    ``provider`` always agrees with the populated record field; an
    ``unknown`` provider carries no record at all.
    """

    artifact: Artifact
    provider: Provider = Provider.UNKNOWN
    fingerprint: Optional[Fingerprint] = None
    civitai_record: Optional[CivitaiRecord] = None
    civitai_version: Optional[CivitaiVersion] = None
    huggingface_record: Optional[HuggingFaceRecord] = None
    relationships: Relationships = field(default_factory=Relationships)
    verified: bool = False
    resolved_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        has_civitai = self.civitai_record is not None
        has_hf = self.huggingface_record is not None
        expected = {
            Provider.CIVITAI: (True, False),
            Provider.HUGGINGFACE: (False, True),
            Provider.UNKNOWN: (False, False),
        }[Provider(self.provider)]
        if (has_civitai, has_hf) != expected:
            raise ValueError(
                f"Provider '{Provider(self.provider).value}' is inconsistent "
                "with the populated registry records"
            )
        if self.civitai_version is not None and not has_civitai:
            raise ValueError("A CivitAI version requires a CivitAI record")

    @property
    def found(self) -> bool:
        return self.provider is not Provider.UNKNOWN

    @property
    def record(self) -> Optional[RegistryRecord]:
        return self.civitai_record or self.huggingface_record

    @classmethod
    def unknown(
        cls,
        artifact: Artifact,
        fingerprint: Optional[Fingerprint] = None,
    ) -> "ResolvedMetadata":
        return cls(artifact=artifact, fingerprint=fingerprint)
