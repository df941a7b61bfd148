"""Domain model package exports."""

from .records import (Artifact, CivitaiFile, CivitaiRecord, CivitaiVersion,
                      Fingerprint, FingerprintMode, HuggingFaceRecord,
                      Provider, RegistryRecord, Relationships,
                      ResolvedMetadata)

__all__ = [
    "Artifact",
    "CivitaiFile",
    "CivitaiRecord",
    "CivitaiVersion",
    "Fingerprint",
    "FingerprintMode",
    "HuggingFaceRecord",
    "Provider",
    "RegistryRecord",
    "Relationships",
    "ResolvedMetadata",
]
