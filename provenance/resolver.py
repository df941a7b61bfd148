"""Fallback-chain resolution of artifacts into canonical metadata."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import (Any, Callable, Dict, Hashable, List, Optional, Sequence,
                    Tuple, Union)

from provenance.clients.base_client import BaseClient
from provenance.clients.civitai_client import CivitaiClient
from provenance.clients.hf_client import HFClient
from provenance.config import RegistrySettings, ResolverConfig
from provenance.errors import (ConfigurationError, FileSystemError,
                               ProvenanceError)
from provenance.fingerprint import Fingerprinter
from provenance.models import (Artifact, CivitaiRecord, CivitaiVersion,
                               Fingerprint, HuggingFaceRecord, Provider,
                               RegistryRecord, Relationships,
                               ResolvedMetadata)
from provenance.naming import name_similarity
from provenance.net.rate_limiter import RateLimiter

_LOGGER = logging.getLogger(__name__)

VERSION_NAME_THRESHOLD = 0.8

# HuggingFace is consulted before CivitAI.
REGISTRY_PRIORITY: Tuple[Provider, ...] = (
    Provider.HUGGINGFACE,
    Provider.CIVITAI,
)


def require_api_key(name: str, settings: RegistrySettings) -> None:
    """Raise :class:`ConfigurationError` when a mandatory key is absent."""
    if settings.require_api_key and not settings.has_api_key:
        raise ConfigurationError(
            f"{name} integration is enabled but its API key is missing"
        )


def _check_settings(name: str, settings: RegistrySettings) -> bool:
    """Return ``True`` when the registry should be built for this session."""
    if not settings.enabled:
        _LOGGER.info("%s integration disabled; skipping", name)
        return False
    try:
        require_api_key(name, settings)
    except ConfigurationError as exc:
        _LOGGER.warning("%s; registry skipped for this session", exc)
        return False
    return True


class MetadataResolver:
    """Resolve artifacts against an ordered list of registry clients.

    Results are cached per ``artifact.local_path`` for the lifetime of the
    resolver. Concurrent callers asking for the same artifact share one
    underlying resolution (single-flight).
    """

    def __init__(
        self,
        registries: Sequence[BaseClient[Any]],
        *,
        fingerprinter: Optional[Fingerprinter] = None,
        resolve_relationships: bool = False,
        require_fingerprint: bool = False,
    ) -> None:
        self._registries: List[BaseClient[Any]] = sorted(
            registries, key=lambda client: _priority_of(client.provider)
        )
        self._fingerprinter = fingerprinter or Fingerprinter()
        self._resolve_relationships = resolve_relationships
        self._require_fingerprint = require_fingerprint

        self._lock = threading.Lock()
        self._results: Dict[str, ResolvedMetadata] = {}
        self._in_flight: Dict[Hashable, Future[ResolvedMetadata]] = {}

    @classmethod
    def from_config(
        cls,
        config: ResolverConfig,
        *,
        civitai_session: Optional[Any] = None,
        hf_api: Optional[Any] = None,
    ) -> "MetadataResolver":
        """Build clients for enabled registries and wire them together."""
        registries: List[BaseClient[Any]] = []
        if _check_settings("HuggingFace", config.huggingface):
            registries.append(
                HFClient(
                    api=hf_api,
                    token=config.huggingface.api_key,
                    rate_limiter=RateLimiter(
                        config.huggingface.min_interval_seconds
                    ),
                )
            )
        if _check_settings("CivitAI", config.civitai):
            registries.append(
                CivitaiClient(
                    api_key=config.civitai.api_key,
                    session=civitai_session,
                    rate_limiter=RateLimiter(
                        config.civitai.min_interval_seconds
                    ),
                    timeout=config.request_timeout_seconds,
                )
            )

        return cls(
            registries,
            fingerprinter=Fingerprinter(
                sampling=config.sampled_fingerprints
            ),
            resolve_relationships=config.resolve_relationships,
            require_fingerprint=config.require_fingerprint,
        )

    @property
    def registries(self) -> Sequence[BaseClient[Any]]:
        return tuple(self._registries)

    def registry(self, provider: Union[Provider, str]) -> Optional[
        BaseClient[Any]
    ]:
        wanted = Provider(provider).value
        for client in self._registries:
            if client.provider == wanted:
                return client
        return None

    # Public operations ----------------------------------------------------

    def resolve(
        self, artifact: Artifact, force_refresh: bool = False
    ) -> ResolvedMetadata:
        """Return the canonical metadata for ``artifact``."""
        return self._single_flight(
            artifact.local_path,
            artifact,
            force_refresh=force_refresh,
            compute=lambda: self._resolve_uncached(
                artifact, self._registries
            ),
            store=lambda result: True,
        )

    def resolve_with_provider(
        self,
        artifact: Artifact,
        provider: Union[Provider, str],
        force_refresh: bool = True,
    ) -> ResolvedMetadata:
        """Resolve using only ``provider``'s registry.

        Used when a persisted header names a different provider than the
        cached resolution. A miss yields ``unknown`` and leaves any cached
        result from another provider untouched.
        """
        target = Provider(provider)
        if target is Provider.UNKNOWN:
            raise ValueError("Cannot resolve against the 'unknown' provider")

        client = self.registry(target)
        if client is None:
            _LOGGER.warning(
                "%s is not enabled; cannot resolve %s with it",
                target.value,
                artifact.filename,
            )
            return ResolvedMetadata.unknown(artifact)

        if not force_refresh:
            cached = self.cached(artifact)
            if cached is not None and cached.provider is target:
                return cached

        return self._single_flight(
            (artifact.local_path, target.value),
            artifact,
            force_refresh=True,
            compute=lambda: self._resolve_uncached(artifact, [client]),
            store=lambda result: result.provider is target,
        )

    def cached(self, artifact: Artifact) -> Optional[ResolvedMetadata]:
        with self._lock:
            return self._results.get(artifact.local_path)

    def invalidate(self, local_path: Optional[str] = None) -> None:
        """Forget one cached result, or all of them."""
        with self._lock:
            if local_path is None:
                self._results.clear()
            else:
                self._results.pop(local_path, None)

    def clear_caches(self) -> None:
        """Drop resolved results, fingerprints and registry responses."""
        self.invalidate()
        self._fingerprinter.clear()
        for client in self._registries:
            client.clear_cache()

    def find_local_by_civitai_id(
        self, model_id: int
    ) -> Optional[ResolvedMetadata]:
        with self._lock:
            for metadata in self._results.values():
                record = metadata.civitai_record
                if record is not None and record.id == model_id:
                    return metadata
        return None

    # Single-flight --------------------------------------------------------

    def _single_flight(
        self,
        flight_key: Hashable,
        artifact: Artifact,
        *,
        force_refresh: bool,
        compute: Callable[[], ResolvedMetadata],
        store: Callable[[ResolvedMetadata], bool],
    ) -> ResolvedMetadata:
        with self._lock:
            if not force_refresh:
                cached = self._results.get(artifact.local_path)
                if cached is not None:
                    return cached

            pending = self._in_flight.get(flight_key)
            owner = pending is None
            if pending is None:
                pending = Future()
                self._in_flight[flight_key] = pending

        if not owner:
            _LOGGER.debug("Joining in-flight resolution for %s", flight_key)
            return pending.result()

        try:
            result = compute()
        except BaseException as exc:
            with self._lock:
                self._in_flight.pop(flight_key, None)
            pending.set_exception(exc)
            raise

        with self._lock:
            if store(result):
                self._results[artifact.local_path] = result
            self._in_flight.pop(flight_key, None)
        pending.set_result(result)
        return result

    # Resolution -----------------------------------------------------------

    def _fingerprint(self, artifact: Artifact) -> Optional[Fingerprint]:
        try:
            return self._fingerprinter.fingerprint(artifact.local_path)
        except FileSystemError as exc:
            if self._require_fingerprint:
                raise
            _LOGGER.warning(
                "Fingerprint unavailable for %s, falling back to name "
                "search: %s",
                artifact.filename,
                exc,
            )
            return None

    def _resolve_uncached(
        self,
        artifact: Artifact,
        registries: Sequence[BaseClient[Any]],
    ) -> ResolvedMetadata:
        fingerprint = self._fingerprint(artifact)

        for client in registries:
            try:
                match = self._search_registry(client, artifact, fingerprint)
            except ProvenanceError as exc:
                _LOGGER.warning(
                    "%s lookup failed for %s: %s",
                    client.provider,
                    artifact.filename,
                    exc,
                )
                continue
            except Exception:
                _LOGGER.exception(
                    "Unexpected %s failure for %s",
                    client.provider,
                    artifact.filename,
                )
                continue

            if match is not None:
                record, by_hash = match
                _LOGGER.info(
                    "Resolved %s via %s (%s)",
                    artifact.filename,
                    client.provider,
                    "hash" if by_hash else "name",
                )
                return self._build(
                    client, artifact, fingerprint, record, by_hash
                )

        _LOGGER.info("No registry match for %s", artifact.filename)
        return ResolvedMetadata.unknown(artifact, fingerprint)

    @staticmethod
    def _search_registry(
        client: BaseClient[Any],
        artifact: Artifact,
        fingerprint: Optional[Fingerprint],
    ) -> Optional[Tuple[RegistryRecord, bool]]:
        if fingerprint is not None:
            records = client.search_by_hash(fingerprint.value)
            if records:
                return records[0], True
        records = client.search_by_name(artifact.filename)
        if records:
            return records[0], False
        return None

    def _build(
        self,
        client: BaseClient[Any],
        artifact: Artifact,
        fingerprint: Optional[Fingerprint],
        record: RegistryRecord,
        by_hash: bool,
    ) -> ResolvedMetadata:
        if isinstance(record, CivitaiRecord):
            version, version_verified = match_version(
                record, artifact.filename, fingerprint
            )
            return ResolvedMetadata(
                artifact=artifact,
                provider=Provider.CIVITAI,
                fingerprint=fingerprint,
                civitai_record=record,
                civitai_version=version,
                relationships=self._civitai_relationships(
                    client, record, version
                ),
                verified=by_hash or version_verified,
            )

        if isinstance(record, HuggingFaceRecord):
            verified = by_hash or self._hf_contains_file(
                client, record, artifact.filename
            )
            return ResolvedMetadata(
                artifact=artifact,
                provider=Provider.HUGGINGFACE,
                fingerprint=fingerprint,
                huggingface_record=record,
                relationships=Relationships(
                    base_model=record.base_model or "Unknown"
                ),
                verified=verified,
            )

        raise TypeError(f"Unsupported registry record: {record!r}")

    @staticmethod
    def _hf_contains_file(
        client: BaseClient[Any],
        record: HuggingFaceRecord,
        filename: str,
    ) -> bool:
        names = list(record.siblings)
        if not names and isinstance(client, HFClient):
            try:
                names = [path for path, _ in client.list_model_files(
                    record.id
                )]
            except ProvenanceError as exc:
                _LOGGER.info(
                    "File listing unavailable for %s: %s", record.id, exc
                )
                return False
        return any(name.rsplit("/", 1)[-1] == filename for name in names)

    def _civitai_relationships(
        self,
        client: BaseClient[Any],
        record: CivitaiRecord,
        version: Optional[CivitaiVersion],
    ) -> Relationships:
        base_model = (version.base_model if version else None) or next(
            (v.base_model for v in record.versions if v.base_model),
            "Unknown",
        )
        if not self._resolve_relationships or not isinstance(
            client, CivitaiClient
        ):
            return Relationships(base_model=base_model)
        if base_model == "Unknown":
            return Relationships(base_model=base_model)

        compatible: Tuple[int, ...] = ()
        parent: Optional[int] = None
        if record.type == "Checkpoint":
            loras = client.find_related_models(base_model, "LORA")
            compatible = tuple(model.id for model in loras)
        elif record.type == "LORA":
            checkpoints = client.find_related_models(base_model, "Checkpoint")
            if checkpoints:
                parent = checkpoints[0].id
        return Relationships(
            base_model=base_model,
            parent_model_id=parent,
            compatible_models=compatible,
        )


def match_version(
    record: CivitaiRecord,
    filename: str,
    fingerprint: Optional[Fingerprint],
) -> Tuple[Optional[CivitaiVersion], bool]:
    """Pick the model version that best fits a local file.

    A file hash match wins, then a file name similarity above
    ``VERSION_NAME_THRESHOLD``. Otherwise the first (newest) version is
    returned unverified.
    """
    if fingerprint is not None:
        for version in record.versions:
            if any(item.matches_hash(fingerprint) for item in version.files):
                return version, True

    for version in record.versions:
        for item in version.files:
            if name_similarity(filename, item.name) > VERSION_NAME_THRESHOLD:
                return version, True

    if record.versions:
        return record.versions[0], False
    return None, False


def _priority_of(provider: str) -> int:
    for index, candidate in enumerate(REGISTRY_PRIORITY):
        if candidate.value == provider:
            return index
    return len(REGISTRY_PRIORITY)
