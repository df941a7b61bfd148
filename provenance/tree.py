"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Level-by-level resolution of a directory tree of model files.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (Callable, Dict, Iterable, Iterator, List, Optional,
                    Protocol, Set, Union)

from provenance.errors import FileSystemError
from provenance.fingerprint import is_model_file
from provenance.models import Artifact, ResolvedMetadata

_LOGGER = logging.getLogger(__name__)

MaterializedPredicate = Callable[[Artifact], bool]
EmitCallback = Callable[[Artifact, ResolvedMetadata], None]


class SupportsResolve(Protocol):
    def resolve(
        self, artifact: Artifact, force_refresh: bool = False
    ) -> ResolvedMetadata: ...


class ArtifactState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED_FOUND = "resolved_found"
    RESOLVED_NOT_FOUND = "resolved_not_found"
    MATERIALIZED = "materialized"


_TRANSITIONS: Dict[ArtifactState, Set[ArtifactState]] = {
    ArtifactState.UNRESOLVED: {
        ArtifactState.RESOLVING,
        ArtifactState.MATERIALIZED,
    },
    ArtifactState.RESOLVING: {
        ArtifactState.RESOLVED_FOUND,
        ArtifactState.RESOLVED_NOT_FOUND,
    },
    ArtifactState.RESOLVED_FOUND: {ArtifactState.MATERIALIZED},
    ArtifactState.RESOLVED_NOT_FOUND: set(),
    ArtifactState.MATERIALIZED: set(),
}


@dataclass
class ModelTree:
    """One directory level: its model files and named subdirectories."""

    name: str = ""
    files: List[Artifact] = field(default_factory=list)
    children: Dict[str, "ModelTree"] = field(default_factory=dict)

    def child(self, name: str) -> "ModelTree":
        return self.children.setdefault(name, ModelTree(name=name))

    def walk(self) -> Iterator[Artifact]:
        """Yield every artifact, level by level in sorted child order."""
        yield from self.files
        for name in sorted(self.children):
            yield from self.children[name].walk()

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())


def build_tree(
    relative_paths: Iterable[str],
    root: Union[str, Path],
) -> ModelTree:
    """Arrange ``relative_paths`` (POSIX separators) under ``root``."""
    base = Path(root)
    tree = ModelTree(name=base.name)
    seen: Set[str] = set()
    for relative in relative_paths:
        parts = [part for part in relative.split("/") if part]
        key = "/".join(parts)
        if not parts or key in seen:
            continue
        seen.add(key)
        node = tree
        for segment in parts[:-1]:
            node = node.child(segment)
        node.files.append(
            Artifact.from_path(base.joinpath(*parts), root=base)
        )
    return tree


def scan_models(root: Union[str, Path]) -> ModelTree:
    """Collect model files below ``root`` into a :class:`ModelTree`.

    Hidden entries are skipped and only recognised model extensions are
    kept. Unreadable subdirectories are logged and left out.
    """
    base = Path(root)
    if not base.is_dir():
        raise FileSystemError(f"Models directory not found: {base}")

    relative_paths: List[str] = []

    def _on_error(error: OSError) -> None:
        _LOGGER.warning("Skipping unreadable directory: %s", error)

    for current, dirs, files in os.walk(base, onerror=_on_error):
        dirs[:] = sorted(name for name in dirs if not name.startswith("."))
        for filename in sorted(files):
            if filename.startswith(".") or not is_model_file(filename):
                continue
            full = Path(current) / filename
            relative_paths.append(full.relative_to(base).as_posix())

    _LOGGER.info("Found %d model files under %s", len(relative_paths), base)
    return build_tree(relative_paths, base)


@dataclass
class TreeReport:
    """Final state and metadata for each artifact touched by a walk."""

    states: Dict[str, ArtifactState] = field(default_factory=dict)
    results: Dict[str, ResolvedMetadata] = field(default_factory=dict)
    emitted: List[str] = field(default_factory=list)

    def state_of(self, artifact: Artifact) -> ArtifactState:
        return self.states.get(artifact.local_path, ArtifactState.UNRESOLVED)

    def count(self, state: ArtifactState) -> int:
        return sum(1 for value in self.states.values() if value is state)


class TreeResolver:
    """Walk a :class:`ModelTree`, resolving each level concurrently."""

    def __init__(
        self,
        resolver: SupportsResolve,
        *,
        max_workers_per_level: Optional[int] = None,
    ) -> None:
        if max_workers_per_level is not None and max_workers_per_level <= 0:
            raise ValueError("max_workers_per_level must be positive.")
        self._resolver = resolver
        self._max_workers = max_workers_per_level
        self._lock = threading.Lock()
        self._emitted: Set[str] = set()

    def resolve_tree(
        self,
        collection: ModelTree,
        already_materialized: MaterializedPredicate,
        emit: EmitCallback,
        is_refresh: bool = False,
    ) -> TreeReport:
        report = TreeReport()
        self._resolve_level(
            collection, already_materialized, emit, is_refresh, report
        )
        _LOGGER.info(
            "Tree walk complete: %d found, %d not found, %d materialized",
            report.count(ArtifactState.RESOLVED_FOUND),
            report.count(ArtifactState.RESOLVED_NOT_FOUND),
            report.count(ArtifactState.MATERIALIZED),
        )
        return report

    def _resolve_level(
        self,
        node: ModelTree,
        already_materialized: MaterializedPredicate,
        emit: EmitCallback,
        is_refresh: bool,
        report: TreeReport,
    ) -> None:
        pending: List[Artifact] = []
        for artifact in node.files:
            if artifact.local_path in report.states:
                _LOGGER.warning(
                    "Skipping duplicate entry for %s", artifact.local_path
                )
                continue
            self._transition(report, artifact, ArtifactState.UNRESOLVED)
            if not is_refresh and _safe_check(already_materialized, artifact):
                _LOGGER.debug("Skipping materialized %s", artifact.filename)
                self._transition(report, artifact, ArtifactState.MATERIALIZED)
                continue
            pending.append(artifact)

        if pending:
            workers = len(pending)
            if self._max_workers is not None:
                workers = min(workers, self._max_workers)
            _LOGGER.debug(
                "Resolving %d artifacts in %r with %d workers",
                len(pending),
                node.name,
                workers,
            )
            with ThreadPoolExecutor(max_workers=workers) as pool:
                # Drain the iterator so the level finishes before descending.
                list(
                    pool.map(
                        lambda artifact: self._process(
                            artifact,
                            already_materialized,
                            emit,
                            is_refresh,
                            report,
                        ),
                        pending,
                    )
                )

        for name in sorted(node.children):
            self._resolve_level(
                node.children[name],
                already_materialized,
                emit,
                is_refresh,
                report,
            )

    def _process(
        self,
        artifact: Artifact,
        already_materialized: MaterializedPredicate,
        emit: EmitCallback,
        is_refresh: bool,
        report: TreeReport,
    ) -> None:
        self._transition(report, artifact, ArtifactState.RESOLVING)
        try:
            metadata = self._resolver.resolve(
                artifact, force_refresh=is_refresh
            )
        except Exception:
            _LOGGER.exception("Failed to resolve %s", artifact.filename)
            self._transition(
                report, artifact, ArtifactState.RESOLVED_NOT_FOUND
            )
            return

        with self._lock:
            report.results[artifact.local_path] = metadata
        if not metadata.found:
            self._transition(
                report, artifact, ArtifactState.RESOLVED_NOT_FOUND
            )
            return
        self._transition(report, artifact, ArtifactState.RESOLVED_FOUND)

        # Another writer may have produced the output while we resolved.
        if not is_refresh and _safe_check(already_materialized, artifact):
            self._transition(report, artifact, ArtifactState.MATERIALIZED)
            return

        with self._lock:
            if artifact.local_path in self._emitted:
                return
            self._emitted.add(artifact.local_path)

        try:
            emit(artifact, metadata)
        except Exception:
            _LOGGER.exception("Emit failed for %s", artifact.filename)
            return

        with self._lock:
            report.emitted.append(artifact.local_path)
        self._transition(report, artifact, ArtifactState.MATERIALIZED)

    def _transition(
        self,
        report: TreeReport,
        artifact: Artifact,
        target: ArtifactState,
    ) -> None:
        with self._lock:
            current = report.states.get(artifact.local_path)
            if current is not None and target not in _TRANSITIONS[current]:
                raise RuntimeError(
                    f"Illegal state change for {artifact.filename}: "
                    f"{current.value} -> {target.value}"
                )
            report.states[artifact.local_path] = target


def _safe_check(predicate: MaterializedPredicate, artifact: Artifact) -> bool:
    try:
        return bool(predicate(artifact))
    except Exception:
        _LOGGER.exception(
            "Materialized check failed for %s; treating as missing",
            artifact.filename,
        )
        return False
