"""CLI wiring that resolves a models directory and emits NDJSON records."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import ResolverConfig
from .errors import FileSystemError
from .header import JsonHeaderEmitter, detect_provider_change
from .header import read_provider_override
from .logging_config import configure_logging
from .models import Artifact, Provider, ResolvedMetadata
from .resolver import MetadataResolver
from .tree import ArtifactState, TreeReport, TreeResolver, scan_models

logger = logging.getLogger(__name__)


class HeaderAwareResolver:
    """Route resolutions through a pinned or header-edited provider.

    With an explicit ``provider`` every artifact is resolved against that
    registry only. Otherwise an existing header whose ``provider`` field
    names a registry is honoured on refresh.
    """

    def __init__(
        self,
        resolver: MetadataResolver,
        emitter: JsonHeaderEmitter,
        provider: Optional[Provider] = None,
    ) -> None:
        self._resolver = resolver
        self._emitter = emitter
        self._provider = provider

    def resolve(
        self, artifact: Artifact, force_refresh: bool = False
    ) -> ResolvedMetadata:
        provider = self._provider
        if provider is None and force_refresh:
            provider = self._header_override(artifact)
        if provider is None:
            return self._resolver.resolve(artifact, force_refresh)
        return self._resolver.resolve_with_provider(
            artifact, provider, force_refresh=True
        )

    def _header_override(self, artifact: Artifact) -> Optional[Provider]:
        try:
            header = self._emitter.read(artifact)
        except FileSystemError as exc:
            logger.warning("Ignoring unreadable header: %s", exc)
            return None
        if header is None:
            return None
        try:
            cached = self._resolver.cached(artifact)
            if cached is not None:
                return detect_provider_change(header, cached.provider)
            return read_provider_override(header)
        except ValueError as exc:
            logger.warning(
                "Ignoring provider override for %s: %s",
                artifact.filename,
                exc,
            )
            return None


class CLIApp:
    """Command-line entry point for the provenance resolver."""

    def __init__(
        self,
        models_dir: Path,
        output_dir: Path,
        *,
        refresh: bool = False,
        provider: Optional[Provider] = None,
        config: Optional[ResolverConfig] = None,
        resolver: Optional[MetadataResolver] = None,
    ) -> None:
        self._models_dir = Path(models_dir)
        self._emitter = JsonHeaderEmitter(output_dir)
        self._refresh = refresh
        self._provider = provider
        self._config = config or ResolverConfig.from_env()
        self._resolver = resolver or MetadataResolver.from_config(
            self._config
        )

    def generate_results(self) -> List[Dict[str, Any]]:
        """Resolve the models tree and describe each artifact's outcome."""
        tree = scan_models(self._models_dir)
        walker = TreeResolver(
            HeaderAwareResolver(
                self._resolver, self._emitter, self._provider
            ),
            max_workers_per_level=self._config.max_workers_per_level,
        )
        report = walker.resolve_tree(
            tree,
            self._emitter.exists,
            self._emitter.emit,
            is_refresh=self._refresh,
        )
        return [self._describe(artifact, report) for artifact in tree.walk()]

    @staticmethod
    def _describe(artifact: Artifact, report: TreeReport) -> Dict[str, Any]:
        metadata = report.results.get(artifact.local_path)
        record = metadata.record if metadata is not None else None
        return {
            "model_path": artifact.model_path,
            "state": report.state_of(artifact).value,
            "provider": (
                Provider(metadata.provider).value
                if metadata is not None
                else None
            ),
            "model_id": record.id if record is not None else None,
            "verified": metadata.verified if metadata is not None else False,
        }

    def run(self) -> int:
        """Execute the CLI workflow and emit NDJSON to stdout."""
        try:
            results = self.generate_results()
        except FileSystemError as error:
            logger.error("%s", error)
            print(str(error), file=sys.stderr)
            return 1
        for record in results:
            print(json.dumps(record, separators=(",", ":")))
        skipped = sum(
            1
            for record in results
            if record["state"] == ArtifactState.MATERIALIZED.value
            and record["provider"] is None
        )
        logger.info(
            "Processed %d artifacts (%d already materialized)",
            len(results),
            skipped,
        )
        return 0


def build_arg_parser() -> argparse.ArgumentParser:
    argument_parser = argparse.ArgumentParser(
        prog="provenance-resolve",
        description=(
            "Resolve local model files against CivitAI and the "
            "HuggingFace Hub and write one JSON header per model."
        ),
    )
    argument_parser.add_argument(
        "models_dir",
        type=Path,
        nargs="?",
        help=(
            "Root directory containing model files. Defaults to "
            "MODELS_PATH for this machine."
        ),
    )
    argument_parser.add_argument(
        "--output",
        type=Path,
        help=(
            "Directory receiving the JSON headers. Defaults to "
            "NOTES_PATH for this machine."
        ),
    )
    argument_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Re-resolve models even when a header already exists.",
    )
    argument_parser.add_argument(
        "--provider",
        choices=[Provider.CIVITAI.value, Provider.HUGGINGFACE.value],
        help="Resolve against a single registry only.",
    )
    return argument_parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    argument_parser = build_arg_parser()
    parsed_args = argument_parser.parse_args(argv)

    config = ResolverConfig.from_env()
    device = config.device()
    models_dir = parsed_args.models_dir
    if models_dir is None:
        if not device.models_path:
            argument_parser.error(
                "models_dir is required when MODELS_PATH is not set"
            )
        models_dir = Path(device.models_path)
    output_dir = parsed_args.output or Path(device.notes_path)

    app = CLIApp(
        models_dir,
        output_dir,
        config=config,
        refresh=parsed_args.refresh,
        provider=(
            Provider(parsed_args.provider) if parsed_args.provider else None
        ),
    )
    return app.run()


if __name__ == "__main__":
    sys.exit(main())
