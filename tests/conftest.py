"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Shared fixtures for the test suite.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest


@pytest.fixture(autouse=True)
def _default_runtime_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """
    _default_runtime_env: Keep tests independent of the developer shell.
    :param monkeypatch:
    :param tmp_path_factory:
    :returns:
    """

    for name in (
        "CIVITAI_API_KEY",
        "HF_TOKEN",
        "ENABLE_CIVITAI",
        "ENABLE_HUGGINGFACE",
        "MODELS_PATH",
        "NOTES_PATH",
        "RESOLVE_RELATIONSHIPS",
        "MAX_WORKERS_PER_LEVEL",
        "REQUIRE_FINGERPRINT",
        "SAMPLED_FINGERPRINTS",
        "REQUEST_TIMEOUT",
        "REGISTRY_MIN_INTERVAL",
        "CIVITAI_REQUIRE_API_KEY",
        "HF_REQUIRE_API_KEY",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    log_dir = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("LOG_FILE", str(Path(log_dir) / "provenance.log"))


@pytest.fixture
def civitai_model() -> Callable[..., Dict[str, Any]]:
    """Factory for CivitAI ``/models`` item payloads."""

    def _build(
        model_id: int = 123,
        name: str = "Cyber Realistic",
        *,
        model_type: str = "Checkpoint",
        files: Optional[List[Dict[str, Any]]] = None,
        base_model: str = "SD 1.5",
        tags: Optional[List[str]] = None,
        allow_no_credit: bool = True,
    ) -> Dict[str, Any]:
        return {
            "id": model_id,
            "name": name,
            "type": model_type,
            "creator": {"username": "cyberdelia"},
            "tags": tags if tags is not None else ["photorealistic"],
            "allowNoCredit": allow_no_credit,
            "stats": {
                "downloadCount": 1500,
                "favoriteCount": 40,
                "rating": 4.8,
            },
            "modelVersions": [
                {
                    "id": model_id * 10,
                    "modelId": model_id,
                    "name": "v5",
                    "baseModel": base_model,
                    "files": files
                    if files is not None
                    else [
                        {
                            "name": "cyberRealistic_v5.safetensors",
                            "hashes": {"SHA256": "ABC123"},
                        }
                    ],
                }
            ],
        }

    return _build


@pytest.fixture
def model_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a small model file below ``tmp_path`` and return its path."""

    def _write(relative: str = "cyberRealistic_v5.safetensors",
               content: bytes = b"weights") -> Path:
        target = tmp_path.joinpath(*relative.split("/"))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target

    return _write
