"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Configuration values passed explicitly into clients and resolvers.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from provenance.utils.env import load_dotenv, read_flag, read_int

DEFAULT_MIN_INTERVAL_SECONDS = 1.0
"""Minimum delay between two outbound requests to one registry."""

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
"""Transport timeout applied to registry HTTP calls."""

DEFAULT_NOTES_PATH = "Workbench/Models"


class OperatingSystem(str, Enum):
    MACOS = "macos"
    WINDOWS = "windows"
    LINUX = "linux"
    UNKNOWN = "unknown"


def current_os(platform: Optional[str] = None) -> OperatingSystem:
    """Map ``sys.platform`` (or the given value) onto an OS variant."""
    value = (platform or sys.platform).lower()
    if value.startswith("darwin") or "mac" in value:
        return OperatingSystem.MACOS
    if value.startswith("win") or value.startswith("cygwin"):
        return OperatingSystem.WINDOWS
    if value.startswith("linux"):
        return OperatingSystem.LINUX
    return OperatingSystem.UNKNOWN


@dataclass(frozen=True)
class DeviceSettings:
    """Settings that vary per machine."""

    models_path: str = ""
    notes_path: str = DEFAULT_NOTES_PATH


@dataclass(frozen=True)
class RegistrySettings:
    """Per-registry switches.

    An enabled registry without ``api_key`` is skipped for the session
    unless ``require_api_key`` is turned off for anonymous access.
    """

    enabled: bool = True
    api_key: Optional[str] = None
    require_api_key: bool = True
    min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


def _complete_device_settings(
    provided: Optional[Mapping[OperatingSystem, DeviceSettings]],
) -> Mapping[OperatingSystem, DeviceSettings]:
    merged = {system: DeviceSettings() for system in OperatingSystem}
    for system, settings in (provided or {}).items():
        merged[OperatingSystem(system)] = settings
    return MappingProxyType(merged)


@dataclass(frozen=True)
class ResolverConfig:
    """Session configuration for the resolver stack.

    ``device_settings`` is always populated for every
    :class:`OperatingSystem`; entries that were not supplied fall back to
    :class:`DeviceSettings` defaults.
    """

    civitai: RegistrySettings = field(default_factory=RegistrySettings)
    huggingface: RegistrySettings = field(default_factory=RegistrySettings)
    device_settings: Mapping[OperatingSystem, DeviceSettings] = field(
        default_factory=dict
    )
    resolve_relationships: bool = False
    require_fingerprint: bool = False
    sampled_fingerprints: bool = True
    max_workers_per_level: Optional[int] = None
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "device_settings",
            _complete_device_settings(self.device_settings),
        )
        if (
            self.max_workers_per_level is not None
            and self.max_workers_per_level <= 0
        ):
            raise ValueError("max_workers_per_level must be positive.")

    def device(
        self, system: Optional[OperatingSystem] = None
    ) -> DeviceSettings:
        return self.device_settings[system or current_os()]

    def with_device(
        self, system: OperatingSystem, settings: DeviceSettings
    ) -> "ResolverConfig":
        updated = dict(self.device_settings)
        updated[system] = settings
        return replace(self, device_settings=updated)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        dotenv_path: str = ".env",
    ) -> "ResolverConfig":
        """Build a configuration from environment variables."""
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        interval = environ.get("REGISTRY_MIN_INTERVAL", "").strip()
        min_interval = (
            float(interval) if interval else DEFAULT_MIN_INTERVAL_SECONDS
        )

        civitai = RegistrySettings(
            enabled=read_flag("ENABLE_CIVITAI", True, environ),
            api_key=environ.get("CIVITAI_API_KEY") or None,
            require_api_key=read_flag(
                "CIVITAI_REQUIRE_API_KEY", True, environ
            ),
            min_interval_seconds=min_interval,
        )
        huggingface = RegistrySettings(
            enabled=read_flag("ENABLE_HUGGINGFACE", True, environ),
            api_key=environ.get("HF_TOKEN") or None,
            require_api_key=read_flag("HF_REQUIRE_API_KEY", True, environ),
            min_interval_seconds=min_interval,
        )

        device = DeviceSettings(
            models_path=environ.get("MODELS_PATH", "").strip(),
            notes_path=(
                environ.get("NOTES_PATH", "").strip() or DEFAULT_NOTES_PATH
            ),
        )

        return cls(
            civitai=civitai,
            huggingface=huggingface,
            device_settings={current_os(): device},
            resolve_relationships=read_flag(
                "RESOLVE_RELATIONSHIPS", False, environ
            ),
            require_fingerprint=read_flag(
                "REQUIRE_FINGERPRINT", False, environ
            ),
            sampled_fingerprints=read_flag(
                "SAMPLED_FINGERPRINTS", True, environ
            ),
            max_workers_per_level=read_int(
                "MAX_WORKERS_PER_LEVEL", None, environ
            ),
            request_timeout_seconds=read_int(
                "REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS, environ
            )
            or DEFAULT_REQUEST_TIMEOUT_SECONDS,
        )
