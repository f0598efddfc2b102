# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.settings",
#   "purpose": "Typed configuration models, environment overrides, and YAML loading",
#   "sections": [
#     {"id": "paths", "name": "Default Paths", "anchor": "PTH", "kind": "constants"},
#     {"id": "models", "name": "Configuration Models", "anchor": "MDL", "kind": "api"},
#     {"id": "settings", "name": "BinaryFetchSettings", "anchor": "SET", "kind": "api"},
#     {"id": "loading", "name": "Loading & Caching", "anchor": "LOD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Configuration for the binary installer.

Settings are expressed as pydantic models so every consumer receives
validated, typed values.  :class:`BinaryFetchSettings` is a
``pydantic-settings`` root that reads ``BINFETCH_*`` environment variables
(``__`` separates nested keys, e.g. ``BINFETCH_HTTP__TIMEOUT_SEC``).  An
optional YAML file provides the base layer; environment variables override
it.  The core only consumes ``install_dir``, ``retake_ownership`` and the
HTTP/store knobs; everything else feeds the CLI glue.
"""

from __future__ import annotations

import os
import platform
import threading
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .errors import ConfigError

APP_NAME = "binfetch"

# --- Default paths -------------------------------------------------------------

DEFAULT_INSTALL_DIR = Path.home() / ".local" / "bin"
CACHE_DIR = Path(platformdirs.user_cache_dir(APP_NAME))
DEFAULT_CATALOG_DIR = CACHE_DIR / "catalogs"
LOG_DIR = Path(platformdirs.user_log_dir(APP_NAME))
CONFIG_DIR = Path(platformdirs.user_config_dir(APP_NAME))

_RESERVED_NAMES = frozenset({"", ".", ".."})
_UNSAFE_NAME_CHARS = tuple(sep for sep in ("/", os.sep, os.altsep, "\x00") if sep)

_MACHINE_ARCHITECTURES = {
    "x86_64": "x86_64_Linux",
    "amd64": "x86_64_Linux",
    "aarch64": "aarch64_Linux",
    "arm64": "aarch64_Linux",
}


def default_architecture() -> str:
    """Return the catalog architecture label for the running machine."""

    machine = platform.machine().lower()
    return _MACHINE_ARCHITECTURES.get(machine, f"{machine}_Linux")


# --- Configuration models ------------------------------------------------------


class HttpConfiguration(BaseModel):
    """HTTP behaviour for catalog fetches and artifact downloads."""

    timeout_sec: float = Field(default=30.0, gt=0, le=600)
    connect_timeout_sec: float = Field(default=5.0, gt=0, le=60)
    max_retries: int = Field(default=2, ge=0, le=10)
    backoff_factor: float = Field(default=0.5, ge=0.0, le=10.0)
    chunk_size: int = Field(default=4096, ge=512, le=16 * 1024 * 1024)
    progress_log_percent_step: float = Field(default=0.1, gt=0.0, le=1.0)
    user_agent: str = Field(default=f"{APP_NAME}/0.4")

    model_config = ConfigDict(validate_assignment=True)


class LoggingConfiguration(BaseModel):
    """Logging-related configuration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=10, gt=0)
    retention_days: int = Field(default=30, ge=1)
    log_dir: Optional[Path] = Field(default=None)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level '{value}'")
        return normalized


class CatalogSource(BaseModel):
    """One remote catalog with its fallback mirror.

    ``url`` and ``fallback_url`` may contain an ``{arch}`` placeholder that is
    expanded with :attr:`BinaryFetchSettings.architecture`.
    """

    label: str = Field(min_length=1)
    url: str = Field(min_length=1)
    fallback_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def urls_for(self, arch: str) -> tuple[str, Optional[str]]:
        primary = self.url.format(arch=arch)
        fallback = self.fallback_url.format(arch=arch) if self.fallback_url else None
        return primary, fallback


def _default_sources() -> List[CatalogSource]:
    return [
        CatalogSource(
            label="Toolpacks",
            url="https://bin.ajam.dev/{arch}/METADATA.json",
            fallback_url=(
                "https://huggingface.co/datasets/Azathothas/Toolpacks-Snapshots"
                "/resolve/main/{arch}/METADATA.json?download=true"
            ),
        ),
        CatalogSource(
            label="Baseutils",
            url="https://bin.ajam.dev/{arch}/Baseutils/METADATA.json",
            fallback_url=(
                "https://huggingface.co/datasets/Azathothas/Toolpacks-Snapshots"
                "/resolve/main/Baseutils/METADATA.json?download=true"
            ),
        ),
    ]


# --- Settings root -------------------------------------------------------------


class BinaryFetchSettings(BaseSettings):
    """Root settings consumed by the installer, validator, and CLI."""

    install_dir: Path = Field(default=DEFAULT_INSTALL_DIR)
    catalog_dir: Path = Field(default=DEFAULT_CATALOG_DIR)
    architecture: str = Field(default_factory=default_architecture)
    retake_ownership: bool = Field(default=False)
    ownership_backend: Literal["auto", "xattr", "sidecar"] = Field(default="auto")
    store_root: str = Field(default="/nix/store")
    concurrent_installs: int = Field(default=4, ge=1, le=32)
    sources: List[CatalogSource] = Field(default_factory=_default_sources)
    http: HttpConfiguration = Field(default_factory=HttpConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    model_config = SettingsConfigDict(
        env_prefix="BINFETCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("install_dir", "catalog_dir", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("store_root")
    @classmethod
    def _strip_store_root(cls, value: str) -> str:
        stripped = value.rstrip("/")
        if not stripped.startswith("/"):
            raise ValueError("store_root must be an absolute path")
        return stripped

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values passed in from the YAML layer.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def destination_for(self, name: str) -> Path:
        """Return the install path for binary ``name``.

        Binaries live directly in ``install_dir``; names that would resolve
        anywhere else are rejected.

        Raises:
            ConfigError: If ``name`` is empty, a dot entry, or carries a path
                separator or NUL byte.
        """

        if name in _RESERVED_NAMES or any(sep in name for sep in _UNSAFE_NAME_CHARS):
            raise ConfigError(f"unsafe binary name {name!r}")
        destination = self.install_dir / name
        if destination.parent != self.install_dir:
            raise ConfigError(f"binary name {name!r} escapes the install directory")
        return destination


# --- Loading & caching ---------------------------------------------------------

_SETTINGS_LOCK = threading.Lock()
_SETTINGS_CACHE: Optional[BinaryFetchSettings] = None


def load_raw_yaml(config_path: Path) -> Dict[str, Any]:
    """Read ``config_path`` and return its root mapping."""

    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {config_path}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {config_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration file must contain a mapping at the root")
    return dict(data)


def build_settings(raw: Optional[Mapping[str, Any]] = None) -> BinaryFetchSettings:
    """Validate ``raw`` (plus environment overrides) into settings."""

    try:
        return BinaryFetchSettings(**dict(raw or {}))
    except PydanticValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {messages}") from exc


def load_settings(config_path: Optional[Path] = None) -> BinaryFetchSettings:
    """Load settings from an optional YAML file layered under the environment."""

    raw = load_raw_yaml(config_path) if config_path is not None else {}
    return build_settings(raw)


def default_config_path() -> Optional[Path]:
    """Per-user ``config.yaml`` under the platform config directory, if present."""

    candidate = CONFIG_DIR / "config.yaml"
    return candidate if candidate.is_file() else None


def get_settings() -> BinaryFetchSettings:
    """Return memoised default settings (environment + defaults only)."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = build_settings()
        return _SETTINGS_CACHE


def reset_settings_cache() -> None:
    """Forget memoised settings so the next :func:`get_settings` rebuilds them."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "APP_NAME",
    "CACHE_DIR",
    "CONFIG_DIR",
    "LOG_DIR",
    "BinaryFetchSettings",
    "CatalogSource",
    "HttpConfiguration",
    "LoggingConfiguration",
    "build_settings",
    "default_architecture",
    "default_config_path",
    "get_settings",
    "load_raw_yaml",
    "load_settings",
    "reset_settings_cache",
]
