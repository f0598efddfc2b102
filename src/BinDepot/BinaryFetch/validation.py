"""Validation workflow: which installed binaries are still backed by a catalog.

A binary counts as valid when the identity recorded on it, or that identity
with its version dropped, is still listed remotely.  With
``retake_ownership`` the file name itself stands in for the identity.  A
requested name with no file behind it is a bare reference and is checked by
name.  Symlinks are never considered, and a failure on one target is logged
and skipped so the remaining targets are still checked.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import httpx

from .catalog import fetch_catalogs, list_binaries
from .errors import BinaryFetchError, ConfigError, OwnershipTagMissing
from .ownership import OwnershipRegistry, is_symlink, registry_for
from .settings import BinaryFetchSettings

LOGGER = logging.getLogger(__name__)


def remove_duplicates(names: Iterable[str]) -> List[str]:
    """Drop repeated names, keeping first occurrences in order."""

    return list(dict.fromkeys(names))


def list_files_in_dir(directory: Path) -> List[Path]:
    """Return the non-directory entries of ``directory`` sorted by name.

    A missing directory yields an empty list.
    """

    if not directory.is_dir():
        return []
    return sorted(
        (entry for entry in directory.iterdir() if is_symlink(entry) or not entry.is_dir()),
        key=lambda entry: entry.name,
    )


def list_installed(path: Path, registry: Optional[OwnershipRegistry] = None) -> str:
    """Identity recorded on ``path``; ``""`` for symlinks and unmanaged files."""

    registry = registry or registry_for()
    try:
        descriptor = registry.installed_descriptor(path)
    except BinaryFetchError as exc:
        LOGGER.debug(
            "unreadable ownership tag",
            extra={"stage": "validate", "path": str(path), "error": str(exc)},
        )
        return ""
    return descriptor.identity() if descriptor is not None else ""


def _target_paths(settings: BinaryFetchSettings, requested: Sequence[str]) -> List[Path]:
    if not requested:
        return list_files_in_dir(settings.install_dir)
    paths: List[Path] = []
    for name in remove_duplicates(requested):
        try:
            paths.append(settings.destination_for(name))
        except ConfigError as exc:
            LOGGER.warning(
                "skipping invalid binary name",
                extra={"stage": "validate", "name": name, "error": str(exc)},
            )
    return paths


def _identity_for(
    path: Path, settings: BinaryFetchSettings, registry: OwnershipRegistry
) -> str:
    if settings.retake_ownership:
        return path.name
    return registry.read_identity(path)


def validate_programs(
    settings: BinaryFetchSettings,
    requested_names: Sequence[str] = (),
    *,
    remote_names: Optional[Sequence[str]] = None,
    registry: Optional[OwnershipRegistry] = None,
    client: Optional[httpx.Client] = None,
) -> List[str]:
    """Return the identities of installed binaries still published remotely.

    Args:
        settings: Supplies the install directory and ``retake_ownership``.
        requested_names: Binary names to check; every file in the install
            directory when empty.
        remote_names: Installable names; fetched from the configured sources
            when omitted.
        registry: Ownership registry used to read identities.
        client: HTTPX client for the remote fetch.

    Returns:
        Valid identities in first-occurrence order of the targets.

    Raises:
        NetworkError: If ``remote_names`` must be fetched and cannot be.
    """

    registry = registry or registry_for(settings.ownership_backend)
    if remote_names is None:
        remote_names = list_binaries(fetch_catalogs(settings, client=client))
    remote = set(remote_names)

    valid: List[str] = []
    for path in _target_paths(settings, requested_names):
        if is_symlink(path):
            continue
        try:
            identity = _identity_for(path, settings, registry)
            descriptor = registry.decode_as_request(identity)
        except OwnershipTagMissing:
            LOGGER.debug("unmanaged file", extra={"stage": "validate", "path": str(path)})
            continue
        except BinaryFetchError as exc:
            LOGGER.warning(
                "skipping file with unreadable ownership",
                extra={"stage": "validate", "path": str(path), "error": str(exc)},
            )
            continue
        if identity in remote or descriptor.identity_key() in remote:
            valid.append(identity)
        else:
            LOGGER.info(
                "installed binary is not listed remotely",
                extra={"stage": "validate", "path": str(path), "identity": identity},
            )
    return valid


__all__ = [
    "list_files_in_dir",
    "list_installed",
    "remove_duplicates",
    "validate_programs",
]
