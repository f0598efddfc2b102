# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.ownership",
#   "purpose": "Persist and read the identity tag recorded on installed binaries",
#   "sections": [
#     {"id": "backends", "name": "Tag Storage Backends", "anchor": "BKD", "kind": "infra"},
#     {"id": "registry", "name": "OwnershipRegistry", "anchor": "REG", "kind": "api"},
#     {"id": "helpers", "name": "File Classification Helpers", "anchor": "HLP", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Ownership registry backed by an extended file attribute.

Every file the installer puts in place carries a ``user.FullName`` extended
attribute holding the identity string of the catalog entry it came from.
This is the only persistent install state: there is no manifest database.
A file without the attribute is unmanaged (or predates ownership tracking);
that is a valid state which callers branch on through
:class:`~BinDepot.BinaryFetch.errors.OwnershipTagMissing`.

Filesystems that reject ``user.*`` attributes (and platforms without
``os.setxattr``) store the identity in a sidecar file under
``<install_dir>/.binfetch-owners/`` instead.  The ``auto`` backend writes the
attribute when it can and falls back to the sidecar otherwise; reads consult
both.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import stat
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from .descriptors import RequestDescriptor, parse_identity
from .errors import FilesystemError, OwnershipTagMissing

LOGGER = logging.getLogger(__name__)

ATTRIBUTE_NAME = "user.FullName"
SIDECAR_DIR_NAME = ".binfetch-owners"

PathLike = Union[str, os.PathLike]

_MISSING_ATTRIBUTE_ERRNOS = frozenset(
    code for code in (getattr(errno, "ENODATA", None), getattr(errno, "ENOATTR", None)) if code
)
_UNSUPPORTED_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
        errno.EPERM,
    )
    if code
)


class OwnershipBackend(Protocol):
    """Storage for identity strings keyed by installed file."""

    def get(self, path: Path) -> Optional[str]:
        """Return the stored identity, or ``None`` when none is recorded."""

    def set(self, path: Path, identity: str) -> None:
        """Record ``identity`` for ``path``."""


# --- Tag storage backends --------------------------------------------------------


class XattrBackend:
    """Store identities in the ``user.FullName`` extended attribute."""

    def __init__(self, attribute: str = ATTRIBUTE_NAME) -> None:
        if not hasattr(os, "setxattr"):
            raise FilesystemError("extended attributes are not supported on this platform")
        self.attribute = attribute

    def get(self, path: Path) -> Optional[str]:
        try:
            value = os.getxattr(path, self.attribute)
        except OSError as exc:
            if exc.errno in _MISSING_ATTRIBUTE_ERRNOS:
                return None
            raise FilesystemError(
                f"failed to read xattr {self.attribute} for {path}: {exc}", path=path
            ) from exc
        return value.decode("utf-8", errors="replace")

    def set(self, path: Path, identity: str) -> None:
        try:
            os.setxattr(path, self.attribute, identity.encode("utf-8"))
        except OSError as exc:
            raise FilesystemError(f"failed to set xattr for {path}: {exc}", path=path) from exc


class SidecarBackend:
    """Store identities in ``<dir>/.binfetch-owners/<name>`` next to the binary.

    Each record carries the device, inode, size and mtime of the file it was written
    for.  A record whose fingerprint no longer matches the file at ``path``
    belongs to a binary that has since been deleted or replaced and is
    ignored.
    """

    def sidecar_path(self, path: Path) -> Path:
        return path.parent / SIDECAR_DIR_NAME / path.name

    @staticmethod
    def _fingerprint(path: Path) -> Dict[str, int]:
        info = os.stat(path)
        return {
            "st_dev": info.st_dev,
            "st_ino": info.st_ino,
            "st_size": info.st_size,
            "st_mtime_ns": info.st_mtime_ns,
        }

    def get(self, path: Path) -> Optional[str]:
        sidecar = self.sidecar_path(path)
        try:
            record = json.loads(sidecar.read_text(encoding="utf-8"))
            fingerprint = self._fingerprint(path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise FilesystemError(f"failed to read ownership record {sidecar}: {exc}", path=path) from exc
        except ValueError as exc:
            raise FilesystemError(f"malformed ownership record {sidecar}: {exc}", path=path) from exc
        if not isinstance(record, dict) or not isinstance(record.get("identity"), str):
            raise FilesystemError(f"malformed ownership record {sidecar}", path=path)
        if any(record.get(key) != value for key, value in fingerprint.items()):
            LOGGER.debug(
                "ignoring stale ownership record",
                extra={"stage": "ownership", "path": str(path), "record": str(sidecar)},
            )
            return None
        return record["identity"]

    def set(self, path: Path, identity: str) -> None:
        sidecar = self.sidecar_path(path)
        staging = sidecar.with_name(sidecar.name + ".tmp")
        try:
            record = {"identity": identity, **self._fingerprint(path)}
            sidecar.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(json.dumps(record), encoding="utf-8")
            os.replace(staging, sidecar)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise FilesystemError(f"failed to write ownership record {sidecar}: {exc}", path=path) from exc

    def discard(self, path: Path) -> None:
        self.sidecar_path(path).unlink(missing_ok=True)


class AutoBackend:
    """Prefer the extended attribute; fall back to a sidecar where unsupported."""

    def __init__(self) -> None:
        self.sidecar = SidecarBackend()
        self.xattr: Optional[XattrBackend] = XattrBackend() if hasattr(os, "setxattr") else None

    @staticmethod
    def _unsupported(exc: FilesystemError) -> bool:
        cause = exc.__cause__
        return isinstance(cause, OSError) and cause.errno in _UNSUPPORTED_ERRNOS

    def get(self, path: Path) -> Optional[str]:
        if self.xattr is not None:
            try:
                value = self.xattr.get(path)
            except FilesystemError as exc:
                if not self._unsupported(exc):
                    raise
            else:
                if value:
                    return value
        return self.sidecar.get(path)

    def set(self, path: Path, identity: str) -> None:
        if self.xattr is not None:
            try:
                self.xattr.set(path, identity)
            except FilesystemError as exc:
                if not self._unsupported(exc):
                    raise
                LOGGER.debug(
                    "extended attributes unsupported; using sidecar",
                    extra={"stage": "ownership", "path": str(path)},
                )
            else:
                self.sidecar.discard(path)
                return
        self.sidecar.set(path, identity)


def make_backend(kind: str) -> OwnershipBackend:
    if kind == "xattr":
        return XattrBackend()
    if kind == "sidecar":
        return SidecarBackend()
    if kind == "auto":
        return AutoBackend()
    raise ValueError(f"unknown ownership backend '{kind}'")


# --- Registry ------------------------------------------------------------------------


class OwnershipRegistry:
    """Read/write contract for the identity recorded on installed files.

    Examples:
        >>> registry = OwnershipRegistry(SidecarBackend())
        >>> registry.decode_as_request("jq#jq-static@1.7").pkg_id
        'jq-static'
    """

    def __init__(self, backend: Optional[OwnershipBackend] = None) -> None:
        self.backend = backend or AutoBackend()

    def read_identity(self, path: PathLike) -> str:
        """Return the identity tagged on ``path``.

        A path that does not exist is treated as a bare reference and yields
        its base name.

        Raises:
            OwnershipTagMissing: If the file exists but carries no identity.
            FilesystemError: If the tag cannot be read.
        """

        target = Path(path)
        if not target.exists():
            return target.name
        identity = self.backend.get(target)
        if not identity:
            raise OwnershipTagMissing(
                f"full name attribute not found for binary: {target}", path=target
            )
        return identity

    def write_identity(self, path: PathLike, identity: str) -> None:
        """Tag the fully installed file at ``path`` with ``identity``.

        Raises:
            FilesystemError: If ``path`` is missing, is a temp file, or the tag
                cannot be written.
        """

        target = Path(path)
        if target.name.endswith(".tmp"):
            raise FilesystemError(f"refusing to tag temporary file {target}", path=target)
        if not target.is_file():
            raise FilesystemError(f"cannot tag missing file {target}", path=target)
        self.backend.set(target, identity)
        LOGGER.debug(
            "recorded ownership",
            extra={"stage": "ownership", "path": str(target), "identity": identity},
        )

    @staticmethod
    def decode_as_request(identity: str) -> RequestDescriptor:
        return parse_identity(identity)

    @staticmethod
    def is_symlink(path: PathLike) -> bool:
        return is_symlink(path)

    def installed_descriptor(self, path: PathLike) -> Optional[RequestDescriptor]:
        """Descriptor of what is installed at ``path``; ``None`` when unowned."""

        if is_symlink(path):
            return None
        try:
            return self.decode_as_request(self.read_identity(path))
        except OwnershipTagMissing:
            return None


def registry_for(backend_kind: str = "auto") -> OwnershipRegistry:
    return OwnershipRegistry(make_backend(backend_kind))


# --- File classification helpers ---------------------------------------------------


def is_symlink(path: PathLike) -> bool:
    try:
        return stat.S_ISLNK(os.lstat(path).st_mode)
    except OSError:
        return False


def is_executable(path: PathLike) -> bool:
    """Regular file with at least one execute bit set."""

    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return stat.S_ISREG(mode) and bool(mode & 0o111)


__all__ = [
    "ATTRIBUTE_NAME",
    "AutoBackend",
    "OwnershipBackend",
    "OwnershipRegistry",
    "SidecarBackend",
    "XattrBackend",
    "is_executable",
    "is_symlink",
    "make_backend",
    "registry_for",
]
