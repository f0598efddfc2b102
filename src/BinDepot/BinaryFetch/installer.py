# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.installer",
#   "purpose": "Resolve requests, run the verified pipeline, tag ownership, and answer info lookups",
#   "sections": [
#     {"id": "result", "name": "InstallResult", "anchor": "RES", "kind": "api"},
#     {"id": "install", "name": "Single + Batch Install", "anchor": "INS", "kind": "api"},
#     {"id": "reinstall", "name": "Reinstall", "anchor": "RIN", "kind": "api"},
#     {"id": "info", "name": "Info Lookup", "anchor": "INF", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Install orchestration.

Each install resolves one :class:`RequestDescriptor` against the merged
catalogs, hands the chosen entry to :func:`~BinDepot.BinaryFetch.pipeline.install_artifact`,
and only then records the identity on the installed file.  Batches run on a
bounded thread pool; distinct destinations never share mutable state, and
requests that would land on the same path are collapsed to the first one.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import httpx

from .cancellation import CancellationToken
from .catalog import Catalog, CatalogEntry
from .descriptors import RequestDescriptor, format_identity
from .errors import BinaryFetchError, ConfigError, FilesystemError, NotFoundError
from .matching import resolve
from .ownership import OwnershipRegistry, is_symlink, registry_for
from .pipeline import install_artifact
from .progress import ProgressObserver
from .settings import BinaryFetchSettings
from .validation import list_files_in_dir

LOGGER = logging.getLogger(__name__)

ProgressFactory = Callable[[RequestDescriptor], ProgressObserver]


# --- Results ---------------------------------------------------------------------


@dataclass(slots=True)
class InstallResult:
    """Outcome of one install request."""

    request: RequestDescriptor
    entry: Optional[CatalogEntry] = None
    path: Optional[Path] = None
    identity: str = ""
    error: Optional[BinaryFetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.path is not None


# --- Install ---------------------------------------------------------------------


def install_binary(
    request: RequestDescriptor,
    catalogs: Sequence[Catalog],
    settings: BinaryFetchSettings,
    *,
    registry: Optional[OwnershipRegistry] = None,
    cancellation_token: Optional[CancellationToken] = None,
    progress: Optional[ProgressObserver] = None,
    client: Optional[httpx.Client] = None,
) -> InstallResult:
    """Resolve and install one binary, then tag it with its identity.

    Raises:
        NotFoundError: If nothing in ``catalogs`` matches ``request`` or the
            chosen entry has no download URL.
        BinaryFetchError: Any pipeline or tagging failure.
    """

    registry = registry or registry_for(settings.ownership_backend)
    entry = resolve(request, catalogs)
    if not entry.download_url:
        raise NotFoundError(
            f"catalog entry for '{request}' has no download url", requested=str(request)
        )

    try:
        destination = settings.destination_for(entry.name)
    except ConfigError as exc:
        raise NotFoundError(
            f"catalog entry for '{request}' has an unusable name: {exc}", requested=str(request)
        ) from exc
    LOGGER.info(
        "installing binary",
        extra={
            "stage": "install",
            "request": str(request),
            "pkg_id": entry.pkg_id,
            "version": entry.version,
            "path": str(destination),
        },
    )
    path = install_artifact(
        entry.download_url,
        entry.checksum,
        destination,
        cancellation_token=cancellation_token,
        progress=progress,
        http_config=settings.http,
        store_root=settings.store_root,
        client=client,
    )

    identity = format_identity(entry.name, entry.pkg_id, entry.version)
    try:
        registry.write_identity(path, identity)
    except FilesystemError:
        LOGGER.error(
            "installed file could not be tagged; it will be treated as unmanaged",
            extra={"stage": "ownership", "path": str(path), "identity": identity},
        )
        raise
    return InstallResult(request=request, entry=entry, path=path, identity=identity)


def _dedupe_by_destination(requests: Iterable[RequestDescriptor]) -> List[RequestDescriptor]:
    # Every binary lands at install_dir/<name>, so the name is the destination.
    seen: Dict[str, RequestDescriptor] = {}
    for request in requests:
        destination = request.name
        if destination in seen:
            LOGGER.warning(
                "skipping duplicate request for the same destination",
                extra={
                    "stage": "install",
                    "request": str(request),
                    "kept": str(seen[destination]),
                },
            )
            continue
        seen[destination] = request
    return list(seen.values())


def install_many(
    requests: Iterable[RequestDescriptor],
    catalogs: Sequence[Catalog],
    settings: BinaryFetchSettings,
    *,
    registry: Optional[OwnershipRegistry] = None,
    cancellation_token: Optional[CancellationToken] = None,
    progress_factory: Optional[ProgressFactory] = None,
    client: Optional[httpx.Client] = None,
) -> List[InstallResult]:
    """Install several binaries concurrently.

    Results come back in request order (after de-duplication).  A failure is
    captured on its :class:`InstallResult` and does not stop the others.
    """

    unique = _dedupe_by_destination(requests)
    if not unique:
        return []
    registry = registry or registry_for(settings.ownership_backend)
    token = cancellation_token or CancellationToken()

    def _run(request: RequestDescriptor) -> InstallResult:
        progress = progress_factory(request) if progress_factory is not None else None
        try:
            return install_binary(
                request,
                catalogs,
                settings,
                registry=registry,
                cancellation_token=token,
                progress=progress,
                client=client,
            )
        except BinaryFetchError as exc:
            LOGGER.error(
                "install failed",
                extra={"stage": "install", "request": str(request), "error": str(exc)},
            )
            return InstallResult(request=request, error=exc)

    workers = min(settings.concurrent_installs, len(unique))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="binfetch") as pool:
        return list(pool.map(_run, unique))


# --- Reinstall -------------------------------------------------------------------


def reinstall_requests(
    names: Sequence[str],
    settings: BinaryFetchSettings,
    *,
    registry: Optional[OwnershipRegistry] = None,
) -> List[RequestDescriptor]:
    """Requests that refresh the named installed files (all files when empty)."""

    registry = registry or registry_for(settings.ownership_backend)
    if names:
        paths = [settings.destination_for(name) for name in names]
    else:
        paths = list_files_in_dir(settings.install_dir)

    requests: List[RequestDescriptor] = []
    for path in paths:
        if not path.exists() or is_symlink(path):
            LOGGER.info(
                "skipping missing or linked file",
                extra={"stage": "reinstall", "path": str(path)},
            )
            continue
        if settings.retake_ownership:
            requests.append(RequestDescriptor(name=path.name))
            continue
        try:
            installed = registry.installed_descriptor(path)
        except BinaryFetchError as exc:
            LOGGER.warning(
                "cannot read ownership; skipping",
                extra={"stage": "reinstall", "path": str(path), "error": str(exc)},
            )
            continue
        if installed is None:
            LOGGER.info(
                "skipping unmanaged file",
                extra={"stage": "reinstall", "path": str(path)},
            )
            continue
        requests.append(installed.with_overrides(version=""))
    return requests


def reinstall(
    names: Sequence[str],
    catalogs: Sequence[Catalog],
    settings: BinaryFetchSettings,
    *,
    registry: Optional[OwnershipRegistry] = None,
    cancellation_token: Optional[CancellationToken] = None,
    progress_factory: Optional[ProgressFactory] = None,
    client: Optional[httpx.Client] = None,
) -> List[InstallResult]:
    registry = registry or registry_for(settings.ownership_backend)
    requests = reinstall_requests(names, settings, registry=registry)
    return install_many(
        requests,
        catalogs,
        settings,
        registry=registry,
        cancellation_token=cancellation_token,
        progress_factory=progress_factory,
        client=client,
    )


# --- Info ------------------------------------------------------------------------


def _installed_request(
    settings: BinaryFetchSettings, registry: OwnershipRegistry, name: str
) -> Optional[RequestDescriptor]:
    if settings.retake_ownership:
        return None
    try:
        return registry.installed_descriptor(settings.destination_for(name))
    except BinaryFetchError as exc:
        LOGGER.debug(
            "ownership unreadable during info lookup",
            extra={"stage": "info", "name": name, "error": str(exc)},
        )
        return None


def get_info(
    settings: BinaryFetchSettings,
    request: RequestDescriptor,
    catalogs: Sequence[Catalog],
    registry: Optional[OwnershipRegistry] = None,
) -> CatalogEntry:
    """Return the catalog entry describing ``request``.

    When ``request`` names no package id and the file installed under
    ``request.name`` carries an identity with one, the installed identity is
    used for resolution, so the answer describes what is actually installed.

    Raises:
        NotFoundError: Naming the originally requested binary.
    """

    registry = registry or registry_for(settings.ownership_backend)
    effective = request
    if not request.pkg_id:
        installed = _installed_request(settings, registry, request.name)
        if installed is not None and installed.pkg_id and installed.name == request.name:
            effective = installed
            LOGGER.debug(
                "using installed identity for info lookup",
                extra={"stage": "info", "request": str(request), "installed": str(installed)},
            )
    try:
        return resolve(effective, catalogs)
    except NotFoundError as exc:
        raise NotFoundError(
            f"info for the requested binary ('{request}') not found in any of the metadata files",
            requested=str(request),
        ) from exc


__all__ = [
    "InstallResult",
    "ProgressFactory",
    "get_info",
    "install_binary",
    "install_many",
    "reinstall",
    "reinstall_requests",
]
