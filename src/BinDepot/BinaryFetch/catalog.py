# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.catalog",
#   "purpose": "Tolerant catalog entry parsing plus catalog fetching and loading",
#   "sections": [
#     {"id": "model", "name": "CatalogEntry", "anchor": "MDL", "kind": "api"},
#     {"id": "parsing", "name": "Tolerant Field Coercion", "anchor": "PRS", "kind": "helpers"},
#     {"id": "fetch", "name": "Remote Fetch With Fallback", "anchor": "FET", "kind": "api"},
#     {"id": "files", "name": "On-disk Catalog Files", "anchor": "FIL", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Catalog model and catalog acquisition.

Catalogs are JSON arrays of loosely-typed objects produced by several
scrapers whose schemas drift over time.  :func:`parse_catalog_entry` turns one
such object into an immutable :class:`CatalogEntry` and never raises: a
missing or mistyped field degrades to the zero value for its type so a single
bad record cannot reject a whole catalog.

Catalog acquisition follows a primary/fallback policy: every source is tried
at its primary URL and, on any failure, once at its fallback mirror.  Requests
carry cache-busting headers because catalogs are republished in place.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from .descriptors import format_identity
from .errors import NetworkError
from .net import get_http_client, no_cache_headers
from .settings import BinaryFetchSettings

LOGGER = logging.getLogger(__name__)

RawEntry = Mapping[str, Any]
Catalog = Mapping[str, Sequence[Any]]

# Older scraper schemas used these keys; the primary key wins when both exist.
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "pkg": ("name",),
    "shasum": ("sha256", "sha256sum"),
    "bsum": ("b3sum",),
    "categories": ("category",),
    "provides": ("extra_bins",),
    "web_urls": ("web_url",),
}

_MAX_RANK = 0xFFFF


@dataclass(slots=True, frozen=True)
class CatalogEntry:
    """One resolvable artifact from a catalog.

    Attributes:
        name: Binary name (``pkg``) the entry installs as.
        pretty_name: Human readable package name (``pkg_name``).
        pkg_id: Package id distinguishing builds that share ``name``.
        shasum: SHA-256 hex digest of the artifact (verification checksum).
        bsum: BLAKE3 hex digest carried for display.
        rank: Catalog-assigned priority; higher is preferred.

    Examples:
        >>> entry = parse_catalog_entry({"pkg": "jq", "rank": 5, "notes": ["ok", 3]})
        >>> (entry.name, entry.rank, entry.notes)
        ('jq', 5, ('ok',))
    """

    name: str = ""
    pretty_name: str = ""
    pkg_id: str = ""
    description: str = ""
    version: str = ""
    download_url: str = ""
    size: str = ""
    bsum: str = ""
    shasum: str = ""
    build_date: str = ""
    build_script: str = ""
    build_log: str = ""
    categories: Tuple[str, ...] = ()
    provides: Tuple[str, ...] = ()
    ghcr_blob: str = ""
    rank: int = 0
    notes: Tuple[str, ...] = ()
    src_urls: Tuple[str, ...] = ()
    web_urls: Tuple[str, ...] = ()

    @property
    def checksum(self) -> str:
        """Digest handed to the install pipeline for verification."""

        return self.shasum

    def to_mapping(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("categories", "provides", "notes", "src_urls", "web_urls"):
            data[key] = list(data[key])
        return data


# --- Tolerant field coercion ----------------------------------------------------


def _lookup(raw: RawEntry, key: str) -> Any:
    if key in raw:
        return raw[key]
    for alias in _FIELD_ALIASES.get(key, ()):
        if alias in raw:
            return raw[alias]
    return None


def _get_string(raw: RawEntry, key: str) -> str:
    value = _lookup(raw, key)
    if isinstance(value, str):
        return value
    if value is not None:
        LOGGER.debug(
            "ignoring mistyped catalog field",
            extra={"stage": "catalog", "field": key, "type": type(value).__name__},
        )
    return ""


def _get_string_list(raw: RawEntry, key: str) -> Tuple[str, ...]:
    value = _lookup(raw, key)
    if isinstance(value, list):
        return tuple(item for item in value if isinstance(item, str))
    if isinstance(value, str) and key == "web_urls" and value:
        return (value,)
    return ()


def _get_tags(raw: RawEntry, key: str) -> Tuple[str, ...]:
    """Accept either a JSON array of strings or a comma separated string."""

    value = _lookup(raw, key)
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return _get_string_list(raw, key)


def _get_rank(raw: RawEntry) -> int:
    value = raw.get("rank")
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return min(max(value, 0), _MAX_RANK)
    if isinstance(value, float) and math.isfinite(value):
        return min(max(int(value), 0), _MAX_RANK)
    LOGGER.debug(
        "ignoring mistyped catalog rank",
        extra={"stage": "catalog", "type": type(value).__name__},
    )
    return 0


def parse_catalog_entry(raw: Any) -> CatalogEntry:
    """Build a :class:`CatalogEntry` from an untyped JSON object; never raises."""

    if not isinstance(raw, Mapping):
        return CatalogEntry()
    return CatalogEntry(
        name=_get_string(raw, "pkg"),
        pretty_name=_get_string(raw, "pkg_name"),
        pkg_id=_get_string(raw, "pkg_id"),
        description=_get_string(raw, "description"),
        version=_get_string(raw, "version"),
        download_url=_get_string(raw, "download_url"),
        size=_get_string(raw, "size"),
        bsum=_get_string(raw, "bsum"),
        shasum=_get_string(raw, "shasum"),
        build_date=_get_string(raw, "build_date"),
        build_script=_get_string(raw, "build_script"),
        build_log=_get_string(raw, "build_log"),
        categories=_get_tags(raw, "categories"),
        provides=_get_tags(raw, "provides"),
        ghcr_blob=_get_string(raw, "ghcr_blob"),
        rank=_get_rank(raw),
        notes=_get_string_list(raw, "notes"),
        src_urls=_get_string_list(raw, "src_urls"),
        web_urls=_get_string_list(raw, "web_urls"),
    )


def raw_name(raw: Any) -> str:
    """Return the binary name of a raw record without building an entry."""

    if not isinstance(raw, Mapping):
        return ""
    return _get_string(raw, "pkg")


def raw_pkg_id(raw: Any) -> str:
    if not isinstance(raw, Mapping):
        return ""
    return _get_string(raw, "pkg_id")


def raw_rank(raw: Any) -> int:
    if not isinstance(raw, Mapping):
        return 0
    return _get_rank(raw)


# --- Remote fetch with fallback ---------------------------------------------------


def fetch_json(url: str, *, client: Optional[httpx.Client] = None) -> Any:
    """GET ``url`` with cache-busting headers and decode the JSON body."""

    http = client or get_http_client()
    try:
        response = http.get(url, headers=no_cache_headers())
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise NetworkError(
            f"error fetching from {url}: HTTP {exc.response.status_code}",
            url=url,
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise NetworkError(f"error fetching from {url}: {exc}", url=url) from exc
    try:
        return response.json()
    except ValueError as exc:
        raise NetworkError(f"error decoding from {url}: {exc}", url=url) from exc


def fetch_json_with_fallback(
    primary_url: str,
    fallback_url: Optional[str] = None,
    *,
    client: Optional[httpx.Client] = None,
) -> Any:
    """Fetch JSON from ``primary_url``, retrying once at ``fallback_url``.

    Raises:
        NetworkError: The fallback's error when both URLs fail, or the
            primary's error when no fallback is configured.
    """

    try:
        payload = fetch_json(primary_url, client=client)
    except NetworkError as exc:
        if not fallback_url:
            raise
        LOGGER.warning(
            "primary catalog url failed, trying fallback",
            extra={
                "stage": "catalog",
                "url": primary_url,
                "fallback_url": fallback_url,
                "error": str(exc),
            },
        )
    else:
        LOGGER.debug("fetched catalog", extra={"stage": "catalog", "url": primary_url})
        return payload

    try:
        payload = fetch_json(fallback_url, client=client)
    except NetworkError as exc:
        LOGGER.error(
            "fallback catalog url failed",
            extra={"stage": "catalog", "url": fallback_url, "error": str(exc)},
        )
        raise
    LOGGER.info("fetched catalog from fallback", extra={"stage": "catalog", "url": fallback_url})
    return payload


def _as_entry_list(payload: Any, *, label: str) -> List[Any]:
    if isinstance(payload, list):
        return payload
    LOGGER.warning(
        "catalog payload is not a JSON array; treating as empty",
        extra={"stage": "catalog", "label": label, "type": type(payload).__name__},
    )
    return []


def fetch_catalogs(
    settings: BinaryFetchSettings, *, client: Optional[httpx.Client] = None
) -> List[Dict[str, List[Any]]]:
    """Fetch every configured source, one ``{label: entries}`` mapping each."""

    catalogs: List[Dict[str, List[Any]]] = []
    for source in settings.sources:
        primary, fallback = source.urls_for(settings.architecture)
        payload = fetch_json_with_fallback(primary, fallback, client=client)
        catalogs.append({source.label: _as_entry_list(payload, label=source.label)})
    return catalogs


# --- On-disk catalog files ----------------------------------------------------------


def catalog_file_name(label: str, arch: str) -> str:
    return f"{label}.dbin_{arch}.json"


def load_catalog_files(
    directory: Path, arch: str, *, labels: Optional[Iterable[str]] = None
) -> List[Dict[str, List[Any]]]:
    """Load ``{label}.dbin_{arch}.json`` files written by the metadata mirror.

    With ``labels`` the files are loaded in that order (missing ones are
    skipped); otherwise every matching file is loaded in label order.
    Unreadable files are logged and skipped.
    """

    suffix = f".dbin_{arch}.json"
    if labels is None:
        paths = sorted(directory.glob(f"*{suffix}"))
    else:
        paths = [directory / catalog_file_name(label, arch) for label in labels]

    catalogs: List[Dict[str, List[Any]]] = []
    for path in paths:
        label = path.name[: -len(suffix)]
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as exc:
            LOGGER.warning(
                "skipping unreadable catalog file",
                extra={"stage": "catalog", "path": str(path), "error": str(exc)},
            )
            continue
        catalogs.append({label: _as_entry_list(payload, label=label)})
    return catalogs


def iter_raw_entries(catalogs: Sequence[Catalog]) -> Iterable[Tuple[int, str, int, Any]]:
    """Yield ``(source_index, label, position, raw)`` in flatten order."""

    for source_index, catalog in enumerate(catalogs):
        for label, entries in catalog.items():
            if not isinstance(entries, (list, tuple)):
                continue
            for position, raw in enumerate(entries):
                yield source_index, label, position, raw


def list_binaries(catalogs: Sequence[Catalog]) -> List[str]:
    """Return the ordered, de-duplicated list of installable names.

    Each entry contributes its bare name and, when it has one, its
    ``name#pkg_id`` identity key.
    """

    seen: Dict[str, None] = {}
    for _, _, _, raw in iter_raw_entries(catalogs):
        name = raw_name(raw)
        if not name:
            continue
        seen.setdefault(format_identity(name), None)
        pkg_id = raw_pkg_id(raw)
        if pkg_id:
            seen.setdefault(format_identity(name, pkg_id), None)
    return list(seen)


__all__ = [
    "CatalogEntry",
    "catalog_file_name",
    "fetch_catalogs",
    "fetch_json",
    "fetch_json_with_fallback",
    "iter_raw_entries",
    "list_binaries",
    "load_catalog_files",
    "parse_catalog_entry",
    "raw_name",
    "raw_pkg_id",
    "raw_rank",
]
