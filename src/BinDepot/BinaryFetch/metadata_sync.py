# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.metadata_sync",
#   "purpose": "Mirror upstream METADATA.json files into local per-architecture catalogs",
#   "sections": [
#     {"id": "sources", "name": "Mirror Sources", "anchor": "SRC", "kind": "constants"},
#     {"id": "normalize", "name": "Record Normalisation", "anchor": "NRM", "kind": "helpers"},
#     {"id": "sync", "name": "sync_metadata", "anchor": "SYN", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Metadata mirror.

Upstream repositories publish one ``METADATA.json`` per architecture with a
slightly different schema per repository.  :func:`sync_metadata` downloads
each, rewrites the records into the shape :mod:`BinDepot.BinaryFetch.catalog`
expects, and stores them as ``{label}.dbin_{arch}.json`` under both the
upstream architecture slug and the machine architecture name, which is what
:func:`~BinDepot.BinaryFetch.catalog.load_catalog_files` reads.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlsplit

import httpx

from .catalog import catalog_file_name, fetch_json_with_fallback
from .errors import BinaryFetchError, FilesystemError

LOGGER = logging.getLogger(__name__)

# (upstream slug, machine architecture)
DEFAULT_ARCH_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("amd64_linux", "x86_64_Linux"),
    ("arm64_linux", "aarch64_Linux"),
    ("arm64_android", "arm64_v8a_Android"),
)


@dataclass(frozen=True, slots=True)
class MirrorSource:
    """An upstream metadata file and how its records are rewritten."""

    label: str
    main_url: str
    fallback_url: Optional[str]
    resolve_to_final_url: bool = True


def default_mirror_sources(arch: str) -> List[MirrorSource]:
    """Known upstream repositories for the upstream architecture slug ``arch``."""

    snapshots = "https://huggingface.co/datasets/Azathothas/Toolpacks-Snapshots/resolve/main"
    return [
        MirrorSource(
            label="Toolpacks",
            main_url=f"https://bin.ajam.dev/{arch}/METADATA.json",
            fallback_url=f"{snapshots}/{arch}/METADATA.json?download=true",
        ),
        MirrorSource(
            label="Baseutils",
            main_url=f"https://bin.ajam.dev/{arch}/Baseutils/METADATA.json",
            fallback_url=f"{snapshots}/Baseutils/METADATA.json?download=true",
        ),
        # Names in this repository are already final.
        MirrorSource(
            label="Toolpacks-extras",
            main_url=f"https://pkg.ajam.dev/{arch}/METADATA.json?download=true",
            fallback_url="https://pkg.ajam.dev/",
            resolve_to_final_url=False,
        ),
    ]


# --- Normalisation ------------------------------------------------------------------


def _name_from_url(download_url: str, prefixes: Sequence[str], label: str) -> Optional[str]:
    path = unquote(urlsplit(download_url).path).lstrip("/")
    if not path:
        return None
    for prefix in prefixes:
        if prefix and path.startswith(prefix + "/"):
            path = path[len(prefix) + 1 :]
            break
    if path.startswith(label + "/"):
        path = path[len(label) + 1 :]
    return path or None


def normalize_items(
    items: Sequence[Any],
    real_arch: str,
    source: MirrorSource,
    *,
    upstream_arch: str = "",
) -> List[Dict[str, Any]]:
    """Return copies of ``items`` in the local catalog shape.

    ``shasum``/``bsum`` are mirrored to ``sha256``/``b3sum`` for older readers.
    When ``source.resolve_to_final_url`` is set, ``name`` becomes the download
    URL path without its architecture and label prefixes.  Non-object records
    are dropped.
    """

    normalized: List[Dict[str, Any]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        record = dict(item)
        if record.get("shasum"):
            record["sha256"] = record["shasum"]
        if record.get("bsum"):
            record["b3sum"] = record["bsum"]
        if source.resolve_to_final_url:
            download_url = record.get("download_url")
            if isinstance(download_url, str) and download_url:
                name = _name_from_url(download_url, (real_arch, upstream_arch), source.label)
                if name:
                    record["name"] = name
        normalized.append(record)
    return normalized


def _write_json_atomic(path: Path, payload: Any) -> None:
    temp_path = path.with_name(path.name + ".tmp")
    try:
        temp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(temp_path, path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise FilesystemError(f"failed to write {path}: {exc}", path=path) from exc


# --- Sync ---------------------------------------------------------------------------


def sync_metadata(
    output_dir: Path,
    arch_pairs: Optional[Sequence[Tuple[str, str]]] = None,
    *,
    sources_for=default_mirror_sources,
    client: Optional[httpx.Client] = None,
) -> List[Path]:
    """Mirror every source for every architecture pair into ``output_dir``.

    Args:
        output_dir: Directory receiving the ``{label}.dbin_{arch}.json`` files.
        arch_pairs: ``(upstream_slug, machine_arch)`` pairs; defaults to
            :data:`DEFAULT_ARCH_PAIRS`.
        sources_for: Callable returning the sources for an upstream slug.
        client: HTTPX client used for downloads.

    Returns:
        Paths written, in the order they were written.  Sources that fail to
        download or save are logged and skipped.
    """

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemError(f"cannot create {output_dir}: {exc}", path=output_dir) from exc

    written: List[Path] = []
    for upstream_arch, real_arch in arch_pairs or DEFAULT_ARCH_PAIRS:
        for source in sources_for(upstream_arch):
            try:
                payload = fetch_json_with_fallback(
                    source.main_url, source.fallback_url, client=client
                )
            except BinaryFetchError as exc:
                LOGGER.error(
                    "metadata source unavailable",
                    extra={
                        "stage": "sync",
                        "label": source.label,
                        "arch": upstream_arch,
                        "error": str(exc),
                    },
                )
                continue
            if not isinstance(payload, list):
                LOGGER.error(
                    "metadata payload is not a JSON array",
                    extra={"stage": "sync", "label": source.label, "arch": upstream_arch},
                )
                continue

            records = normalize_items(payload, real_arch, source, upstream_arch=upstream_arch)
            for arch_name in dict.fromkeys((real_arch, upstream_arch)):
                target = output_dir / catalog_file_name(source.label, arch_name)
                try:
                    _write_json_atomic(target, records)
                except FilesystemError as exc:
                    LOGGER.error(
                        "failed to save metadata",
                        extra={"stage": "sync", "path": str(target), "error": str(exc)},
                    )
                    continue
                LOGGER.info(
                    "saved metadata",
                    extra={"stage": "sync", "path": str(target), "records": len(records)},
                )
                written.append(target)
    return written


__all__ = [
    "DEFAULT_ARCH_PAIRS",
    "MirrorSource",
    "default_mirror_sources",
    "normalize_items",
    "sync_metadata",
]
