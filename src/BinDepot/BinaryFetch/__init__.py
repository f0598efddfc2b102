# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch",
#   "purpose": "Package initialization for BinDepot.BinaryFetch",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for the BinDepot prebuilt-binary installer.

The facade resolves install requests against merged catalogs, performs
verified atomic downloads, records ownership on installed files, and checks
installed files against the remote listing.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict

__version__ = "0.4.0"

_EXPORTS: Dict[str, str] = {
    "BinaryFetchError": ".errors",
    "ChecksumMismatchError": ".errors",
    "ConfigError": ".errors",
    "DownloadCancelled": ".errors",
    "FilesystemError": ".errors",
    "NetworkError": ".errors",
    "NotFoundError": ".errors",
    "OwnershipTagMissing": ".errors",
    "CancellationToken": ".cancellation",
    "BinaryFetchSettings": ".settings",
    "load_settings": ".settings",
    "get_settings": ".settings",
    "CatalogEntry": ".catalog",
    "fetch_catalogs": ".catalog",
    "list_binaries": ".catalog",
    "load_catalog_files": ".catalog",
    "parse_catalog_entry": ".catalog",
    "RequestDescriptor": ".descriptors",
    "format_identity": ".descriptors",
    "parse_identity": ".descriptors",
    "find_matches": ".matching",
    "resolve": ".matching",
    "OwnershipRegistry": ".ownership",
    "registry_for": ".ownership",
    "sanitize": ".sanitize",
    "install_artifact": ".pipeline",
    "InstallResult": ".installer",
    "get_info": ".installer",
    "install_binary": ".installer",
    "install_many": ".installer",
    "reinstall": ".installer",
    "validate_programs": ".validation",
    "sync_metadata": ".metadata_sync",
}

__all__ = ["__version__", *_EXPORTS]


def __getattr__(name: str) -> Any:
    """Import public names on first access."""

    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
