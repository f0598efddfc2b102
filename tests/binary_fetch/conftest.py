"""Shared fixtures for the BinaryFetch suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from BinDepot.BinaryFetch.net import reset_http_client
from BinDepot.BinaryFetch.ownership import OwnershipRegistry, SidecarBackend
from BinDepot.BinaryFetch.settings import BinaryFetchSettings, build_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep host ``BINFETCH_*`` variables and shared clients out of tests."""

    for key in list(os.environ):
        if key.startswith("BINFETCH_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    yield
    reset_http_client()
    reset_settings_cache()


@pytest.fixture
def settings(tmp_path: Path) -> BinaryFetchSettings:
    return build_settings(
        {
            "install_dir": str(tmp_path / "bin"),
            "catalog_dir": str(tmp_path / "catalogs"),
            "architecture": "x86_64_Linux",
            "ownership_backend": "sidecar",
            "concurrent_installs": 2,
            "http": {"max_retries": 0, "backoff_factor": 0},
            "logging": {"log_dir": str(tmp_path / "logs")},
        }
    )


@pytest.fixture
def registry() -> OwnershipRegistry:
    return OwnershipRegistry(SidecarBackend())


@pytest.fixture
def xattrs_supported(tmp_path: Path) -> bool:
    """Whether ``tmp_path`` accepts ``user.*`` extended attributes."""

    if not hasattr(os, "setxattr"):
        return False
    marker = tmp_path / ".xattr-marker"
    marker.write_bytes(b"")
    try:
        os.setxattr(marker, "user.marker", b"1")
    except OSError:
        return False
    finally:
        marker.unlink()
    return True
