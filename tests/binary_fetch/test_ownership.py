"""Identity tagging on installed files."""

from __future__ import annotations

import errno
import json
import os

import pytest

from BinDepot.BinaryFetch.descriptors import RequestDescriptor
from BinDepot.BinaryFetch.errors import FilesystemError, OwnershipTagMissing
from BinDepot.BinaryFetch.ownership import (
    ATTRIBUTE_NAME,
    SIDECAR_DIR_NAME,
    AutoBackend,
    OwnershipRegistry,
    SidecarBackend,
    XattrBackend,
    is_executable,
    is_symlink,
    make_backend,
)


def test_write_then_read_round_trips(tmp_path, registry):
    binary = tmp_path / "jq"
    binary.write_bytes(b"\x7fELF")

    registry.write_identity(binary, "jq#jq-static@1.7")

    assert registry.read_identity(binary) == "jq#jq-static@1.7"
    assert registry.installed_descriptor(binary) == RequestDescriptor("jq", "jq-static", "1.7")
    record = json.loads((tmp_path / SIDECAR_DIR_NAME / "jq").read_text(encoding="utf-8"))
    assert record["identity"] == "jq#jq-static@1.7"
    assert record["st_ino"] == binary.stat().st_ino


def test_missing_path_reads_as_base_name(tmp_path, registry):
    assert registry.read_identity(tmp_path / "not-installed") == "not-installed"


def test_untagged_file_raises_tag_missing(tmp_path, registry):
    binary = tmp_path / "legacy"
    binary.write_bytes(b"")

    with pytest.raises(OwnershipTagMissing):
        registry.read_identity(binary)
    assert registry.installed_descriptor(binary) is None


def test_temp_and_missing_files_are_never_tagged(tmp_path, registry):
    temp = tmp_path / "jq.tmp"
    temp.write_bytes(b"partial")

    with pytest.raises(FilesystemError):
        registry.write_identity(temp, "jq")
    with pytest.raises(FilesystemError):
        registry.write_identity(tmp_path / "absent", "absent")


def test_symlinks_have_no_installed_descriptor(tmp_path, registry):
    target = tmp_path / "real"
    target.write_bytes(b"")
    registry.write_identity(target, "real")
    link = tmp_path / "alias"
    link.symlink_to(target)

    assert is_symlink(link)
    assert not is_symlink(target)
    assert registry.installed_descriptor(link) is None


def test_is_executable(tmp_path):
    tool = tmp_path / "tool"
    tool.write_bytes(b"")
    os.chmod(tool, 0o644)
    assert not is_executable(tool)
    os.chmod(tool, 0o755)
    assert is_executable(tool)
    assert not is_executable(tmp_path)


def test_make_backend_rejects_unknown_kind():
    with pytest.raises(ValueError):
        make_backend("registry")


def test_xattr_backend_round_trip(tmp_path, xattrs_supported):
    if not xattrs_supported:
        pytest.skip("filesystem does not support user extended attributes")
    binary = tmp_path / "jq"
    binary.write_bytes(b"")
    registry = OwnershipRegistry(XattrBackend())

    assert registry.installed_descriptor(binary) is None
    registry.write_identity(binary, "jq#jq-static")

    assert os.getxattr(binary, ATTRIBUTE_NAME) == b"jq#jq-static"
    assert registry.read_identity(binary) == "jq#jq-static"


def test_auto_backend_falls_back_to_sidecar_when_unsupported(tmp_path, monkeypatch):
    binary = tmp_path / "jq"
    binary.write_bytes(b"")
    backend = AutoBackend()

    def _unsupported(*args, **kwargs):
        raise OSError(errno.EOPNOTSUPP, "Operation not supported")

    monkeypatch.setattr(os, "setxattr", _unsupported)
    monkeypatch.setattr(os, "getxattr", _unsupported)
    registry = OwnershipRegistry(backend)

    registry.write_identity(binary, "jq#jq-static")

    assert SidecarBackend().get(binary) == "jq#jq-static"
    assert registry.read_identity(binary) == "jq#jq-static"


def test_auto_backend_propagates_other_errors(tmp_path, monkeypatch):
    binary = tmp_path / "jq"
    binary.write_bytes(b"")

    def _broken(*args, **kwargs):
        raise OSError(errno.EIO, "I/O error")

    monkeypatch.setattr(os, "setxattr", _broken)

    with pytest.raises(FilesystemError):
        OwnershipRegistry(AutoBackend()).write_identity(binary, "jq")


def test_sidecar_record_does_not_outlive_its_binary(tmp_path, registry):
    binary = tmp_path / "jq"
    binary.write_bytes(b"\x7fELF")
    registry.write_identity(binary, "jq#jq-static")
    binary.unlink()

    binary.write_bytes(b"#!/bin/sh\necho local\n")
    os.utime(binary, ns=(1_000_000_000, 1_000_000_000))

    assert registry.installed_descriptor(binary) is None
    with pytest.raises(OwnershipTagMissing):
        registry.read_identity(binary)


def test_sidecar_record_follows_in_place_file(tmp_path, registry):
    binary = tmp_path / "jq"
    binary.write_bytes(b"\x7fELF")
    registry.write_identity(binary, "jq#jq-static")
    os.chmod(binary, 0o755)

    assert registry.read_identity(binary) == "jq#jq-static"


def test_malformed_sidecar_record_is_an_error(tmp_path, registry):
    binary = tmp_path / "jq"
    binary.write_bytes(b"")
    sidecar = registry.backend.sidecar_path(binary)
    sidecar.parent.mkdir(parents=True)
    sidecar.write_text("jq#jq-static", encoding="utf-8")

    with pytest.raises(FilesystemError, match="malformed"):
        registry.read_identity(binary)
