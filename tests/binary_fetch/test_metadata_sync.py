"""Mirroring upstream METADATA.json into local catalog files."""

from __future__ import annotations

import json

import httpx

from BinDepot.BinaryFetch.catalog import load_catalog_files
from BinDepot.BinaryFetch.descriptors import RequestDescriptor
from BinDepot.BinaryFetch.matching import resolve
from BinDepot.BinaryFetch.metadata_sync import (
    MirrorSource,
    default_mirror_sources,
    normalize_items,
    sync_metadata,
)
from BinDepot.BinaryFetch.testing import routes_transport


def test_normalize_items_derives_name_from_download_url():
    source = MirrorSource("Baseutils", "https://main", "https://fallback")
    items = [
        {
            "name": "ignored",
            "download_url": "https://bin.ajam.dev/x86_64_Linux/Baseutils/coreutils/ls",
            "shasum": "abc",
            "bsum": "def",
        },
        {"name": "kept", "download_url": "https://bin.ajam.dev/amd64_linux/jq"},
        "not-a-record",
    ]

    records = normalize_items(items, "x86_64_Linux", source, upstream_arch="amd64_linux")

    assert [record["name"] for record in records] == ["coreutils/ls", "jq"]
    assert records[0]["sha256"] == "abc"
    assert records[0]["b3sum"] == "def"
    assert "sha256" not in records[1]
    assert items[0]["name"] == "ignored"


def test_normalize_items_leaves_names_when_not_resolving():
    source = MirrorSource("Toolpacks-extras", "https://main", None, resolve_to_final_url=False)

    records = normalize_items(
        [{"pkg": "yq", "download_url": "https://pkg.ajam.dev/amd64_linux/yq"}], "x86_64_Linux", source
    )

    assert records == [{"pkg": "yq", "download_url": "https://pkg.ajam.dev/amd64_linux/yq"}]


def test_default_sources_cover_known_repositories():
    sources = default_mirror_sources("amd64_linux")

    assert [source.label for source in sources] == ["Toolpacks", "Baseutils", "Toolpacks-extras"]
    assert sources[0].main_url == "https://bin.ajam.dev/amd64_linux/METADATA.json"
    assert sources[2].resolve_to_final_url is False


def test_sync_metadata_writes_loadable_catalogs(tmp_path):
    sources = [
        MirrorSource(
            "Toolpacks",
            "https://main.example/amd64_linux.json",
            "https://fallback.example/amd64_linux.json",
        ),
        MirrorSource("Broken", "https://broken.example/a.json", "https://broken.example/b.json"),
    ]
    transport = routes_transport(
        {
            "https://main.example/amd64_linux.json": httpx.ConnectError("down"),
            "https://fallback.example/amd64_linux.json": json.dumps(
                [
                    {
                        "name": "jq",
                        "download_url": "https://bin.ajam.dev/amd64_linux/jq",
                        "shasum": "00ff",
                        "rank": 2,
                    }
                ]
            ).encode(),
        }
    )

    with httpx.Client(transport=transport) as client:
        written = sync_metadata(
            tmp_path,
            [("amd64_linux", "x86_64_Linux")],
            sources_for=lambda arch: sources,
            client=client,
        )

    assert [path.name for path in written] == [
        "Toolpacks.dbin_x86_64_Linux.json",
        "Toolpacks.dbin_amd64_linux.json",
    ]
    entry = resolve(RequestDescriptor(name="jq"), load_catalog_files(tmp_path, "x86_64_Linux"))
    assert entry.checksum == "00ff"
    assert not list(tmp_path.glob("*.tmp"))
