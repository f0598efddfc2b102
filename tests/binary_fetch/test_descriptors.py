"""Identity encoding and request descriptor behaviour."""

from __future__ import annotations

import pytest

from BinDepot.BinaryFetch.descriptors import RequestDescriptor, format_identity, parse_identity
from BinDepot.BinaryFetch.errors import ConfigError


@pytest.mark.parametrize(
    ("name", "pkg_id", "version", "expected"),
    [
        ("jq", "", "", "jq"),
        ("jq", "jq-static", "", "jq#jq-static"),
        ("jq", "jq-static", "1.7.1", "jq#jq-static@1.7.1"),
        ("jq", "", "1.7.1", "jq@1.7.1"),
    ],
)
def test_format_identity(name, pkg_id, version, expected):
    assert format_identity(name, pkg_id, version) == expected


def test_parse_identity_inverts_format_with_reserved_characters():
    descriptor = RequestDescriptor(name="a#b", pkg_id="github.com/x@y", version="1.0%rc")

    encoded = descriptor.identity()

    assert encoded.count("#") == 1
    assert encoded.count("@") == 1
    assert parse_identity(encoded) == descriptor


def test_parse_identity_plain_name():
    assert parse_identity("ripgrep") == RequestDescriptor(name="ripgrep")


@pytest.mark.parametrize("text", ["", "   ", "#pkg", "@1.0"])
def test_parse_identity_rejects_missing_name(text):
    with pytest.raises(ConfigError):
        parse_identity(text)


def test_format_identity_requires_name():
    with pytest.raises(ConfigError):
        format_identity("")


def test_identity_key_drops_version():
    descriptor = RequestDescriptor(name="jq", pkg_id="jq-static", version="1.7")

    assert descriptor.identity_key() == "jq#jq-static"


def test_same_package_compares_name_and_pkg_id():
    installed = RequestDescriptor(name="jq", pkg_id="jq-static", version="1.6")

    assert installed.same_package(RequestDescriptor(name="jq", pkg_id="jq-static", version="1.7"))
    assert not installed.same_package(RequestDescriptor(name="jq", pkg_id="jq-dynamic"))
    assert not installed.same_package(RequestDescriptor(name="yq", pkg_id="jq-static"))


def test_with_overrides_keeps_unspecified_fields():
    descriptor = RequestDescriptor(name="jq", pkg_id="jq-static", version="1.7")

    assert descriptor.with_overrides(version="") == RequestDescriptor(name="jq", pkg_id="jq-static")
    assert str(descriptor) == "jq#jq-static@1.7"
