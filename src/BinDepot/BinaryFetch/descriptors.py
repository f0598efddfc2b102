"""Request descriptors and the identity ("full name") string format.

A :class:`RequestDescriptor` names a wanted package: a binary ``name``, an
optional ``pkg_id`` that disambiguates builds sharing a name, and an optional
``version``.  The same shape is recorded on every installed file as an opaque
identity string, so the format below is shared by the CLI (parsing user
input) and the ownership registry (decoding tags).

Format::

    name[#pkg_id][@version]

Each component is percent-escaped for ``%``, ``#``, ``@`` and ``/`` so the
separators are unambiguous and :func:`parse_identity` is the exact inverse of
:func:`format_identity`.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote, unquote

from .errors import ConfigError

PKG_ID_SEPARATOR = "#"
VERSION_SEPARATOR = "@"

# Characters left unescaped in identity components; "#", "@", "%" and "/" are not.
_SAFE_CHARS = "-._~+:=,!$&'()*;"


def _escape(component: str) -> str:
    return quote(component, safe=_SAFE_CHARS)


@dataclass(slots=True, frozen=True)
class RequestDescriptor:
    """User- or registry-derived identity of a desired package.

    Examples:
        >>> RequestDescriptor("jq", pkg_id="jq-static").identity()
        'jq#jq-static'
    """

    name: str
    pkg_id: str = ""
    version: str = ""

    def same_package(self, other: "RequestDescriptor") -> bool:
        """Names match and, when both sides carry one, package ids match."""

        if self.name != other.name:
            return False
        if self.pkg_id and other.pkg_id:
            return self.pkg_id == other.pkg_id
        return True

    def identity(self) -> str:
        return format_identity(self.name, self.pkg_id, self.version)

    def identity_key(self) -> str:
        """Identity without the version, used to compare against remote lists."""

        return format_identity(self.name, self.pkg_id)

    def with_overrides(self, *, pkg_id: str | None = None, version: str | None = None) -> "RequestDescriptor":
        return RequestDescriptor(
            name=self.name,
            pkg_id=self.pkg_id if pkg_id is None else pkg_id,
            version=self.version if version is None else version,
        )

    def __str__(self) -> str:
        return self.identity()


def format_identity(name: str, pkg_id: str = "", version: str = "") -> str:
    """Pack ``name``/``pkg_id``/``version`` into a single identity string."""

    if not name:
        raise ConfigError("identity requires a non-empty binary name")
    text = _escape(name)
    if pkg_id:
        text += PKG_ID_SEPARATOR + _escape(pkg_id)
    if version:
        text += VERSION_SEPARATOR + _escape(version)
    return text


def parse_identity(identity: str) -> RequestDescriptor:
    """Decode an identity string (or CLI argument) into a descriptor.

    Raises:
        ConfigError: If ``identity`` is empty or has no binary name.
    """

    text = identity.strip()
    if not text:
        raise ConfigError("identity string is empty")

    version = ""
    if VERSION_SEPARATOR in text:
        text, version = text.split(VERSION_SEPARATOR, 1)
    pkg_id = ""
    if PKG_ID_SEPARATOR in text:
        text, pkg_id = text.split(PKG_ID_SEPARATOR, 1)
    if not text:
        raise ConfigError(f"identity '{identity}' does not name a binary")
    return RequestDescriptor(name=unquote(text), pkg_id=unquote(pkg_id), version=unquote(version))


__all__ = [
    "RequestDescriptor",
    "format_identity",
    "parse_identity",
]
