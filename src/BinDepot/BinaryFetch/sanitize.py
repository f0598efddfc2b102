"""Strip build-store paths from downloaded scripts.

Some catalogs ship artifacts produced by a reproducible-build toolchain whose
scripts keep absolute interpreter paths such as
``#!/nix/store/<hash>-bash/bin/bash``.  Those paths do not exist on the
target machine.  When (and only when) the first line is such an interpreter
directive, it is rewritten to ``#!/...`` and every ``<store>/<hash>/bin/``
prefix on the following lines is removed.  A file whose first line is not a
store shebang is never touched, so binary payloads that merely contain a
similar byte sequence are left alone.

Processing is done on bytes; the artifact is never decoded.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Pattern, Tuple

from .errors import FilesystemError

LOGGER = logging.getLogger(__name__)

DEFAULT_STORE_ROOT = "/nix/store"

# Longest first line inspected before deciding the file is not a script.
_MAX_SHEBANG_BYTES = 4096


def _patterns(store_root: str) -> Tuple[Pattern[bytes], Pattern[bytes]]:
    root = re.escape(store_root.rstrip("/").encode("utf-8"))
    shebang = re.compile(rb"^#!\s*" + root + rb"/[^/]+/")
    bin_path = re.compile(root + rb"/[^/]+/bin/")
    return shebang, bin_path


def _read_first_line(path: Path) -> bytes:
    with path.open("rb") as stream:
        head = stream.read(_MAX_SHEBANG_BYTES)
    return head.split(b"\n", 1)[0]


def sanitize(file_path: Path, *, store_root: str = DEFAULT_STORE_ROOT) -> bool:
    """Rewrite store paths in ``file_path`` in place.

    Args:
        file_path: File to inspect, typically the pipeline's ``.tmp`` file.
        store_root: Absolute build-store root, ``/nix/store`` by default.

    Returns:
        ``True`` if the file started with a store shebang and was rewritten.

    Raises:
        FilesystemError: If the file cannot be read or written back.
    """

    shebang, bin_path = _patterns(store_root)
    path = Path(file_path)
    try:
        if not shebang.match(_read_first_line(path)):
            return False
        content = path.read_bytes()
    except OSError as exc:
        raise FilesystemError(f"failed to read file {path}: {exc}", path=path) from exc

    lines = content.split(b"\n")
    lines[0] = shebang.sub(b"#!/", lines[0], count=1)
    for index in range(1, len(lines)):
        lines[index] = bin_path.sub(b"", lines[index])

    try:
        path.write_bytes(b"\n".join(lines))
    except OSError as exc:
        raise FilesystemError(f"failed to correct store object [{path.name}]: {exc}", path=path) from exc

    LOGGER.info(
        "rewrote build-store paths",
        extra={"stage": "sanitize", "file": path.name, "store_root": store_root},
    )
    return True


__all__ = ["DEFAULT_STORE_ROOT", "sanitize"]
