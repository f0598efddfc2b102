"""Testing helpers for exercising BinaryFetch without real network access."""

from __future__ import annotations

import hashlib
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import httpx

from ..net import configure_http_client, reset_http_client
from ..settings import HttpConfiguration


@contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs: Any) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    default_config: Optional[HttpConfiguration] = client_kwargs.pop("default_config", None)
    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client=client, default_config=default_config)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


def sha256_hex(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def catalog_entry(
    name: str,
    *,
    pkg_id: str = "",
    version: str = "",
    rank: Optional[int] = None,
    download_url: str = "",
    shasum: str = "",
    **extra: Any,
) -> Dict[str, Any]:
    """Build a raw catalog record shaped like the scraper output."""

    record: Dict[str, Any] = {
        "pkg": name,
        "pkg_name": name,
        "pkg_id": pkg_id,
        "version": version,
        "download_url": download_url or f"https://bin.example.org/{pkg_id or 'main'}/{name}",
        "shasum": shasum,
    }
    if rank is not None:
        record["rank"] = rank
    record.update(extra)
    return record


def write_catalog_file(
    directory: Path, label: str, arch: str, entries: Sequence[Mapping[str, Any]]
) -> Path:
    """Write ``entries`` where :func:`~BinDepot.BinaryFetch.catalog.load_catalog_files` looks."""

    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{label}.dbin_{arch}.json"
    path.write_text(json.dumps(list(entries), indent=2), encoding="utf-8")
    return path


def routes_transport(routes: Mapping[str, httpx.Response | bytes | Exception]) -> httpx.MockTransport:
    """Serve fixed responses keyed by URL; unknown URLs return 404.

    Exception values are raised from the transport to simulate connection
    failures.  Every request is appended to ``transport.requests``.
    """

    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        outcome = routes.get(str(request.url))
        if outcome is None:
            return httpx.Response(404, content=b"not found")
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, bytes):
            return httpx.Response(200, content=outcome)
        return outcome

    transport = httpx.MockTransport(handler)
    transport.requests = seen  # type: ignore[attr-defined]
    return transport


__all__ = [
    "catalog_entry",
    "routes_transport",
    "sha256_hex",
    "use_mock_http_client",
    "write_catalog_file",
]
