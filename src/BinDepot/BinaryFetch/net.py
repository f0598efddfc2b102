# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.net",
#   "purpose": "Provide the shared HTTPX client used for catalog and artifact requests",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used across BinaryFetch networking.

Every request the installer issues must bypass intermediary caches: catalogs
change under the same URL and artifacts are re-published in place.  The
client therefore carries no cache transport; a request hook stamps the
cache-busting headers and the configured ``User-Agent`` on every request.
Tests install a client backed by :class:`httpx.MockTransport` through
:func:`configure_http_client` (see :mod:`BinDepot.BinaryFetch.testing`).
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import Callable, Dict, MutableMapping, Optional

import certifi
import httpx

from .settings import HttpConfiguration

LOGGER = logging.getLogger(__name__)

# --- Constants & globals -------------------------------------------------------

NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None
_CLIENT_FACTORY: Optional[Callable[[], httpx.Client]] = None
_DEFAULT_CONFIG = HttpConfiguration()

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _request_hook(request: httpx.Request) -> None:
    for header, value in NO_CACHE_HEADERS.items():
        request.headers.setdefault(header, value)
    request.headers.setdefault("User-Agent", _DEFAULT_CONFIG.user_agent)
    meta: MutableMapping[str, object] = request.extensions.setdefault("binfetch_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()


def _response_hook(response: httpx.Response) -> None:
    meta = response.request.extensions.get("binfetch_meta") or {}
    start = meta.get("start_time") if isinstance(meta, dict) else None
    elapsed = time.perf_counter() - start if isinstance(start, (int, float)) else None
    LOGGER.debug(
        "http response",
        extra={
            "stage": "http",
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_sec": round(elapsed, 4) if elapsed is not None else None,
        },
    )


def _timeout_for(config: HttpConfiguration) -> httpx.Timeout:
    return httpx.Timeout(
        connect=config.connect_timeout_sec,
        read=config.timeout_sec,
        write=config.timeout_sec,
        pool=config.connect_timeout_sec,
    )


def _build_http_client(config: HttpConfiguration) -> httpx.Client:
    return httpx.Client(
        transport=httpx.HTTPTransport(retries=0, verify=_build_ssl_context()),
        timeout=_timeout_for(config),
        trust_env=True,
        follow_redirects=True,
        headers={"User-Agent": config.user_agent},
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(
    client: Optional[httpx.Client] = None,
    *,
    factory: Optional[Callable[[], httpx.Client]] = None,
    default_config: Optional[HttpConfiguration] = None,
) -> None:
    """Override the shared HTTPX client or register a factory for tests."""

    if client is not None and factory is not None:
        raise ValueError("provide either a client or factory, not both")

    global _HTTP_CLIENT, _CLIENT_FACTORY, _DEFAULT_CONFIG

    with _CLIENT_LOCK:
        if default_config is not None:
            _DEFAULT_CONFIG = default_config
        if client is None:
            _close_client_unlocked()
        elif _HTTP_CLIENT is not client:
            _close_client_unlocked()
            _HTTP_CLIENT = client
        _CLIENT_FACTORY = factory


def reset_http_client() -> None:
    """Reset the shared HTTPX client to its default configuration (test helper)."""

    global _CLIENT_FACTORY, _DEFAULT_CONFIG

    with _CLIENT_LOCK:
        _CLIENT_FACTORY = None
        _DEFAULT_CONFIG = HttpConfiguration()
        _close_client_unlocked()


def get_http_client(config: Optional[HttpConfiguration] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it if necessary."""

    global _HTTP_CLIENT

    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not None:
            return _HTTP_CLIENT
        if _CLIENT_FACTORY is not None:
            candidate = _CLIENT_FACTORY()
            if not isinstance(candidate, httpx.Client):
                raise TypeError("client factory must return an httpx.Client")
            _HTTP_CLIENT = candidate
            return candidate
        _HTTP_CLIENT = _build_http_client(config or _DEFAULT_CONFIG)
        return _HTTP_CLIENT


def no_cache_headers() -> Dict[str, str]:
    """Return a fresh copy of the cache-busting request headers."""

    return dict(NO_CACHE_HEADERS)


__all__ = [
    "NO_CACHE_HEADERS",
    "configure_http_client",
    "get_http_client",
    "no_cache_headers",
    "reset_http_client",
]
