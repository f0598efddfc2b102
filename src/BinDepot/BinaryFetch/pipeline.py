# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.pipeline",
#   "purpose": "Verified download, sanitisation, and atomic placement of a single artifact",
#   "sections": [
#     {"id": "request", "name": "Request With Transient Retries", "anchor": "REQ", "kind": "helpers"},
#     {"id": "stream", "name": "Streaming Copy + Hash", "anchor": "STR", "kind": "helpers"},
#     {"id": "install", "name": "install_artifact", "anchor": "INS", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Verified install pipeline.

:func:`install_artifact` fetches one artifact and puts it at its final path
with these guarantees, in this order:

1. the body is streamed in fixed-size chunks into ``<destination>.tmp`` while
   the same bytes feed a SHA-256 accumulator and the progress observer;
2. the cancellation token is checked at every chunk boundary;
3. the digest is compared with the expected checksum (a missing checksum is
   a warning, not an error);
4. build-store paths are stripped from the temp file;
5. the temp file is atomically renamed over the destination;
6. the destination is made executable.

Any failure once the temp file exists removes it before the error surfaces,
so the destination either holds the previous file or the complete new one.
Tagging the installed file with its identity is the caller's job
(see :mod:`BinDepot.BinaryFetch.installer`).
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from pathlib import Path
from typing import Optional

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .cancellation import CancellationToken
from .errors import (
    BinaryFetchError,
    ChecksumMismatchError,
    DownloadCancelled,
    FilesystemError,
    NetworkError,
)
from .net import get_http_client, no_cache_headers
from .progress import NullProgress, ProgressObserver
from .sanitize import DEFAULT_STORE_ROOT, sanitize
from .settings import HttpConfiguration

LOGGER = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
EXECUTABLE_MODE = 0o755
_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


def temp_path_for(destination: Path) -> Path:
    return destination.with_name(destination.name + TEMP_SUFFIX)


def sha256_file(path: Path, *, chunk_size: int = 1 << 20) -> str:
    """Compute the SHA-256 digest of an installed file."""

    hasher = hashlib.sha256()
    with path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _raise_if_cancelled(token: Optional[CancellationToken], url: str) -> None:
    if token is not None and token.is_cancelled():
        raise DownloadCancelled(f"download of {url} was cancelled")


# --- Request with transient retries ---------------------------------------------


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def _open_response(
    client: httpx.Client,
    url: str,
    config: HttpConfiguration,
    token: Optional[CancellationToken],
) -> httpx.Response:
    """Send the cache-bypassing GET; retry transport errors before any byte is read."""

    request = client.build_request("GET", url, headers=no_cache_headers())

    def _attempt() -> httpx.Response:
        _raise_if_cancelled(token, url)
        response = client.send(request, stream=True)
        if response.status_code >= 400:
            status = response.status_code
            response.close()
            raise NetworkError(
                f"failed to download {url}: HTTP {status}",
                url=url,
                status_code=status,
                retryable=status in _RETRYABLE_STATUS,
            )
        return response

    def _before_sleep(retry_state) -> None:
        outcome = retry_state.outcome
        LOGGER.warning(
            "download retry",
            extra={
                "stage": "download",
                "url": url,
                "attempt": retry_state.attempt_number,
                "error": str(outcome.exception()) if outcome is not None else None,
            },
        )

    retrying = Retrying(
        retry=retry_if_exception(_is_retryable),
        wait=wait_exponential(multiplier=config.backoff_factor, max=30),
        stop=stop_after_attempt(config.max_retries + 1),
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        return retrying(_attempt)
    except httpx.HTTPError as exc:
        raise NetworkError(f"failed to download {url}: {exc}", url=url) from exc


def _content_length(response: httpx.Response) -> Optional[int]:
    header = response.headers.get("Content-Length")
    if not header:
        return None
    try:
        return int(header)
    except ValueError:
        return None


# --- Streaming copy + hash ---------------------------------------------------------


def _stream_to_temp(
    response: httpx.Response,
    temp_path: Path,
    *,
    url: str,
    chunk_size: int,
    token: Optional[CancellationToken],
    progress: ProgressObserver,
) -> tuple[str, int]:
    """Copy the body into ``temp_path``; return ``(sha256, bytes)``.

    The caller owns removal of ``temp_path`` on failure.
    """

    hasher = hashlib.sha256()
    written = 0
    progress.start(_content_length(response))
    try:
        with temp_path.open("wb") as out:
            _raise_if_cancelled(token, url)
            for chunk in response.iter_bytes(chunk_size):
                _raise_if_cancelled(token, url)
                if not chunk:
                    continue
                out.write(chunk)
                hasher.update(chunk)
                written += len(chunk)
                progress.advance(len(chunk))
    except httpx.HTTPError as exc:
        raise NetworkError(f"error reading from {url}: {exc}", url=url) from exc
    except OSError as exc:
        raise FilesystemError(f"failed to write {temp_path}: {exc}", path=temp_path) from exc
    finally:
        progress.finish()
    return hasher.hexdigest(), written


def _verify_checksum(expected: str, actual: str, *, url: str) -> None:
    normalized = expected.strip().lower()
    if not normalized:
        LOGGER.warning(
            "no checksum exists for this binary in the metadata files, skipping verification",
            extra={"stage": "download", "url": url, "sha256": actual},
        )
        return
    if normalized != actual:
        raise ChecksumMismatchError(
            f"checksum verification failed for {url}: expected {normalized}, got {actual}",
            expected=normalized,
            actual=actual,
        )


# --- Public API ---------------------------------------------------------------------


def install_artifact(
    url: str,
    expected_checksum: str,
    destination: Path,
    *,
    cancellation_token: Optional[CancellationToken] = None,
    progress: Optional[ProgressObserver] = None,
    http_config: Optional[HttpConfiguration] = None,
    store_root: str = DEFAULT_STORE_ROOT,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Download ``url`` to ``destination`` with integrity verification.

    Args:
        url: Artifact download URL.
        expected_checksum: SHA-256 hex digest from the catalog; empty skips
            verification with a warning.
        destination: Final path of the executable.
        cancellation_token: Checked before the request and at every chunk.
        progress: Observer notified per chunk.
        http_config: Chunk size, timeouts, and retry budget.
        store_root: Build-store root stripped by the sanitizer.
        client: HTTPX client; the shared client when omitted.

    Returns:
        ``destination`` once it holds the verified, executable artifact.

    Raises:
        DownloadCancelled: If the token was cancelled.
        NetworkError: On transport failures or HTTP status >= 400.
        ChecksumMismatchError: If the digest differs from ``expected_checksum``.
        FilesystemError: If the temp file, rename, or chmod fails.
    """

    config = http_config or HttpConfiguration()
    http = client or get_http_client(config)
    observer = progress or NullProgress()
    destination = Path(destination)
    temp_path = temp_path_for(destination)
    started = time.monotonic()

    response = _open_response(http, url, config, cancellation_token)
    try:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(
                f"failed to create parent directories for {destination}: {exc}",
                path=destination.parent,
            ) from exc

        try:
            digest, written = _stream_to_temp(
                response,
                temp_path,
                url=url,
                chunk_size=config.chunk_size,
                token=cancellation_token,
                progress=observer,
            )
            _verify_checksum(expected_checksum, digest, url=url)
            sanitize(temp_path, store_root=store_root)
            try:
                os.replace(temp_path, destination)
            except OSError as exc:
                raise FilesystemError(
                    f"failed to move {temp_path} into place: {exc}", path=destination
                ) from exc
        except BaseException as exc:
            temp_path.unlink(missing_ok=True)
            if isinstance(exc, BinaryFetchError):
                LOGGER.error(
                    "download failed",
                    extra={"stage": "download", "url": url, "error": str(exc)},
                )
            raise
    finally:
        response.close()

    try:
        os.chmod(destination, EXECUTABLE_MODE)
    except OSError as exc:
        destination.unlink(missing_ok=True)
        raise FilesystemError(
            f"failed to set executable bit for {destination}: {exc}", path=destination
        ) from exc

    LOGGER.info(
        "installed artifact",
        extra={
            "stage": "install",
            "url": url,
            "path": str(destination),
            "bytes": written,
            "sha256": digest,
            "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
        },
    )
    return destination


__all__ = ["EXECUTABLE_MODE", "TEMP_SUFFIX", "install_artifact", "sha256_file", "temp_path_for"]
