"""Cooperative cancellation primitives shared by long-running installs.

Downloads check a :class:`CancellationToken` at every chunk boundary, which is
the only point where an install can be interrupted.  The implementation avoids
thread interruption in favour of explicit checks so that the pipeline can
remove its own temporary file before surfacing the cancellation.
One token is shared by every worker of a multi-package install, so a
single ``Ctrl-C`` in the CLI stops them all.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        with self._lock:
            self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        return self._is_cancelled.is_set()

    def reset(self) -> None:
        """Reset the token to its initial state (tests and controlled reuse only)."""
        with self._lock:
            self._is_cancelled.clear()


# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.cancellation",
#   "purpose": "Provide cooperative cancellation tokens shared by install workers",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
