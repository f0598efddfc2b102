"""Tests for the cancellation token shared by install workers."""

import threading

from BinDepot.BinaryFetch.cancellation import CancellationToken


def test_token_cancel_and_reset() -> None:
    token = CancellationToken()
    assert not token.is_cancelled()

    token.cancel()
    assert token.is_cancelled()

    token.reset()
    assert not token.is_cancelled()


def test_cancel_is_visible_across_threads() -> None:
    token = CancellationToken()
    seen = []

    worker = threading.Thread(target=lambda: seen.append(token.is_cancelled()))
    token.cancel()
    worker.start()
    worker.join()

    assert seen == [True]
