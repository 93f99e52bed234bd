"""One-shot, name-addressed delivery of flow outcomes.

Each flow name has at most one registered :class:`~concurrent.futures.Future`,
and each flow keeps a reference to its own. The coordinator resolves it exactly once, with a
:class:`~tokenprobe.models.TokenResult` or with the error that ended the
flow, or cancels it when the caller stops the flow. Whoever waits for a
name (the CLI, a test, a UI bridge) gets a ``Result``-like object instead
of re-filtering a broadcast stream.

Futures are resolved outside the channel lock, so done-callbacks may call
back into the channel (or the coordinator) freely.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Optional

from tokenprobe.models import TokenResult

logger = logging.getLogger(__name__)

TOKEN_RESPONSE_EVENT = "token-response"
"""Name of the push notification carried by this channel."""


class ResultChannel:
    """Map of flow name to its pending one-shot future."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._futures: dict[str, Future[TokenResult]] = {}

    def open(self, name: str, replace: bool = False) -> Future[TokenResult]:
        """Return the pending future for *name*, creating a fresh one if needed.

        A future that has already been resolved or cancelled is replaced, so
        a new flow under a reused name never sees the previous outcome. With
        *replace*, a still-pending future is dropped from the map as well; its
        holders keep it and it can still be resolved through ``expected``.
        """
        with self._lock:
            future = self._futures.get(name)
            if replace or future is None or future.done():
                future = Future()
                self._futures[name] = future
            return future

    def get(self, name: str) -> Optional[Future[TokenResult]]:
        with self._lock:
            return self._futures.get(name)

    def _pending(
        self, name: str, expected: Optional[Future[TokenResult]]
    ) -> Optional[Future[TokenResult]]:
        if expected is not None:
            future: Optional[Future[TokenResult]] = expected
        else:
            with self._lock:
                future = self._futures.get(name)
        if future is None or future.done():
            return None
        return future

    def publish(
        self,
        name: str,
        result: TokenResult,
        expected: Optional[Future[TokenResult]] = None,
    ) -> bool:
        """Resolve *name*'s future with *result*.

        Args:
            name: Flow name.
            result: The token result to deliver.
            expected: When given, resolve this future instead of the one
                currently registered for *name*. A flow passes its own
                future so its outcome never reaches a newer flow that reused
                the name.

        Returns:
            ``True`` if the result was delivered, ``False`` if the future was
            already resolved or cancelled.
        """
        future = self._pending(name, expected)
        if future is None:
            return False
        try:
            future.set_result(result)
        except InvalidStateError:
            return False
        logger.debug("Delivered %s for '%s'", TOKEN_RESPONSE_EVENT, name)
        return True

    def fail(
        self,
        name: str,
        exc: BaseException,
        expected: Optional[Future[TokenResult]] = None,
    ) -> bool:
        """Resolve *name*'s future with *exc*. Same contract as :meth:`publish`."""
        future = self._pending(name, expected)
        if future is None:
            return False
        try:
            future.set_exception(exc)
        except InvalidStateError:
            return False
        logger.debug("Delivered failed %s for '%s': %s", TOKEN_RESPONSE_EVENT, name, exc)
        return True

    def cancel(self, name: str, expected: Optional[Future[TokenResult]] = None) -> bool:
        """Cancel *name*'s pending future so no later outcome can reach it."""
        future = self._pending(name, expected)
        if future is None:
            return False
        return future.cancel()

    def discard(self, name: str) -> None:
        """Forget *name*'s future if it is already finished."""
        with self._lock:
            future = self._futures.get(name)
            if future is not None and future.done():
                del self._futures[name]
