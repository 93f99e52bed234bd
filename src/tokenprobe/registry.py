"""In-memory registry of in-flight authorization requests.

:class:`AuthRequestRegistry` owns every :class:`~tokenprobe.models.AuthRequest`
and is the only shared mutable state in the exchange core. A single lock
guards the map; every critical section is a dictionary lookup plus a status
check, so flows for different names never wait on each other for long.

Allowed status transitions::

    pending    -> listening | exchanging | cancelled
    listening  -> exchanging | cancelled
    exchanging -> completed | failed | cancelled

``failed`` is also reachable from ``pending`` and ``listening`` so that a
listener timeout or a provider denial can end a flow that never reached
the exchange.
"""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Optional

from tokenprobe.exceptions import (
    AlreadyInProgressError,
    DuplicateNameError,
    InvalidTransitionError,
    NotFoundError,
)
from tokenprobe.models import AuthRequest, AuthStatus

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[AuthStatus, frozenset[AuthStatus]] = {
    AuthStatus.PENDING: frozenset(
        {AuthStatus.LISTENING, AuthStatus.EXCHANGING, AuthStatus.FAILED, AuthStatus.CANCELLED}
    ),
    AuthStatus.LISTENING: frozenset(
        {AuthStatus.EXCHANGING, AuthStatus.FAILED, AuthStatus.CANCELLED}
    ),
    AuthStatus.EXCHANGING: frozenset(
        {AuthStatus.COMPLETED, AuthStatus.FAILED, AuthStatus.CANCELLED}
    ),
    AuthStatus.COMPLETED: frozenset(),
    AuthStatus.FAILED: frozenset(),
    AuthStatus.CANCELLED: frozenset(),
}


def generate_state() -> str:
    """Return a fresh, unguessable ``state`` value."""
    return secrets.token_urlsafe(32)


class AuthRequestRegistry:
    """Thread-safe map from flow name to its :class:`AuthRequest`.

    Callers that act on behalf of a specific attempt (a listener callback,
    a timeout timer) pass ``expected_state`` so that they never touch a
    newer attempt that reused the same name.

    Example::

        registry = AuthRequestRegistry()
        request = registry.create("github")
        registry.transition("github", AuthStatus.EXCHANGING)
        registry.transition("github", AuthStatus.COMPLETED)
        registry.remove("github")
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, AuthRequest] = {}

    def create(self, name: str, redirect_uri: Optional[str] = None) -> AuthRequest:
        """Create a pending request for *name* with a fresh ``state``.

        A terminal record left under *name* is replaced.

        Raises:
            DuplicateNameError: If a non-terminal request for *name* exists.
        """
        with self._lock:
            existing = self._requests.get(name)
            if existing is not None and not existing.status.is_terminal:
                raise DuplicateNameError(
                    f"An authorization flow for '{name}' is already {existing.status.value}"
                )
            request = AuthRequest(name=name, state=generate_state(), redirect_uri=redirect_uri)
            self._requests[name] = request
        logger.debug("Created auth request for '%s'", name)
        return request.model_copy()

    def get(self, name: str) -> AuthRequest:
        """Return a snapshot of the request for *name*.

        Raises:
            NotFoundError: If no request is registered under *name*.
        """
        with self._lock:
            request = self._requests.get(name)
            if request is None:
                raise NotFoundError(f"No authorization flow named '{name}'")
            return request.model_copy()

    def set_redirect_uri(self, name: str, redirect_uri: str) -> None:
        """Record the redirect URI actually used for *name*'s authorization URL."""
        with self._lock:
            request = self._requests.get(name)
            if request is None:
                raise NotFoundError(f"No authorization flow named '{name}'")
            request.redirect_uri = redirect_uri

    def transition(
        self,
        name: str,
        new_status: AuthStatus,
        expected_state: Optional[str] = None,
        expected_status: Optional[AuthStatus] = None,
    ) -> AuthRequest:
        """Atomically move *name* to *new_status*.

        Args:
            name: Flow name.
            new_status: Target status.
            expected_state: When given, the transition only applies to the
                attempt that issued this ``state``.
            expected_status: When given, the transition only applies while
                the request is in this status.

        Returns:
            A snapshot of the request after the transition.

        Raises:
            NotFoundError: If *name* is unknown, or *expected_state* does not
                match the current attempt.
            AlreadyInProgressError: If the request is already exchanging and
                *new_status* is ``exchanging``.
            InvalidTransitionError: If the state machine forbids the move, or
                the request is not in *expected_status*.
        """
        with self._lock:
            request = self._requests.get(name)
            if request is None or (
                expected_state is not None and request.state != expected_state
            ):
                raise NotFoundError(f"No authorization flow named '{name}'")
            current = request.status
            if expected_status is not None and current is not expected_status:
                raise InvalidTransitionError(
                    f"Cannot move '{name}' to {new_status.value}: it is {current.value}, "
                    f"not {expected_status.value}"
                )
            if new_status not in _TRANSITIONS[current]:
                if current is AuthStatus.EXCHANGING and new_status is AuthStatus.EXCHANGING:
                    raise AlreadyInProgressError(
                        f"Token exchange for '{name}' is already in progress"
                    )
                raise InvalidTransitionError(
                    f"Cannot move '{name}' from {current.value} to {new_status.value}"
                )
            request.status = new_status
            snapshot = request.model_copy()
        logger.debug("Flow '%s': %s -> %s", name, current.value, new_status.value)
        return snapshot

    def remove(self, name: str, expected_state: Optional[str] = None) -> None:
        """Delete the record for *name*. Unknown names are ignored."""
        with self._lock:
            request = self._requests.get(name)
            if request is None:
                return
            if expected_state is not None and request.state != expected_state:
                return
            del self._requests[name]
        logger.debug("Removed auth request for '%s'", name)

    def active_names(self) -> list[str]:
        """Return the names of all non-terminal requests, sorted."""
        with self._lock:
            return sorted(
                name for name, req in self._requests.items() if not req.status.is_terminal
            )
