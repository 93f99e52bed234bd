"""Ephemeral local HTTP listener that captures one provider redirect.

A :class:`RedirectListener` binds a :class:`~http.server.ThreadingHTTPServer`
on the loopback interface (an OS-assigned port unless the client's redirect
URL pins one), serves it on a daemon thread, and waits for the provider to
redirect the browser back with ``code`` and ``state``.

The first redirect whose ``state`` matches is handed to the ``on_capture``
callback as a :class:`~tokenprobe.models.RedirectCapture`; every later
redirect is answered with an informational page and ignored. A mismatched
``state`` is either fatal (the callback receives a
:class:`~tokenprobe.exceptions.StateMismatchError` and the listener stops
accepting redirects) or ignored, depending on the ``state_mismatch`` policy.

The browser always gets a human-readable HTML page. The actual outcome is
reported only through the callback.

:class:`RedirectListenerPool` keeps at most one listener per flow name.
"""

from __future__ import annotations

import html
import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional, Union
from urllib.parse import parse_qs, urlparse

from tokenprobe.exceptions import BindError, DuplicateNameError, StateMismatchError
from tokenprobe.models import RedirectCapture

logger = logging.getLogger(__name__)

CaptureCallback = Callable[[str, Union[RedirectCapture, StateMismatchError]], None]
"""Receives ``(name, capture_or_error)`` exactly once per listener."""

_SUCCESS_PAGE = (
    "Authorization received! You can close this window and return to tokenprobe."
)
_DENIED_PAGE = "Authorization failed: {detail}"
_MISMATCH_PAGE = "Authorization rejected: the state parameter does not match this request."
_DONE_PAGE = "This authorization request has already been completed."


def _render(message: str) -> bytes:
    return (
        "<html><head><meta charset=\"utf-8\"><title>tokenprobe</title></head>"
        f"<body><h2>{html.escape(message)}</h2></body></html>"
    ).encode("utf-8")


class ListenerHandle:
    """Describes a running listener: where it is bound and which flow it serves."""

    def __init__(self, name: str, host: str, port: int, path: str) -> None:
        self.name = name
        self.host = host
        self.port = port
        self.path = path

    @property
    def redirect_uri(self) -> str:
        """The redirect URI to embed in the authorization URL."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}{self.path}"

    def __repr__(self) -> str:
        return f"ListenerHandle(name={self.name!r}, redirect_uri={self.redirect_uri!r})"


class RedirectListener:
    """One-shot redirect endpoint for a single named flow.

    Args:
        name: Flow name this listener serves.
        expected_state: The ``state`` issued for the flow.
        on_capture: Callback invoked once with the capture, or with a
            :class:`StateMismatchError` under the ``fatal`` policy.
        host: Interface to bind.
        port: Port to bind; ``0`` lets the OS choose.
        path: Callback path. Requests to any other path get a 404.
        state_mismatch: ``"fatal"`` or ``"ignore"``.
    """

    def __init__(
        self,
        name: str,
        expected_state: str,
        on_capture: CaptureCallback,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/callback",
        state_mismatch: str = "fatal",
    ) -> None:
        self.name = name
        self._expected_state = expected_state
        self._on_capture = on_capture
        self._host = host
        self._port = port
        self._path = path or "/"
        self._state_mismatch = state_mismatch

        self._lock = threading.Lock()
        self._delivered = False
        self._stopped = False
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._handle: Optional[ListenerHandle] = None

    @property
    def handle(self) -> Optional[ListenerHandle]:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._server is not None and not self._stopped

    def start(self) -> ListenerHandle:
        """Bind the endpoint and start serving on a daemon thread.

        Raises:
            BindError: If the address cannot be bound.
        """
        handler = self._make_handler()
        try:
            server = ThreadingHTTPServer((self._host, self._port), handler)
        except OSError as exc:
            raise BindError(
                f"Cannot bind redirect listener for '{self.name}' on "
                f"{self._host}:{self._port}: {exc}"
            ) from exc
        server.daemon_threads = True

        port = server.server_address[1]
        self._server = server
        self._handle = ListenerHandle(self.name, self._host, port, self._path)
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"tokenprobe-listener-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Listening for '%s' redirect on %s", self.name, self._handle.redirect_uri)
        return self._handle

    def stop(self) -> None:
        """Stop serving and release the socket. Safe to call repeatedly."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            server = self._server
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        logger.info("Stopped redirect listener for '%s'", self.name)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def _claim(self) -> bool:
        """Mark the one-shot delivery as used; False if already used or stopped."""
        with self._lock:
            if self._delivered or self._stopped:
                return False
            self._delivered = True
            return True

    def _handle_redirect(self, query: str) -> tuple[int, str]:
        """Process one callback request and return ``(status, page text)``."""
        params = parse_qs(query)

        def first(key: str) -> Optional[str]:
            values = params.get(key)
            return values[0] if values else None

        state = first("state")
        if state != self._expected_state:
            logger.warning("Rejected redirect for '%s': state mismatch", self.name)
            if self._state_mismatch == "fatal" and self._claim():
                self._on_capture(
                    self.name,
                    StateMismatchError(
                        f"Redirect for '{self.name}' carried a state that was not issued"
                    ),
                )
            return 400, _MISMATCH_PAGE

        if not self._claim():
            return 200, _DONE_PAGE

        capture = RedirectCapture(
            code=first("code"),
            state=state,
            error=first("error"),
            error_description=first("error_description"),
        )
        self._on_capture(self.name, capture)

        if capture.error:
            detail = capture.error
            if capture.error_description:
                detail += f" - {capture.error_description}"
            return 200, _DENIED_PAGE.format(detail=detail)
        if not capture.code:
            return 200, _DENIED_PAGE.format(detail="no authorization code received")
        return 200, _SUCCESS_PAGE

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        listener = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                parsed = urlparse(self.path)
                if parsed.path != listener._path:
                    self._respond(404, "Not found.")
                    return
                status, body = listener._handle_redirect(parsed.query)
                self._respond(status, body)

            def _respond(self, status: int, message: str) -> None:
                payload = _render(message)
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(payload)))
                self.send_header("Connection", "close")
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("listener[%s] " + format, listener.name, *args)

        return CallbackHandler


class RedirectListenerPool:
    """At most one running :class:`RedirectListener` per flow name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, RedirectListener] = {}

    def start(self, listener: RedirectListener) -> ListenerHandle:
        """Start *listener* and register it under its name.

        Raises:
            DuplicateNameError: If a listener for the name is already running.
            BindError: If the listener cannot bind.
        """
        with self._lock:
            if listener.name in self._listeners:
                raise DuplicateNameError(
                    f"A redirect listener for '{listener.name}' is already running"
                )
            self._listeners[listener.name] = listener
        try:
            return listener.start()
        except BindError:
            with self._lock:
                self._listeners.pop(listener.name, None)
            raise

    def get(self, name: str) -> Optional[RedirectListener]:
        with self._lock:
            return self._listeners.get(name)

    def stop(self, name: str, listener: Optional[RedirectListener] = None) -> None:
        """Stop and forget the listener for *name*. Idempotent.

        When *listener* is given, only that exact instance is stopped.
        """
        with self._lock:
            current = self._listeners.get(name)
            if current is None or (listener is not None and current is not listener):
                return
            del self._listeners[name]
        current.stop()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._listeners)
