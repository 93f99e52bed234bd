"""Helpers shared by the tokenprobe test modules."""

from __future__ import annotations

import json
from http.client import HTTPConnection
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from tokenprobe.exchanger import TokenExchanger
from tokenprobe.models import RedirectCapture, ResolvedClient, ServicePreset, TokenResult


def write_json(path: Path, data: Any) -> None:
    """Write *data* as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def make_client(name: str = "x", **kwargs: Any) -> ResolvedClient:
    """Build a ResolvedClient against a fake provider."""
    defaults: dict[str, Any] = {
        "name": name,
        "preset": ServicePreset(
            auth_url="https://auth.example.com/authorize",
            token_url="https://auth.example.com/token",
        ),
        "client_id": f"{name}-client",
        "client_secret": "s3cret",
        "scopes": ["read"],
    }
    defaults.update(kwargs)
    return ResolvedClient(**defaults)


class FakeExchanger:
    """Stands in for TokenExchanger: maps codes to canned token responses.

    A response that is an Exception is raised instead. ``gate`` (a
    threading.Event) holds every exchange until it is set.
    """

    def __init__(
        self,
        client: ResolvedClient,
        responses: dict[str, Any],
        gate: Optional[Any] = None,
    ) -> None:
        self._real = TokenExchanger(client)
        self._responses = responses
        self._gate = gate
        self.calls: list[tuple[str, str, Optional[str]]] = []

    def exchange_code(
        self, name: str, code: str, redirect_uri: Optional[str] = None
    ) -> TokenResult:
        self.calls.append((name, code, redirect_uri))
        if self._gate is not None:
            self._gate.wait(5)
        response = self._responses[code]
        if isinstance(response, Exception):
            raise response
        return TokenResult.from_token_response(name, response)

    def parse_redirect_url(self, redirect_url: str, expected_state: str) -> RedirectCapture:
        return self._real.parse_redirect_url(redirect_url, expected_state)


def simulate_redirect(redirect_uri: str, query: str) -> tuple[int, str]:
    """Send a provider redirect to a running listener; return (status, body)."""
    parsed = urlparse(redirect_uri)
    conn = HTTPConnection(parsed.hostname, parsed.port, timeout=5)
    try:
        conn.request("GET", f"{parsed.path}?{query}")
        response = conn.getresponse()
        return response.status, response.read().decode("utf-8")
    finally:
        conn.close()


def state_of(url: str) -> str:
    """Return the ``state`` query parameter of an authorization URL."""
    from urllib.parse import parse_qs

    return parse_qs(urlparse(url).query)["state"][0]


def redirect_uri_of(url: str) -> str:
    """Return the ``redirect_uri`` query parameter of an authorization URL."""
    from urllib.parse import parse_qs

    return parse_qs(urlparse(url).query)["redirect_uri"][0]


def port_is_closed(port: int, host: str = "127.0.0.1") -> bool:
    """True if nothing accepts TCP connections on *host*:*port*."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(1)
        return sock.connect_ex((host, port)) != 0


def free_port() -> int:
    """Return a port that was free a moment ago."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def wait_until(predicate: Any, timeout: float = 5.0) -> bool:
    """Poll *predicate* until it returns True or *timeout* elapses."""
    import time

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
