"""Tests for the ephemeral redirect listener."""

from __future__ import annotations

import socket
import threading
from typing import Union

import pytest

from helpers import port_is_closed, simulate_redirect
from tokenprobe.exceptions import BindError, DuplicateNameError, StateMismatchError
from tokenprobe.listener import ListenerHandle, RedirectListener, RedirectListenerPool
from tokenprobe.models import RedirectCapture

Outcome = Union[RedirectCapture, StateMismatchError]


class _Recorder:
    """Collects on_capture calls and signals the first one."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Outcome]] = []
        self.event = threading.Event()

    def __call__(self, name: str, outcome: Outcome) -> None:
        self.calls.append((name, outcome))
        self.event.set()


@pytest.fixture()
def recorder() -> _Recorder:
    return _Recorder()


@pytest.fixture()
def listener(recorder: _Recorder):
    listener = RedirectListener("x", "good-state", recorder)
    yield listener
    listener.stop()


class TestListenerHandle:
    def test_redirect_uri_ipv4(self) -> None:
        assert ListenerHandle("x", "127.0.0.1", 8765, "/cb").redirect_uri == "http://127.0.0.1:8765/cb"

    def test_redirect_uri_ipv6_is_bracketed(self) -> None:
        assert ListenerHandle("x", "::1", 8765, "/cb").redirect_uri == "http://[::1]:8765/cb"


class TestRedirectListener:
    def test_binds_ephemeral_port(self, listener: RedirectListener) -> None:
        handle = listener.start()
        assert handle.port > 0
        assert handle.redirect_uri == f"http://127.0.0.1:{handle.port}/callback"
        assert listener.is_running

    def test_captures_matching_redirect(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        status, body = simulate_redirect(handle.redirect_uri, "code=abc&state=good-state")
        assert status == 200
        assert "Authorization received" in body
        assert recorder.event.wait(2)
        name, capture = recorder.calls[0]
        assert name == "x"
        assert isinstance(capture, RedirectCapture)
        assert capture.code == "abc"

    def test_second_redirect_is_ignored(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        simulate_redirect(handle.redirect_uri, "code=abc&state=good-state")
        status, body = simulate_redirect(handle.redirect_uri, "code=def&state=good-state")
        assert status == 200
        assert "already been completed" in body
        assert len(recorder.calls) == 1

    def test_state_mismatch_is_fatal_by_default(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        status, body = simulate_redirect(handle.redirect_uri, "code=abc&state=forged")
        assert status == 400
        assert "does not match" in body
        assert recorder.event.wait(2)
        assert isinstance(recorder.calls[0][1], StateMismatchError)
        # The listener no longer accepts the genuine redirect.
        status, _ = simulate_redirect(handle.redirect_uri, "code=abc&state=good-state")
        assert len(recorder.calls) == 1

    def test_state_mismatch_ignored_keeps_waiting(self, recorder: _Recorder) -> None:
        listener = RedirectListener("x", "good-state", recorder, state_mismatch="ignore")
        try:
            handle = listener.start()
            status, _ = simulate_redirect(handle.redirect_uri, "code=abc&state=forged")
            assert status == 400
            assert recorder.calls == []
            simulate_redirect(handle.redirect_uri, "code=abc&state=good-state")
            assert recorder.event.wait(2)
            assert isinstance(recorder.calls[0][1], RedirectCapture)
        finally:
            listener.stop()

    def test_provider_error_is_delivered(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        _, body = simulate_redirect(
            handle.redirect_uri,
            "error=access_denied&error_description=User+said+no&state=good-state",
        )
        assert "access_denied - User said no" in body
        capture = recorder.calls[0][1]
        assert isinstance(capture, RedirectCapture)
        assert capture.error == "access_denied"

    def test_missing_code_page(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        _, body = simulate_redirect(handle.redirect_uri, "state=good-state")
        assert "no authorization code" in body

    def test_html_is_escaped(self, listener: RedirectListener) -> None:
        handle = listener.start()
        _, body = simulate_redirect(handle.redirect_uri, "error=%3Cscript%3E&state=good-state")
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_other_path_is_404(self, listener: RedirectListener, recorder: _Recorder) -> None:
        handle = listener.start()
        status, _ = simulate_redirect(f"http://127.0.0.1:{handle.port}/favicon.ico", "")
        assert status == 404
        assert recorder.calls == []

    def test_stop_releases_port_and_is_idempotent(self, listener: RedirectListener) -> None:
        port = listener.start().port
        listener.stop()
        listener.stop()
        assert not listener.is_running
        assert port_is_closed(port)

    def test_bind_error(self, recorder: _Recorder) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            listener = RedirectListener("x", "s", recorder, port=port)
            with pytest.raises(BindError, match="Cannot bind"):
                listener.start()


class TestRedirectListenerPool:
    def test_one_listener_per_name(self, recorder: _Recorder) -> None:
        pool = RedirectListenerPool()
        first = RedirectListener("x", "s1", recorder)
        pool.start(first)
        try:
            with pytest.raises(DuplicateNameError):
                pool.start(RedirectListener("x", "s2", recorder))
            assert pool.get("x") is first
        finally:
            pool.stop("x")
        assert pool.names() == []

    def test_stop_only_matching_instance(self, recorder: _Recorder) -> None:
        pool = RedirectListenerPool()
        current = RedirectListener("x", "s1", recorder)
        pool.start(current)
        try:
            pool.stop("x", RedirectListener("x", "stale", recorder))
            assert current.is_running
        finally:
            pool.stop("x", current)
        assert not current.is_running

    def test_different_names_get_different_ports(self, recorder: _Recorder) -> None:
        pool = RedirectListenerPool()
        a = pool.start(RedirectListener("a", "sa", recorder))
        b = pool.start(RedirectListener("b", "sb", recorder))
        try:
            assert a.port != b.port
            assert pool.names() == ["a", "b"]
        finally:
            pool.stop("a")
            pool.stop("b")
