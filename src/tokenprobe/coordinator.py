"""Flow coordinator -- the authorization-code exchange state machine.

:class:`FlowCoordinator` is the only component callers talk to. For each
named flow it:

1. creates an :class:`~tokenprobe.models.AuthRequest` in the
   :class:`~tokenprobe.registry.AuthRequestRegistry`;
2. optionally starts a :class:`~tokenprobe.listener.RedirectListener` and a
   redirect timeout;
3. builds the provider authorization URL;
4. when a redirect is captured (or a redirect URL is pasted back), wins the
   ``exchanging`` transition, runs the
   :class:`~tokenprobe.exchanger.TokenExchanger`, and settles the flow;
5. publishes the single outcome on the
   :class:`~tokenprobe.channel.ResultChannel` and releases every resource the
   flow held.

Capture handling runs on a coordinator-owned thread pool, never on the
listener's request thread, so a slow token endpoint never holds up the
browser or another flow.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from tokenprobe.channel import ResultChannel
from tokenprobe.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ProviderDeniedError,
    StateMismatchError,
    TimeoutError_,
    TokenprobeError,
)
from tokenprobe.exchanger import TokenExchanger
from tokenprobe.listener import RedirectListener, RedirectListenerPool
from tokenprobe.models import (
    AuthStatus,
    GlobalConfig,
    RedirectCapture,
    ResolvedClient,
    TokenResult,
)
from tokenprobe.registry import AuthRequestRegistry

logger = logging.getLogger(__name__)

ClientLoader = Callable[[str], ResolvedClient]
ExchangerFactory = Callable[[ResolvedClient], TokenExchanger]


def build_authorization_url(
    client: ResolvedClient,
    state: str,
    redirect_uri: Optional[str] = None,
) -> str:
    """Return the provider authorization URL for *client*.

    Any query string already present on the preset's ``auth_url`` is kept.
    ``extra_params`` cannot override ``response_type``, ``client_id``,
    ``redirect_uri``, ``scope`` or ``state``.
    """
    params: dict[str, str] = dict(client.extra_params)
    params["response_type"] = "code"
    params["client_id"] = client.client_id
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    if client.scopes:
        params["scope"] = " ".join(client.scopes)
    params["state"] = state

    parsed = urlparse(client.auth_url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunparse(parsed._replace(query=urlencode(query)))


class _Flow:
    """Bookkeeping for one authorization attempt."""

    def __init__(
        self,
        name: str,
        state: str,
        future: Future[TokenResult],
        exchanger: TokenExchanger,
    ) -> None:
        self.name = name
        self.state = state
        self.future = future
        self.exchanger = exchanger
        self.redirect_uri: Optional[str] = None
        self.listener: Optional[RedirectListener] = None
        self.timer: Optional[threading.Timer] = None
        self.ended: Optional[AuthStatus] = None


class FlowCoordinator:
    """Run many named authorization-code flows concurrently.

    Args:
        client_loader: Returns the :class:`ResolvedClient` for a flow name.
            Defaults to :func:`tokenprobe.config.resolve_client`.
        settings: Listener and HTTP settings.
        registry: Shared request registry (a fresh one by default).
        channel: One-shot delivery channel (a fresh one by default).
        exchanger_factory: Builds the exchanger for a client.
        max_workers: Size of the capture-handling thread pool.

    Example::

        with FlowCoordinator() as coordinator:
            url = coordinator.start_authorization("github", use_local_listener=True)
            webbrowser.open(url)
            result = coordinator.wait("github", timeout=300)
    """

    def __init__(
        self,
        client_loader: Optional[ClientLoader] = None,
        settings: Optional[GlobalConfig] = None,
        registry: Optional[AuthRequestRegistry] = None,
        channel: Optional[ResultChannel] = None,
        exchanger_factory: Optional[ExchangerFactory] = None,
        max_workers: int = 8,
    ) -> None:
        if client_loader is None:
            from tokenprobe.config import resolve_client

            client_loader = resolve_client
        self._client_loader = client_loader
        self._settings = settings or GlobalConfig()
        self.registry = registry or AuthRequestRegistry()
        self.channel = channel or ResultChannel()
        self._exchanger_factory = exchanger_factory or self._default_exchanger
        self._listeners = RedirectListenerPool()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tokenprobe-exchange"
        )
        self._lock = threading.Lock()
        self._flows: dict[str, _Flow] = {}

    def __enter__(self) -> "FlowCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_authorization(self, name: str, use_local_listener: bool = True) -> str:
        """Begin a flow for *name* and return the URL to open in a browser.

        With *use_local_listener*, a redirect listener is started and the
        flow moves to ``listening``; its outcome arrives on the channel.
        Without it the flow stays ``pending`` until
        :meth:`complete_with_redirect_url` is called.

        Raises:
            DuplicateNameError: If a flow for *name* is already active.
            NotFoundError: If no client configuration exists for *name*.
            ConfigError: If the client configuration is invalid.
            BindError: If the listener cannot bind a port.
        """
        client = self._client_loader(name)
        exchanger = self._exchanger_factory(client)
        request = self.registry.create(name)
        # A pending future left here belongs to a flow that is still settling.
        future = self.channel.open(name, replace=True)
        flow = _Flow(name, request.state, future, exchanger)
        with self._lock:
            self._flows[name] = flow

        try:
            if use_local_listener:
                host, port, path = self._listener_address(client)
                listener = RedirectListener(
                    name,
                    request.state,
                    functools.partial(self._on_capture, flow),
                    host=host,
                    port=port,
                    path=path,
                    state_mismatch=self._settings.listener.state_mismatch,
                )
                flow.listener = listener
                flow.redirect_uri = self._listeners.start(listener).redirect_uri
            else:
                flow.redirect_uri = client.redirect_url

            if flow.redirect_uri:
                self.registry.set_redirect_uri(name, flow.redirect_uri)
            url = build_authorization_url(client, request.state, flow.redirect_uri)

            if use_local_listener:
                self.registry.transition(name, AuthStatus.LISTENING, expected_state=flow.state)
                self._schedule_timeout(flow)
        except BaseException:
            try:
                self.registry.transition(name, AuthStatus.FAILED, expected_state=flow.state)
            except (NotFoundError, InvalidTransitionError):
                pass
            self._finish(flow)
            self.channel.cancel(name, expected=flow.future)
            raise

        logger.info(
            "Started flow '%s' (%s)", name, "listener" if use_local_listener else "manual"
        )
        return url

    def complete_with_redirect_url(self, name: str, redirect_url: str) -> TokenResult:
        """Finish *name*'s flow from a redirect URL pasted back by the user.

        A URL whose ``state`` does not match leaves the flow untouched, so
        the caller may retry with the correct URL.

        Raises:
            NotFoundError: If no flow is active for *name*.
            StateMismatchError: If the URL's ``state`` does not match.
            ProviderDeniedError: If the URL carries an OAuth error (the flow
                is failed and removed).
            AlreadyInProgressError: If a captured redirect is already being
                exchanged.
            InvalidTransitionError: If the flow has already ended, or ended
                (for example by cancellation) while the exchange was in flight.
            NetworkError, ProviderError, MalformedResponseError: From the
                exchange (the flow is failed and removed).
        """
        flow = self._current_flow(name)
        try:
            capture = flow.exchanger.parse_redirect_url(redirect_url, flow.state)
        except StateMismatchError:
            logger.warning("Rejected pasted redirect URL for '%s': state mismatch", name)
            raise
        except ProviderDeniedError as exc:
            self._fail(flow, exc)
            raise

        self.registry.transition(name, AuthStatus.EXCHANGING, expected_state=flow.state)
        self._cancel_timeout(flow)
        self._release_listener(flow)

        try:
            result = flow.exchanger.exchange_code(
                name, capture.raise_for_error(), flow.redirect_uri
            )
        except TokenprobeError as exc:
            self._fail(flow, exc)
            raise
        if not self._succeed(flow, result):
            ended = flow.ended.value if flow.ended else "removed"
            raise InvalidTransitionError(
                f"Flow '{name}' ended ({ended}) before the exchange completed"
            )
        return result

    def cancel(self, name: str) -> None:
        """Stop *name*'s flow: tear down its listener, mark it cancelled, remove it.

        Idempotent; unknown names are ignored. A result that arrives after
        cancellation is discarded.
        """
        with self._lock:
            flow = self._flows.get(name)
        expected_state = flow.state if flow is not None else None
        try:
            self.registry.transition(name, AuthStatus.CANCELLED, expected_state=expected_state)
        except (NotFoundError, InvalidTransitionError):
            pass
        else:
            if flow is not None:
                flow.ended = AuthStatus.CANCELLED
        if flow is None:
            self.registry.remove(name)
            return
        self._finish(flow)
        if self.channel.cancel(name, expected=flow.future):
            logger.info("Cancelled flow '%s'", name)

    def subscribe(self, name: str) -> Future[TokenResult]:
        """Return the one-shot future that will carry *name*'s outcome.

        Raises:
            NotFoundError: If no flow was ever started for *name*.
        """
        future = self.channel.get(name)
        if future is None:
            raise NotFoundError(f"No authorization flow named '{name}'")
        return future

    def wait(self, name: str, timeout: Optional[float] = None) -> TokenResult:
        """Block until *name*'s flow settles and return its token result.

        Raises:
            Whatever error ended the flow, ``concurrent.futures.CancelledError``
            if it was cancelled, or ``concurrent.futures.TimeoutError`` if
            *timeout* elapses first.
        """
        return self.subscribe(name).result(timeout=timeout)

    def active_flows(self) -> list[str]:
        return self.registry.active_names()

    def shutdown(self) -> None:
        """Cancel every active flow and stop the worker pool."""
        with self._lock:
            names = list(self._flows)
        for name in names:
            self.cancel(name)
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Capture handling
    # ------------------------------------------------------------------

    def _on_capture(
        self,
        flow: _Flow,
        name: str,
        outcome: Union[RedirectCapture, StateMismatchError],
    ) -> None:
        try:
            self._executor.submit(self._complete_from_capture, flow, outcome)
        except RuntimeError:
            logger.warning("Dropped redirect for '%s': coordinator is shut down", name)

    def _complete_from_capture(
        self, flow: _Flow, outcome: Union[RedirectCapture, StateMismatchError]
    ) -> None:
        self._cancel_timeout(flow)
        if isinstance(outcome, StateMismatchError):
            self._fail(flow, outcome)
            return
        try:
            code = outcome.raise_for_error()
        except ProviderDeniedError as exc:
            self._fail(flow, exc)
            return

        try:
            self.registry.transition(flow.name, AuthStatus.EXCHANGING, expected_state=flow.state)
        except (NotFoundError, InvalidTransitionError) as exc:
            logger.info("Ignoring redirect for '%s': %s", flow.name, exc)
            return
        self._release_listener(flow)

        try:
            result = flow.exchanger.exchange_code(flow.name, code, flow.redirect_uri)
        except TokenprobeError as exc:
            self._fail(flow, exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error exchanging code for '%s'", flow.name)
            self._fail(flow, exc)
            return
        self._succeed(flow, result)

    def _on_timeout(self, flow: _Flow) -> None:
        # Only a flow still waiting for its redirect can time out.
        timeout = self._settings.listener.timeout_seconds
        exc = TimeoutError_(
            f"No redirect received for '{flow.name}' within {timeout:g} seconds"
        )
        if self._fail(flow, exc, expected_status=AuthStatus.LISTENING):
            logger.warning("Flow '%s' timed out waiting for the redirect", flow.name)

    # ------------------------------------------------------------------
    # Settling
    # ------------------------------------------------------------------

    def _succeed(self, flow: _Flow, result: TokenResult) -> bool:
        try:
            self.registry.transition(flow.name, AuthStatus.COMPLETED, expected_state=flow.state)
        except (NotFoundError, InvalidTransitionError):
            logger.info("Discarding token result for '%s': flow already ended", flow.name)
            return False
        flow.ended = AuthStatus.COMPLETED
        self._finish(flow)
        self.channel.publish(flow.name, result, expected=flow.future)
        logger.info("Flow '%s' completed", flow.name)
        return True

    def _fail(
        self,
        flow: _Flow,
        exc: BaseException,
        expected_status: Optional[AuthStatus] = None,
    ) -> bool:
        try:
            self.registry.transition(
                flow.name,
                AuthStatus.FAILED,
                expected_state=flow.state,
                expected_status=expected_status,
            )
        except (NotFoundError, InvalidTransitionError):
            return False
        flow.ended = AuthStatus.FAILED
        self._finish(flow)
        self.channel.fail(flow.name, exc, expected=flow.future)
        logger.info("Flow '%s' failed: %s", flow.name, exc)
        return True

    def _finish(self, flow: _Flow) -> None:
        """Release everything *flow* holds and forget it."""
        self._cancel_timeout(flow)
        self._release_listener(flow)
        self.registry.remove(flow.name, expected_state=flow.state)
        with self._lock:
            if self._flows.get(flow.name) is flow:
                del self._flows[flow.name]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _current_flow(self, name: str) -> _Flow:
        with self._lock:
            flow = self._flows.get(name)
        if flow is None:
            raise NotFoundError(f"No authorization flow named '{name}'")
        return flow

    def _release_listener(self, flow: _Flow) -> None:
        if flow.listener is not None:
            self._listeners.stop(flow.name, flow.listener)

    def _schedule_timeout(self, flow: _Flow) -> None:
        timeout = self._settings.listener.timeout_seconds
        if not timeout:
            return
        timer = threading.Timer(timeout, self._on_timeout, args=(flow,))
        timer.daemon = True
        flow.timer = timer
        timer.start()

    def _cancel_timeout(self, flow: _Flow) -> None:
        if flow.timer is not None:
            flow.timer.cancel()

    def _listener_address(self, client: ResolvedClient) -> tuple[str, int, str]:
        """Return ``(host, port, path)`` to bind for *client*.

        A redirect URL with an explicit port pins the listener there; without
        one the OS picks a free port.
        """
        settings = self._settings.listener
        if client.redirect_url:
            parsed = urlparse(client.redirect_url)
            return (
                parsed.hostname or settings.host,
                parsed.port or 0,
                parsed.path or "/",
            )
        return settings.host, 0, settings.callback_path

    def _default_exchanger(self, client: ResolvedClient) -> TokenExchanger:
        http = self._settings.http
        return TokenExchanger(client, timeout=http.timeout, verify_ssl=http.verify_ssl)
