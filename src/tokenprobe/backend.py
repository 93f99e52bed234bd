"""Public operations bound to the on-disk client configuration.

:class:`Backend` is what a UI bridge or the CLI calls. Each operation takes a
flow *name*, which is also the name of the ``<name>.client.json`` file the
client configuration is loaded from.

Operations:

* :meth:`Backend.get_client_config` -- the stored client configuration.
* :meth:`Backend.start_server` -- start a redirect listener, return the
  authorization URL.
* :meth:`Backend.stop_server` -- stop the listener and cancel the flow.
* :meth:`Backend.get_authorize_url` -- authorization URL for a manual flow.
* :meth:`Backend.exchange_redirect_url` -- finish a manual flow.
* :meth:`Backend.on_token_response` -- subscribe to the ``token-response``
  push for a name.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import CancelledError, Future
from typing import Optional, Union

from tokenprobe.config import load_client_config, resolve_client, resolve_settings
from tokenprobe.coordinator import FlowCoordinator
from tokenprobe.models import ClientConfig, GlobalConfig, TokenResult

logger = logging.getLogger(__name__)

TokenResponseCallback = Callable[[Union[TokenResult, BaseException]], None]


class Backend:
    """Facade over :class:`FlowCoordinator` for one process.

    Args:
        settings: Global settings; loaded from the config directory (with
            ``TOKENPROBE_*`` overrides) when omitted.
        coordinator: An existing coordinator to use instead of building one.
    """

    def __init__(
        self,
        settings: Optional[GlobalConfig] = None,
        coordinator: Optional[FlowCoordinator] = None,
    ) -> None:
        self.settings = settings or resolve_settings()
        self.coordinator = coordinator or FlowCoordinator(
            client_loader=resolve_client, settings=self.settings
        )

    def __enter__(self) -> "Backend":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_client_config(self, name: str) -> ClientConfig:
        return load_client_config(name)

    def start_server(self, name: str) -> str:
        """Start the redirect listener for *name* and return the authorization URL.

        The listener stays up until the redirect is handled, the redirect
        timeout fires, or :meth:`stop_server` is called.
        """
        return self.coordinator.start_authorization(name, use_local_listener=True)

    def stop_server(self, name: str) -> None:
        """Stop *name*'s listener and cancel its flow. Idempotent."""
        self.coordinator.cancel(name)

    def get_authorize_url(self, name: str) -> str:
        """Start a manual (listener-less) flow and return its authorization URL."""
        return self.coordinator.start_authorization(name, use_local_listener=False)

    def exchange_redirect_url(self, name: str, redirect_url: str) -> TokenResult:
        """Exchange the code carried by a pasted redirect URL."""
        return self.coordinator.complete_with_redirect_url(name, redirect_url)

    def on_token_response(self, name: str, callback: TokenResponseCallback) -> Future[TokenResult]:
        """Call *callback* once with *name*'s outcome.

        The callback receives the :class:`TokenResult`, or the exception that
        ended the flow (``CancelledError`` after :meth:`stop_server`).
        """

        def deliver(future: Future[TokenResult]) -> None:
            try:
                payload: Union[TokenResult, BaseException] = future.result()
            except CancelledError as exc:
                payload = exc
            except Exception as exc:
                payload = exc
            callback(payload)

        future = self.coordinator.subscribe(name)
        future.add_done_callback(deliver)
        return future

    def wait_for_token(self, name: str, timeout: Optional[float] = None) -> TokenResult:
        return self.coordinator.wait(name, timeout=timeout)

    def close(self) -> None:
        """Cancel every active flow and release listeners and workers."""
        self.coordinator.shutdown()
