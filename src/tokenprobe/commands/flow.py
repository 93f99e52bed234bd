"""Flow commands -- run an authorization-code flow for a configured client.

* ``tokenprobe login NAME`` starts a local redirect listener, opens the
  browser and waits for the provider to redirect back.
* ``tokenprobe manual NAME`` skips the listener: the user pastes the URL the
  browser was redirected to.
* ``tokenprobe url NAME`` only prints the authorization URL.

Typical workflow::

    tokenprobe presets add github --auth-url https://github.com/login/oauth/authorize \\
        --token-url https://github.com/login/oauth/access_token
    tokenprobe clients add github --preset github --client-id abc \\
        --client-secret-source env:GITHUB_SECRET
    tokenprobe login github
"""

from __future__ import annotations

import webbrowser
from typing import TYPE_CHECKING, Optional

import typer

from tokenprobe.commands import exit_on_error
from tokenprobe.exceptions import StateMismatchError
from tokenprobe.models import GlobalConfig, TokenResult
from tokenprobe.output import info, print_token, print_url, success, suggest, warning

if TYPE_CHECKING:
    from tokenprobe.backend import Backend

_MANUAL_ATTEMPTS = 3


def _settings(timeout: Optional[float] = None) -> GlobalConfig:
    from tokenprobe.config import resolve_settings

    settings = resolve_settings()
    if timeout is not None:
        settings.listener.timeout_seconds = timeout if timeout > 0 else None
    return settings


def _show_url(url: str, open_browser: bool) -> None:
    info("Open this URL in your browser to authorize:")
    info(url)
    if open_browser:
        webbrowser.open(url)


def login_command(
    name: str = typer.Argument(help="Client name (the <name>.client.json file)."),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL without opening a browser."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the redirect (0 waits forever)."
    ),
    reveal: bool = typer.Option(False, "--reveal", help="Print tokens unmasked."),
) -> None:
    """Authorize through a local redirect listener.

    Example::

        tokenprobe login github
        tokenprobe --json login github --no-browser --reveal
    """
    from tokenprobe.backend import Backend

    with exit_on_error():
        settings = _settings(timeout)
        with Backend(settings=settings) as backend:
            url = backend.start_server(name)
            _show_url(url, settings.open_browser and not no_browser)
            info("Waiting for the provider redirect...")
            result = backend.wait_for_token(name)

    _report(name, result, reveal)


def manual_command(
    name: str = typer.Argument(help="Client name (the <name>.client.json file)."),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL without opening a browser."
    ),
    reveal: bool = typer.Option(False, "--reveal", help="Print tokens unmasked."),
) -> None:
    """Authorize by pasting the redirect URL back.

    A URL whose ``state`` does not match is rejected without ending the
    flow, and the prompt is repeated.

    Example::

        tokenprobe manual github
    """
    from tokenprobe.backend import Backend

    with exit_on_error():
        settings = _settings()
        with Backend(settings=settings) as backend:
            url = backend.get_authorize_url(name)
            _show_url(url, settings.open_browser and not no_browser)
            result = _exchange_pasted_url(backend, name)

    _report(name, result, reveal)


def _exchange_pasted_url(backend: Backend, name: str) -> TokenResult:
    attempts = 0
    while True:
        attempts += 1
        redirect_url = typer.prompt("Paste the redirect URL")
        try:
            return backend.exchange_redirect_url(name, redirect_url)
        except StateMismatchError as exc:
            if attempts >= _MANUAL_ATTEMPTS:
                raise
            warning(str(exc))
            suggest("Paste the URL from the authorization you just started.")


def url_command(
    name: str = typer.Argument(help="Client name (the <name>.client.json file)."),
) -> None:
    """Print the authorization URL for a client.

    No listener is started, and the flow is cancelled on exit, so the URL is
    for inspection only.

    Example::

        tokenprobe url github
    """
    from tokenprobe.backend import Backend

    with exit_on_error():
        with Backend(settings=_settings()) as backend:
            print_url(backend.get_authorize_url(name))


def _report(name: str, result: TokenResult, reveal: bool) -> None:
    success(f'Authorized "{name}".')
    print_token(result, reveal=reveal)
    if not reveal:
        suggest("Pass --reveal to print the tokens unmasked.")
