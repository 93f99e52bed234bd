"""Authorization-code-for-token exchange against a provider's token endpoint.

:class:`TokenExchanger` sends the ``authorization_code`` grant for one
resolved client and turns the JSON answer into a
:class:`~tokenprobe.models.TokenResult`. It never retries and never touches
the flow registry; the coordinator decides what a failure means for the
flow.

Failure mapping:

* transport failure (DNS, refused, timeout) -> :class:`NetworkError`
* non-2xx status, or an ``error`` field in the body -> :class:`ProviderError`
* non-JSON body, or no ``access_token`` -> :class:`MalformedResponseError`
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import ValidationError

from tokenprobe.exceptions import (
    ConfigError,
    MalformedResponseError,
    NetworkError,
    ProviderError,
    StateMismatchError,
)
from tokenprobe.models import RedirectCapture, ResolvedClient, TokenResult

logger = logging.getLogger(__name__)


def parse_redirect_query(redirect_url: str) -> RedirectCapture:
    """Extract ``code``, ``state``, ``error`` and ``error_description`` from a URL.

    Parameters are read from the query string and, failing that, from the
    fragment (some providers answer with ``#code=...``).
    """
    parsed = urlparse(redirect_url.strip())
    params = parse_qs(parsed.query)
    if not params and parsed.fragment:
        params = parse_qs(parsed.fragment)

    def first(key: str) -> Optional[str]:
        values = params.get(key)
        return values[0] if values else None

    return RedirectCapture(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )


class TokenExchanger:
    """Exchange authorization codes for tokens on behalf of one client.

    Args:
        client: The resolved client whose preset supplies ``token_url``.
        timeout: HTTP timeout in seconds for the token request.
        verify_ssl: Whether to verify the token endpoint's certificate.

    Example::

        exchanger = TokenExchanger(resolve_client("github"))
        result = exchanger.exchange_code("github", "abc", "http://127.0.0.1:8765/callback")
        print(result.access_token)
    """

    def __init__(
        self,
        client: ResolvedClient,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._verify_ssl = verify_ssl

    def exchange_code(
        self,
        name: str,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> TokenResult:
        """POST the authorization code to the token endpoint.

        Args:
            name: Flow name recorded in the returned result.
            code: The authorization code from the redirect.
            redirect_uri: The redirect URI used in the authorization URL.
                Omitted from the request when ``None``.

        Returns:
            The parsed :class:`TokenResult`.

        Raises:
            ConfigError: If the client's preset has no ``token_url``.
            NetworkError: On transport failures.
            ProviderError: On non-2xx answers or an OAuth error body.
            MalformedResponseError: If the body is not a token object.
        """
        token_url = self._client.token_url
        if not token_url:
            raise ConfigError(
                f"Preset for client '{self._client.name}' has no token_url"
            )

        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
        }
        if redirect_uri:
            data["redirect_uri"] = redirect_uri

        auth: Optional[httpx.BasicAuth] = None
        secret = self._client.client_secret
        if secret and self._client.token_auth_method == "client_secret_basic":
            auth = httpx.BasicAuth(self._client.client_id, secret)
        else:
            data["client_id"] = self._client.client_id
            if secret:
                data["client_secret"] = secret

        logger.debug("Exchanging code for '%s' at %s", name, token_url)
        try:
            response = httpx.post(
                token_url,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                verify=self._verify_ssl,
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Token exchange for '{name}' failed: {exc}") from exc

        token_data = self._parse_body(name, response)

        if response.status_code >= 400 or "error" in token_data:
            raise self._provider_error(name, response, token_data)

        if not isinstance(token_data.get("access_token"), str):
            raise MalformedResponseError(
                f"Token response for '{name}' is missing 'access_token'"
            )

        try:
            result = TokenResult.from_token_response(name, token_data)
        except ValidationError as exc:
            raise MalformedResponseError(
                f"Token response for '{name}' has an unexpected shape: {exc}"
            ) from exc
        logger.info("Token exchange for '%s' succeeded", name)
        return result

    def parse_redirect_url(self, redirect_url: str, expected_state: str) -> RedirectCapture:
        """Parse a pasted redirect URL and check its ``state``.

        Raises:
            StateMismatchError: If the URL's ``state`` differs from
                *expected_state* (including when it is missing).
            ProviderDeniedError: If the URL carries an OAuth ``error`` or
                no ``code``.
        """
        capture = parse_redirect_query(redirect_url)
        if capture.state != expected_state:
            raise StateMismatchError(
                "The redirect URL's state does not match the one issued for this flow"
            )
        capture.raise_for_error()
        return capture

    def exchange_redirect_url(
        self,
        name: str,
        redirect_url: str,
        expected_state: str,
        redirect_uri: Optional[str] = None,
    ) -> TokenResult:
        """Validate a pasted redirect URL and exchange the code it carries."""
        capture = self.parse_redirect_url(redirect_url, expected_state)
        return self.exchange_code(name, capture.raise_for_error(), redirect_uri)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_body(self, name: str, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            if response.status_code >= 400:
                raise ProviderError(
                    f"Token exchange for '{name}' failed with status "
                    f"{response.status_code}: {response.text}",
                    status_code=response.status_code,
                ) from exc
            raise MalformedResponseError(
                f"Token response for '{name}' is not valid JSON"
            ) from exc
        if not isinstance(body, dict):
            if response.status_code >= 400:
                raise ProviderError(
                    f"Token exchange for '{name}' failed with status {response.status_code}",
                    status_code=response.status_code,
                )
            raise MalformedResponseError(
                f"Token response for '{name}' is not a JSON object"
            )
        return body

    def _provider_error(
        self, name: str, response: httpx.Response, token_data: dict[str, Any]
    ) -> ProviderError:
        error = token_data.get("error")
        description = token_data.get("error_description")
        message = f"Token exchange for '{name}' failed"
        if response.status_code >= 400:
            message += f" with status {response.status_code}"
        if error:
            message += f": {error}"
            if description:
                message += f" - {description}"
        return ProviderError(
            message,
            status_code=response.status_code,
            error=str(error) if error is not None else None,
            description=str(description) if description is not None else None,
        )
