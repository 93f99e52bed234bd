"""Exception hierarchy for tokenprobe.

All exceptions inherit from :class:`TokenprobeError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tokenprobe.exit_codes`.
The top-level error handler in :func:`tokenprobe.app.main` catches
``TokenprobeError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    TokenprobeError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- ConfigError              (exit 1)
    +-- NotFoundError            (exit 4)
    +-- DuplicateNameError       (exit 5)
    +-- InvalidTransitionError   (exit 5)
    |   +-- AlreadyInProgressError
    +-- BindError                (exit 7)
    +-- TimeoutError_            (exit 8)
    +-- NetworkError             (exit 6)
    +-- AuthError                (exit 3)
        +-- StateMismatchError
        +-- ProviderDeniedError
        +-- ProviderError
        +-- MalformedResponseError
"""

from __future__ import annotations

from typing import Optional

from tokenprobe.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_BIND_ERROR,
    EXIT_CONFLICT,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
)


class TokenprobeError(Exception):
    """Base exception for all tokenprobe errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`tokenprobe.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(TokenprobeError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(TokenprobeError):
    """Raised for configuration problems (missing client files, invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class NotFoundError(TokenprobeError):
    """Raised when an operation names a flow or client that does not exist."""

    exit_code = EXIT_NOT_FOUND


class DuplicateNameError(TokenprobeError):
    """Raised when a flow is started for a name that already has an active flow."""

    exit_code = EXIT_CONFLICT


class InvalidTransitionError(TokenprobeError):
    """Raised when a status change is not allowed by the flow state machine."""

    exit_code = EXIT_CONFLICT


class AlreadyInProgressError(InvalidTransitionError):
    """Raised when a second party tries to start the exchange for a flow already exchanging."""


class BindError(TokenprobeError):
    """Raised when the local redirect listener cannot acquire a port."""

    exit_code = EXIT_BIND_ERROR


class TimeoutError_(TokenprobeError):
    """Raised when no redirect arrives within the configured window.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    exit_code = EXIT_TIMEOUT


class NetworkError(TokenprobeError):
    """Raised on transport-level failures talking to the token endpoint.

    Retryable by caller policy; the core never retries on its own.
    """

    exit_code = EXIT_CONNECTION_ERROR


class AuthError(TokenprobeError):
    """Base class for failures reported by, or about, the authorization exchange."""

    exit_code = EXIT_AUTH_FAILURE


class StateMismatchError(AuthError):
    """Raised when a redirect's ``state`` does not match the one issued for the flow."""


class ProviderDeniedError(AuthError):
    """Raised when the provider redirects back with an OAuth ``error`` instead of a code.

    Args:
        error: The OAuth error code (e.g. ``access_denied``).
        description: Optional ``error_description`` sent by the provider.
    """

    def __init__(self, error: str, description: Optional[str] = None):
        message = f"Authorization denied by provider: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class ProviderError(AuthError):
    """Raised when the token endpoint answers non-2xx or reports an OAuth error.

    Attributes:
        status_code: HTTP status of the token response, if any.
        error: The OAuth ``error`` field from the response body, if present.
        description: The ``error_description`` field, if present.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.description = description


class MalformedResponseError(AuthError):
    """Raised when the token response cannot be parsed into a token result."""
