"""Canonical Pydantic models shared across all tokenprobe modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`ServicePreset`, :class:`ClientConfig`, :class:`ListenerSettings`,
    :class:`HttpSettings`, and :class:`GlobalConfig`.
    :class:`ResolvedClient` is the in-memory merge of a client with its
    preset.

**Flow models** -- produced and consumed by the exchange coordinator:
    :class:`AuthStatus`, :class:`AuthRequest`, :class:`RedirectCapture`, and
    :class:`TokenResult`.

All models use Pydantic v2.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tokenprobe.exceptions import ProviderDeniedError


# --- Configuration models ---


class ServicePreset(BaseModel):
    """Provider endpoints shared by every client of one service.

    Stored as ``<preset>.preset.json`` under the presets directory.

    Example::

        ServicePreset(
            auth_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            base_url="https://api.github.com",
        )
    """

    auth_url: str = Field(description="Provider authorization endpoint")
    token_url: Optional[str] = Field(
        default=None, description="Provider token endpoint"
    )
    base_url: Optional[str] = Field(
        default=None, description="API base URL the tokens are meant for"
    )


class ClientConfig(BaseModel):
    """One registered OAuth client, stored as ``<name>.client.json``.

    The ``name`` of a client is its file stem and doubles as the flow name
    used by :class:`~tokenprobe.coordinator.FlowCoordinator`.
    """

    preset_name: str = Field(description="Name of the ServicePreset to use")
    client_id: str
    client_secret: Optional[str] = Field(
        default=None, description="Literal client secret (prefer client_secret_source)"
    )
    client_secret_source: Optional[str] = Field(
        default=None, description="Secret source: env:VAR, file:/path, prompt"
    )
    redirect_url: Optional[str] = Field(
        default=None,
        description="Registered redirect URI. Without an explicit port the "
        "listener binds an ephemeral one.",
    )
    scopes: list[str] = Field(default_factory=list)
    token_auth_method: Literal["client_secret_basic", "client_secret_post"] = Field(
        default="client_secret_basic",
        description="How client credentials are sent to the token endpoint",
    )
    extra_params: dict[str, str] = Field(
        default_factory=dict,
        description="Additional query parameters for the authorization URL",
    )


class ResolvedClient(BaseModel):
    """A :class:`ClientConfig` merged with its :class:`ServicePreset`.

    The client secret has already been resolved from its source.
    """

    name: str
    preset: ServicePreset
    client_id: str
    client_secret: Optional[str] = None
    redirect_url: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    token_auth_method: str = "client_secret_basic"
    extra_params: dict[str, str] = Field(default_factory=dict)

    @property
    def auth_url(self) -> str:
        return self.preset.auth_url

    @property
    def token_url(self) -> Optional[str]:
        return self.preset.token_url


class ListenerSettings(BaseModel):
    """Local redirect listener settings stored in :class:`GlobalConfig`."""

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    callback_path: str = Field(
        default="/callback",
        description="Callback path used when the client has no redirect_url",
    )
    timeout_seconds: Optional[float] = Field(
        default=300.0,
        description="Seconds to wait for the redirect (None = wait forever)",
    )
    state_mismatch: Literal["fatal", "ignore"] = Field(
        default="fatal",
        description="fatal: fail the flow on a bad state; ignore: keep waiting",
    )


class HttpSettings(BaseModel):
    """Token endpoint HTTP settings stored in :class:`GlobalConfig`."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/tokenprobe/config.json``.

    Loaded and saved by :func:`~tokenprobe.config.load_global_config` and
    :func:`~tokenprobe.config.save_global_config`. Environment variables
    override a subset of these fields; see
    :func:`~tokenprobe.config.resolve_settings`.
    """

    listener: ListenerSettings = Field(default_factory=ListenerSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    open_browser: bool = True


# --- Flow models ---


class AuthStatus(str, enum.Enum):
    """Lifecycle status of an :class:`AuthRequest`."""

    PENDING = "pending"
    LISTENING = "listening"
    EXCHANGING = "exchanging"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AuthStatus.COMPLETED, AuthStatus.FAILED, AuthStatus.CANCELLED)


class AuthRequest(BaseModel):
    """An in-flight authorization attempt, owned by the registry.

    ``state`` is the anti-CSRF token embedded in the authorization URL. It
    also identifies this particular attempt, so a late callback for an
    earlier attempt under the same name can be told apart.
    """

    name: str
    state: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: AuthStatus = AuthStatus.PENDING
    redirect_uri: Optional[str] = None


class RedirectCapture(BaseModel):
    """Query parameters captured from one provider redirect."""

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    def raise_for_error(self) -> str:
        """Return the authorization code.

        Raises:
            ProviderDeniedError: If the provider sent an error, or no code.
        """
        if self.error:
            raise ProviderDeniedError(self.error, self.error_description)
        if not self.code:
            raise ProviderDeniedError("no_code", "Redirect carried no authorization code")
        return self.code


class TokenResult(BaseModel):
    """Tokens obtained for one named flow.

    Every provider field other than ``access_token`` and ``refresh_token``
    is kept verbatim in :attr:`extra`. Dumping ``by_alias=True`` yields the
    camelCase ``token-response`` payload (``accessToken``, ``refreshToken``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_token_response(cls, name: str, data: dict[str, Any]) -> "TokenResult":
        """Build a result from a parsed token endpoint JSON object."""
        extra = {
            k: v for k, v in data.items() if k not in ("access_token", "refresh_token")
        }
        return cls(
            name=name,
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            extra=extra,
        )
