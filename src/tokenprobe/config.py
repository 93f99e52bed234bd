"""Configuration management with XDG paths, atomic writes, and client resolution.

This module handles all persistent configuration for tokenprobe:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tokenprobe/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_clients_dir`, :func:`get_presets_dir`.
* **Global config** -- A single :class:`~tokenprobe.models.GlobalConfig`
  JSON file storing listener, HTTP, and output defaults.
* **Clients and presets** -- ``<name>.client.json`` and
  ``<preset>.preset.json`` files. :func:`resolve_client` merges a client with
  its preset into a :class:`~tokenprobe.models.ResolvedClient`.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars, files, or interactive prompts.
* **Environment overrides** -- :func:`resolve_settings` applies
  ``TOKENPROBE_*`` variables on top of the global config.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from tokenprobe.exceptions import ConfigError, NotFoundError
from tokenprobe.models import (
    ClientConfig,
    GlobalConfig,
    ResolvedClient,
    ServicePreset,
)

_APP_NAME = "tokenprobe"
_CONFIG_FILENAME = "config.json"
_CLIENT_SUFFIX = ".client.json"
_PRESET_SUFFIX = ".preset.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/tokenprobe/`` (default ``~/.config/tokenprobe/``).
    On macOS/Windows: ``~/.tokenprobe/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tokenprobe/`` (default ``~/.local/share/tokenprobe/``).
    On macOS/Windows: ``~/.tokenprobe/logs/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_clients_dir() -> Path:
    """Return ``<config_dir>/clients/``, creating it if necessary."""
    path = get_config_dir() / "clients"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_presets_dir() -> Path:
    """Return ``<config_dir>/presets/``, creating it if necessary."""
    path = get_config_dir() / "presets"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def _write_model(path: Path, model: BaseModel, exclude_none: bool = True) -> None:
    data = model.model_dump(mode="json", exclude_none=exclude_none)
    _atomic_write(path, json.dumps(data, indent=2) + "\n")


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~tokenprobe.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    _write_model(_global_config_path(), config, exclude_none=False)


def resolve_settings(config: Optional[GlobalConfig] = None) -> GlobalConfig:
    """Apply ``TOKENPROBE_*`` environment overrides to the global config.

    Recognised variables:
        - ``TOKENPROBE_LISTENER_HOST`` -- interface the listener binds.
        - ``TOKENPROBE_LISTENER_TIMEOUT`` -- redirect timeout in seconds;
          ``0`` or ``none`` disables the timeout.

    Args:
        config: Base configuration. Loaded from disk when omitted.

    Returns:
        A copy of the configuration with overrides applied.

    Raises:
        ConfigError: If ``TOKENPROBE_LISTENER_TIMEOUT`` is not a number.
    """
    base = config if config is not None else load_global_config()
    resolved = base.model_copy(deep=True)

    host = os.environ.get("TOKENPROBE_LISTENER_HOST")
    if host:
        resolved.listener.host = host

    timeout = os.environ.get("TOKENPROBE_LISTENER_TIMEOUT")
    if timeout:
        if timeout.lower() == "none":
            resolved.listener.timeout_seconds = None
        else:
            try:
                value = float(timeout)
            except ValueError as exc:
                raise ConfigError(
                    f"TOKENPROBE_LISTENER_TIMEOUT must be a number, got '{timeout}'"
                ) from exc
            resolved.listener.timeout_seconds = value if value > 0 else None

    return resolved


# --- Clients and presets ---


def _client_path(name: str) -> Path:
    return get_clients_dir() / f"{name}{_CLIENT_SUFFIX}"


def _preset_path(name: str) -> Path:
    return get_presets_dir() / f"{name}{_PRESET_SUFFIX}"


def _list_stems(directory: Path, suffix: str) -> list[str]:
    return sorted(
        p.name[: -len(suffix)] for p in directory.glob(f"*{suffix}") if p.is_file()
    )


def list_clients() -> list[str]:
    """Return all client names found in the clients directory, sorted alphabetically."""
    return _list_stems(get_clients_dir(), _CLIENT_SUFFIX)


def list_presets() -> list[str]:
    """Return all preset names found in the presets directory, sorted alphabetically."""
    return _list_stems(get_presets_dir(), _PRESET_SUFFIX)


def load_client_config(name: str) -> ClientConfig:
    """Load and validate ``<name>.client.json``.

    Raises:
        NotFoundError: If the client file does not exist.
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _client_path(name)
    if not path.is_file():
        raise NotFoundError(f"Client '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ClientConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid client '{name}' at {path}: {exc}") from exc


def save_client_config(name: str, client: ClientConfig) -> None:
    """Persist a client configuration atomically."""
    _write_model(_client_path(name), client)


def load_preset(name: str) -> ServicePreset:
    """Load and validate ``<name>.preset.json``.

    Raises:
        NotFoundError: If the preset file does not exist.
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _preset_path(name)
    if not path.is_file():
        raise NotFoundError(f"Preset '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ServicePreset.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid preset '{name}' at {path}: {exc}") from exc


def save_preset(name: str, preset: ServicePreset) -> None:
    """Persist a service preset atomically."""
    _write_model(_preset_path(name), preset)


def resolve_client(name: str) -> ResolvedClient:
    """Load a client, its preset, and its secret into a :class:`ResolvedClient`.

    A literal ``client_secret`` wins over ``client_secret_source``.

    Raises:
        NotFoundError: If the client or its preset does not exist.
        ConfigError: If either file is invalid or the secret source
            cannot be resolved.
    """
    client = load_client_config(name)
    preset = load_preset(client.preset_name)

    secret = client.client_secret
    if secret is None and client.client_secret_source:
        secret = resolve_credential(client.client_secret_source)

    return ResolvedClient(
        name=name,
        preset=preset,
        client_id=client.client_id,
        client_secret=secret,
        redirect_url=client.redirect_url,
        scopes=client.scopes,
        token_auth_method=client.token_auth_method,
        extra_params=client.extra_params,
    )


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client secret: ")

    raise ConfigError(f"Unknown credential source format: {source}")
