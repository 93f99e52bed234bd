"""Shared test fixtures for tokenprobe.

Provides isolated config directories, a sample preset and client, output
state management, and the CLI runner. Plain helpers live in ``helpers.py``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import write_json
from tokenprobe.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. CliRunner swaps those streams during a test, so a stale
    manager would write to a closed file in the next one.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME and XDG_DATA_HOME at tmp_path.

    Also clears ``TOKENPROBE_*`` overrides so tests never see the real
    user environment.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("tokenprobe.config._is_xdg_platform", lambda: True)
    for var in ["TOKENPROBE_LISTENER_HOST", "TOKENPROBE_LISTENER_TIMEOUT"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sample_client_files(isolated_config: Path) -> Path:
    """Write an ``example`` preset and an ``example`` client; return the config dir."""
    root = isolated_config / "config" / "tokenprobe"
    write_json(
        root / "presets" / "example.preset.json",
        {
            "auth_url": "https://auth.example.com/authorize",
            "token_url": "https://auth.example.com/token",
        },
    )
    write_json(
        root / "clients" / "example.client.json",
        {
            "preset_name": "example",
            "client_id": "client-123",
            "client_secret": "s3cret",
            "scopes": ["read", "write"],
        },
    )
    return root


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def json_output() -> OutputManager:
    """Install a JSON-format OutputManager for the test."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
