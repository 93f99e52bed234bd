"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- Token and URL rendering, secret masking
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from tokenprobe import output as output_module
from tokenprobe.models import TokenResult
from tokenprobe.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    mask_secret,
    reset_output,
    set_output,
)


@pytest.fixture()
def non_tty(monkeypatch):
    monkeypatch.setattr("tokenprobe.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    monkeypatch.setattr("tokenprobe.output._is_tty", lambda: True)


def _result() -> TokenResult:
    return TokenResult.from_token_response(
        "github",
        {
            "access_token": "gho_abcdefghijklmnop",
            "refresh_token": "ghr_0123456789abcdef",
            "token_type": "bearer",
        },
    )


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.RICH

    def test_no_color_flag_forces_plain(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, non_tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb_disables_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


class TestStdoutStderrDiscipline:
    def test_print_data_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_data("hello world")
        captured = capfd.readouterr()
        assert "hello world" in captured.out
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("status line")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "status line" in captured.err

    def test_quiet_suppresses_info_but_not_errors(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("hidden")
        mgr.error("shown")
        captured = capfd.readouterr()
        assert "hidden" not in captured.err
        assert "Error: shown" in captured.err

    def test_debug_only_when_verbose(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("nope")
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("yes")
        captured = capfd.readouterr()
        assert "nope" not in captured.err
        assert "[debug] yes" in captured.err


class TestTokenOutput:
    def test_mask_secret_keeps_tail(self):
        assert mask_secret("abcdefghijkl") == "********ijkl"

    def test_mask_secret_short_value_fully_hidden(self):
        assert mask_secret("abc") == "***"
        assert mask_secret(None) == ""

    def test_json_token_uses_camel_case_and_masks(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON)
        mgr.print_token(_result())
        data = json.loads(capfd.readouterr().out)
        assert data["name"] == "github"
        assert data["accessToken"].endswith("mnop")
        assert "gho_" not in data["accessToken"]
        assert data["refreshToken"].endswith("cdef")
        assert data["extra"] == {"token_type": "bearer"}

    def test_reveal_prints_tokens(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON)
        mgr.print_token(_result(), reveal=True)
        data = json.loads(capfd.readouterr().out)
        assert data["accessToken"] == "gho_abcdefghijklmnop"
        assert data["refreshToken"] == "ghr_0123456789abcdef"

    def test_plain_token_is_tab_separated(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_token(_result(), reveal=True)
        lines = capfd.readouterr().out.splitlines()
        assert "accessToken\tgho_abcdefghijklmnop" in lines
        assert 'extra\t{"token_type": "bearer"}' in lines

    def test_print_url_json(self, capfd, non_tty):
        OutputManager(format=OutputFormat.JSON).print_url("https://a.example/?x=1")
        assert json.loads(capfd.readouterr().out) == {"url": "https://a.example/?x=1"}


class TestPrintTable:
    def test_plain_table(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_table(["Client", "Preset"], [["a", "p1"], ["b", "p2"]])
        assert capfd.readouterr().out.splitlines() == ["Client\tPreset", "a\tp1", "b\tp2"]

    def test_json_table(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON)
        mgr.print_table(["Client", "Preset"], [["a", "p1"]])
        assert json.loads(capfd.readouterr().out) == [{"Client": "a", "Preset": "p1"}]


class TestGlobalInstance:
    def test_get_output_creates_default_lazily(self):
        reset_output()
        assert output_module._output is None
        assert isinstance(get_output(), OutputManager)

    def test_set_output_installs_instance(self):
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        assert get_output() is mgr
