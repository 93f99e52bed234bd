"""Tests for the one-shot, name-addressed result channel."""

from __future__ import annotations

from concurrent.futures import CancelledError

import pytest

from tokenprobe.channel import ResultChannel
from tokenprobe.exceptions import TimeoutError_
from tokenprobe.models import TokenResult


def _result(name: str, token: str = "AT1") -> TokenResult:
    return TokenResult(name=name, access_token=token)


class TestResultChannel:
    def test_publish_resolves_once(self) -> None:
        channel = ResultChannel()
        future = channel.open("x")
        assert channel.publish("x", _result("x")) is True
        assert channel.publish("x", _result("x", "AT2")) is False
        assert future.result(timeout=1).access_token == "AT1"

    def test_fail_delivers_exception(self) -> None:
        channel = ResultChannel()
        future = channel.open("x")
        assert channel.fail("x", TimeoutError_("late")) is True
        with pytest.raises(TimeoutError_, match="late"):
            future.result(timeout=1)

    def test_cancel_blocks_later_publish(self) -> None:
        channel = ResultChannel()
        future = channel.open("x")
        assert channel.cancel("x") is True
        assert channel.publish("x", _result("x")) is False
        with pytest.raises(CancelledError):
            future.result(timeout=1)

    def test_open_returns_pending_future(self) -> None:
        channel = ResultChannel()
        assert channel.open("x") is channel.open("x")

    def test_open_replaces_finished_future(self) -> None:
        channel = ResultChannel()
        first = channel.open("x")
        channel.publish("x", _result("x"))
        second = channel.open("x")
        assert second is not first
        assert not second.done()

    def test_expected_future_guards_stale_delivery(self) -> None:
        channel = ResultChannel()
        stale = channel.open("x")
        channel.cancel("x")
        fresh = channel.open("x")
        assert channel.publish("x", _result("x"), expected=stale) is False
        assert not fresh.done()
        assert channel.publish("x", _result("x"), expected=fresh) is True

    def test_names_do_not_cross(self) -> None:
        channel = ResultChannel()
        a = channel.open("a")
        b = channel.open("b")
        channel.publish("b", _result("b", "ATb"))
        channel.publish("a", _result("a", "ATa"))
        assert a.result(timeout=1).access_token == "ATa"
        assert b.result(timeout=1).access_token == "ATb"

    def test_unknown_name_is_not_delivered(self) -> None:
        channel = ResultChannel()
        assert channel.publish("ghost", _result("ghost")) is False
        assert channel.get("ghost") is None

    def test_done_callback_may_reenter_channel(self) -> None:
        channel = ResultChannel()
        seen: list[bool] = []
        channel.open("x").add_done_callback(lambda f: seen.append(channel.get("x") is f))
        channel.publish("x", _result("x"))
        assert seen == [True]

    def test_discard_forgets_finished_future(self) -> None:
        channel = ResultChannel()
        channel.open("x")
        channel.discard("x")
        assert channel.get("x") is not None
        channel.publish("x", _result("x"))
        channel.discard("x")
        assert channel.get("x") is None

    def test_replace_gives_new_flow_its_own_future(self) -> None:
        channel = ResultChannel()
        settling = channel.open("x")
        fresh = channel.open("x", replace=True)
        assert fresh is not settling
        assert channel.get("x") is fresh

        assert channel.publish("x", _result("x", "old"), expected=settling) is True
        assert settling.result(timeout=1).access_token == "old"
        assert not fresh.done()

    def test_fail_and_cancel_reach_only_the_expected_future(self) -> None:
        channel = ResultChannel()
        first = channel.open("x")
        second = channel.open("x", replace=True)
        channel.fail("x", TimeoutError_("late"), expected=first)
        channel.cancel("x", expected=first)
        assert isinstance(first.exception(timeout=1), TimeoutError_)
        assert not second.done()
