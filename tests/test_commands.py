"""Tests for the command dispatcher and its parsers."""

from __future__ import annotations

import pytest

from threadbridge.core.errors import BridgeError
from threadbridge.gateway.commands import CommandDispatcher, parse_join_argument, strip_verb


async def _noop(item, text) -> None:
    return None


async def _other(item, text) -> None:
    return None


class TestDispatch:
    def test_dispatch_matches_registered_verb(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("help", _noop)

        # Act / Assert
        assert commands.dispatch("/help") is _noop
        assert commands.dispatch("   /help me please") is _noop

    def test_dispatch_unknown_verb_is_none(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("help", _noop)

        # Act / Assert
        assert commands.dispatch("/nope") is None

    def test_plain_text_is_not_a_command(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("help", _noop)

        # Act / Assert
        assert commands.dispatch("help") is None
        assert commands.dispatch("see /help") is None
        assert commands.dispatch("") is None

    def test_verbs_are_case_sensitive(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("join", _noop)

        # Act / Assert
        assert commands.dispatch("/JOIN #a") is None

    def test_register_after_freeze_fails(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("help", _noop)
        commands.freeze()

        # Act / Assert
        with pytest.raises(BridgeError):
            commands.register("list", _other)
        assert commands.verbs() == ["help"]

    def test_duplicate_registration_fails(self):
        # Arrange
        commands = CommandDispatcher()
        commands.register("help", _noop)

        # Act / Assert
        with pytest.raises(BridgeError):
            commands.register("help", _other)


class TestParseJoin:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("/join #python", "#python"),
            ("  /join   #c++  ", "#c++"),
            ("/join ##linux-offtopic", "##linux-offtopic"),
            ("/join #node.js", "#node.js"),
            ("/join channel", "channel"),
        ],
    )
    def test_valid_channel(self, text, expected):
        assert parse_join_argument(text) == expected

    @pytest.mark.parametrize("text", ["/join", "/join   ", "join #a", "/join $$$"])
    def test_malformed(self, text):
        assert parse_join_argument(text) is None


class TestStripVerb:
    def test_strips_verb_and_one_space(self):
        assert strip_verb("/send hello there") == "hello there"

    def test_keeps_multiline_body(self):
        assert strip_verb("/send line one\nline two") == "line one\nline two"

    def test_verb_only(self):
        assert strip_verb("/send") == ""
