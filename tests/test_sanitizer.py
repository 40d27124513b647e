"""Tests for terminal escape stripping."""
from __future__ import annotations

import pytest

from agentstream.engine.sanitizer import sanitize


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("\x1b[31mred\x1b[0m text", "red text"),
        ("\x1b[1;32;40mbold\x1b[m", "bold"),
        ("\x1b[2K\x1b[1Gprogress", "progress"),
        ("\x1b]0;window title\x07after", "after"),
        ("\x1bPq#0;2;0;0;0\x1b\\image", "image"),
        ("\x1b_app command\x1b\\done", "done"),
        ("\x1b=keypad\x1b>", "keypad"),
        ("bell\x07 and\x08 backspace\x7f", "bell and backspace"),
        ("tab\tand\rcarriage\n", "tab\tand\rcarriage\n"),
        ("", ""),
        ("plain text", "plain text"),
    ],
)
def test_sanitize_strips_sequences(raw, expected):
    assert sanitize(raw) == expected


def test_unterminated_osc_degrades_to_two_character_escape():
    assert sanitize("\x1b]0;no terminator") == "0;no terminator"


def test_unterminated_dcs_does_not_swallow_line():
    assert sanitize("\x1bPpartial tail") == "artial tail"


@pytest.mark.parametrize(
    "raw",
    [
        "\x1b[31mred\x1b[0m",
        "\x1b\x1b[31mnested",
        "\x1b[\x1b[31m",
        "\x1b]\x1b]0;x\x07\x07",
        "\x1bP\x1bPq\x1b\\\x1b\\",
        "\x00\x1b\x01[31m",
        "\x1b\x1b\x1b",
        "ok \x1b[38;5;82mgreen\x1b[0m \x1b]8;;http://x\x07link\x1b]8;;\x07",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize(raw)
    assert sanitize(once) == once
