"""Tests for the content guard (pure detection and the block decision)."""

import pytest

from msgguard.moderation.content_guard import MAX_MATCHED_VALUE_LENGTH, detect_flags, should_block
from msgguard.moderation.models import ContentFlag, FlagType
from msgguard.policies.models import GuardMode


def _types(flags):
    return sorted(f.type.value for f in flags)


def test_clean_body_has_no_flags():
    assert detect_flags("See you at practice on Tuesday", []) == []


def test_empty_and_blank_bodies():
    assert detect_flags("", ["word"]) == []
    assert detect_flags("   \n ", ["word"]) == []


def test_detects_email():
    flags = detect_flags("write to me at Jane.Doe@example.org please", [])
    assert flags == [ContentFlag(FlagType.email, "Jane.Doe@example.org")]


def test_detects_url_with_scheme_and_www():
    flags = detect_flags("look at https://example.com/page and www.example.net", [])
    values = [f.matched_value for f in flags if f.type == FlagType.url]
    assert "https://example.com/page" in values
    assert "www.example.net" in values


def test_detects_phone_with_separators():
    flags = detect_flags("call me on +33 6 12 34 56 78 tonight", [])
    assert _types(flags) == ["phone"]
    assert flags[0].matched_value.startswith("+33")


def test_short_digit_runs_are_not_phones():
    assert detect_flags("we won 12-3 and scored 1234567", []) == []


def test_keyword_match_is_case_insensitive():
    flags = detect_flags("Add me on WhatsApp", ["whatsapp"])
    assert flags == [ContentFlag(FlagType.keyword, "whatsapp")]


def test_duplicate_findings_are_merged():
    flags = detect_flags("a@b.io A@B.IO a@b.io", [])
    assert len(flags) == 1
    assert flags[0].type == FlagType.email


def test_matched_values_are_truncated():
    long_url = "https://example.com/" + "a" * 300
    flags = detect_flags(long_url, [])
    assert flags
    assert all(len(f.matched_value) <= MAX_MATCHED_VALUE_LENGTH for f in flags)


@pytest.mark.parametrize(
    "body",
    ["@@@", "http://", "+++---...", "((((((((", "\x00\x01", "é" * 500, "a@b", "www."],
)
def test_odd_inputs_never_raise(body):
    detect_flags(body, ["", "  ", "x"])


@pytest.mark.parametrize(
    "mode, minor, has_flags, expected",
    [
        (GuardMode.block, True, True, True),
        (GuardMode.block, False, True, False),
        (GuardMode.block, True, False, False),
        (GuardMode.flag, True, True, False),
        (GuardMode.off, True, True, False),
    ],
)
def test_should_block(mode, minor, has_flags, expected):
    flags = [ContentFlag(FlagType.keyword, "x")] if has_flags else []
    assert should_block(mode, minor, flags) is expected
