"""Tests for structural metric extraction."""

import pytest

from code_metrics import (
    average_line_length,
    clamp_score,
    comment_lines,
    extract_metrics,
    round_half_away,
)


SOLIDITY_SNIPPET = """pragma solidity ^0.8.0;

contract Counter {
    event Incremented(uint value);
    modifier onlyOwner() { require(msg.sender == owner); _; }

    function increment() public onlyOwner {
        for (uint i = 0; i < 3; i++) {
            if (count > 10) { count = 0; }
        }
        while (false) {}
        emit Incremented(count);
    }
}
"""


class TestExtractMetrics:

    def test_counts_structural_features(self):
        m = extract_metrics(SOLIDITY_SNIPPET)
        assert m.lines_of_code == 12
        assert m.functions == 1
        # if, for, while, require
        assert m.conditionals == 4
        assert m.loops == 2
        assert m.events == 1
        assert m.modifiers == 1

    def test_empty_text_is_degenerate_not_an_error(self):
        m = extract_metrics("")
        assert m.lines_of_code == 0
        assert m.functions == 0
        assert m.conditionals == 0

    def test_blank_lines_are_not_counted(self):
        assert extract_metrics("a\n\n   \n\tb\n").lines_of_code == 2

    def test_keywords_must_be_whole_words(self):
        m = extract_metrics("iffy forward whilst required")
        assert m.conditionals == 0
        assert m.loops == 0

    def test_non_code_text(self):
        m = extract_metrics("Dear hiring manager, for real, if possible.")
        assert m.conditionals == 2
        assert m.loops == 1
        assert m.functions == 0


class TestLineHelpers:

    def test_comment_lines_use_stripped_prefix(self):
        code = "// one\n   // two\nx = 1; // trailing\n"
        assert len(comment_lines(code)) == 2

    def test_average_line_length_counts_blank_lines(self):
        # lines: "abcd", "" -> 4 / 2
        assert average_line_length("abcd\n") == pytest.approx(2.0)


class TestScoreHelpers:

    @pytest.mark.parametrize("value,expected", [
        (0.5, 1), (1.5, 2), (2.5, 3), (61.9, 62), (61.4, 61), (-2.5, -3), (0.0, 0),
    ])
    def test_round_half_away_from_zero(self, value, expected):
        assert round_half_away(value) == expected

    def test_clamp_score_bounds(self):
        assert clamp_score(-40) == 0
        assert clamp_score(140.2) == 100
        assert clamp_score(99.5) == 100
        assert clamp_score(42.4) == 42
