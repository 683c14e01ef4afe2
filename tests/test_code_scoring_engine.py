"""Tests for CodeScoringEngine and score aggregation."""

import pytest

from code_metrics import CodeMetrics
from code_scoring_engine import CodeScoringEngine, aggregate_scores, version_block, RULESET_HASH


def metrics(lines=0, functions=0, conditionals=0, loops=0):
    return CodeMetrics(
        lines_of_code=lines, functions=functions, conditionals=conditionals,
        loops=loops, events=0, modifiers=0,
    )


DOCUMENTED_CONTRACT = """// SPDX-License-Identifier: MIT
// Simple vault
contract Vault {
    event Deposited(address who, uint amount);
    /// @param amount wei to deposit
    function deposit(uint amount) public {
        require(amount > 0);
    }
}"""


class TestComplexity:

    def setup_method(self):
        self.engine = CodeScoringEngine()

    def test_weighted_counts(self):
        # 0.3*10 + 5*2 + 3*3 + 4*1 = 26
        assert self.engine.score_complexity(metrics(10, 2, 3, 1)) == 26

    def test_rounds_half_away(self):
        # 0.3*5 = 1.5 -> 2
        assert self.engine.score_complexity(metrics(lines=5)) == 2

    def test_clamped_to_100(self):
        assert self.engine.score_complexity(metrics(lines=1000, functions=50)) == 100

    def test_empty_is_zero(self):
        assert self.engine.score_complexity(metrics()) == 0


class TestQuality:

    def setup_method(self):
        self.engine = CodeScoringEngine()

    def test_plain_text_gets_base_plus_short_lines(self):
        assert self.engine.score_quality("hello world") == 55

    def test_documented_contract(self):
        # 9 lines, 3 comment lines (incl. ///) -> ratio 33% capped at 20
        # 50 + 20 + 10 license + 15 natspec + 10 naming + 10 events + 5 short
        assert self.engine.score_quality(DOCUMENTED_CONTRACT) == 100

    def test_comment_ratio_bonus(self):
        code = "// note\nx = 1;\ny = 2;\nz = 3;"
        # 1/4 comment lines -> capped 20, plus short lines
        assert self.engine.score_quality(code) == 75

    def test_small_comment_ratio_is_rounded(self):
        code = "// a\n" + "x;\n" * 19
        # 21 lines incl. trailing blank, 1 comment -> +4.76, +5 short lines
        assert self.engine.score_quality(code) == 60

    def test_uppercase_function_names_get_no_naming_bonus(self):
        assert self.engine.score_quality("function Transfer() {}") == 55

    def test_long_lines_lose_bonus(self):
        assert self.engine.score_quality("x" * 120) == 50

    def test_empty_code(self):
        assert self.engine.score_quality("") == 55


class TestAggregate:

    def test_weights(self):
        assert aggregate_scores(security=100, complexity=8, quality=65) == 62

    def test_extremes(self):
        assert aggregate_scores(0, 0, 0) == 0
        assert aggregate_scores(100, 100, 100) == 100

    def test_half_rounds_up(self):
        # 0.4*0 + 0.3*5 + 0.3*0 = 1.5
        assert aggregate_scores(security=0, complexity=5, quality=0) == 2

    @pytest.mark.parametrize("scores", [(101, 0, 0), (0, -1, 0), (0, 0, 150)])
    def test_out_of_range_component_is_rejected(self, scores):
        with pytest.raises(ValueError):
            aggregate_scores(*scores)


class TestScoreCode:

    def setup_method(self):
        self.engine = CodeScoringEngine()

    def test_worked_example(self):
        result = self.engine.score_code("function check() { if (ok) {} }")
        assert result.complexity == 8
        assert result.security == 100
        assert result.quality == 65
        assert result.final_score == 62

    def test_selfdestruct_example(self):
        code = "selfdestruct(a);" * 5
        assert self.engine.score_code(code).security == 10

    def test_deterministic(self):
        first = self.engine.score_code(DOCUMENTED_CONTRACT)
        second = CodeScoringEngine().score_code(DOCUMENTED_CONTRACT)
        assert (first.complexity, first.security, first.quality, first.final_score) == (
            second.complexity, second.security, second.quality, second.final_score
        )

    @pytest.mark.parametrize("code", [
        "",
        "\n\n\n",
        "selfdestruct " * 50,
        "function f() { for (;;) { while (x) { if (y) {} } } }\n" * 200,
        "// " * 500,
        "éè \U0001F600 unicode",
    ])
    def test_all_scores_in_range(self, code):
        r = self.engine.score_code(code)
        for score in (r.complexity, r.security, r.quality, r.final_score):
            assert 0 <= score <= 100
        assert r.final_score == aggregate_scores(r.security, r.complexity, r.quality)

    def test_breakdown_and_markers(self):
        result = self.engine.score_code(DOCUMENTED_CONTRACT)
        assert any(entry[1] == "Input validation" for entry in result.security_breakdown)
        assert "License identifier present" in result.quality_markers

    def test_version_block_carries_ruleset(self):
        assert version_block()["ruleset_hash"] == RULESET_HASH

    def test_score_security_matches_rule_tables(self):
        assert self.engine.score_security("addr.call(x); selfdestruct(y);") == 55
