import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from code_metrics import (
    CodeMetrics,
    EVENT_PATTERN,
    average_line_length,
    clamp_score,
    comment_lines,
    extract_metrics,
    round_half_away,
    split_lines,
)
from security_rules import evaluate_security

logger = logging.getLogger(__name__)

# Weighted final score (Security: 40%, Complexity: 30%, Quality: 30%)
SCORE_WEIGHTS = {"security": 0.4, "complexity": 0.3, "quality": 0.3}
MAX_SCORE = 100

VERSIONS = {
    "core": "code_scoring_v1.0",
    "complexity": "complexity_v1.0",
    "security": "security_patterns_v1.0",
    "quality": "quality_v1.0",
    "weights": "W_0.40_0.30_0.30",
}
RULESET_HASH = "rsh_4c1e9"  # bump if you change rules materially


@dataclass
class CodeScoreResult:
    """Scores for one piece of code, all clamped to [0, 100]"""
    complexity: int
    security: int
    quality: int
    final_score: int
    metrics: CodeMetrics
    security_breakdown: List[Any] = field(default_factory=list)
    quality_markers: List[str] = field(default_factory=list)


def aggregate_scores(security: int, complexity: int, quality: int) -> int:
    """Weighted combination of already-clamped component scores."""
    for score in (security, complexity, quality):
        if not 0 <= score <= MAX_SCORE:
            raise ValueError(f"component score out of range: {score}")
    return round_half_away(
        security * SCORE_WEIGHTS["security"]
        + complexity * SCORE_WEIGHTS["complexity"]
        + quality * SCORE_WEIGHTS["quality"]
    )


def version_block() -> Dict[str, str]:
    out = dict(VERSIONS)
    out["ruleset_hash"] = RULESET_HASH
    return out


class CodeScoringEngine:
    """
    Deterministic three-axis code scorer

    Complexity: structural proxy for cyclomatic complexity (no control-flow graph)
    Security:   fixed risk / mitigation pattern tables, see security_rules
    Quality:    documentation and convention signals, start at 50 and earn up
    """

    def __init__(self):
        self._initialize_complexity_weights()
        self._initialize_quality_patterns()

    def _initialize_complexity_weights(self):
        """Per-occurrence contribution of each structural count"""
        self.COMPLEXITY_WEIGHTS = {
            "lines_of_code": 0.3,
            "functions": 5,
            "conditionals": 3,
            "loops": 4,
        }

    def _initialize_quality_patterns(self):
        """Documentation and convention markers"""
        self.QUALITY_BASE = 50
        self.COMMENT_RATIO_CAP = 20
        self.MAX_AVG_LINE_LENGTH = 80

        self.LICENSE_MARKER = "SPDX-License-Identifier"
        self.DOC_MARKERS = ("@dev", "@param", "@return")
        self.NAMING_PATTERN = re.compile(r"function\s+[a-z][a-zA-Z0-9]*", re.ASCII)

        self.QUALITY_BONUSES = {
            "license": 10,
            "doc_markers": 15,
            "naming": 10,
            "events": 10,
            "short_lines": 5,
        }

    def score_code(self, code: str) -> CodeScoreResult:
        """Extract metrics once, then run all three scorers over the same text."""
        metrics = extract_metrics(code)

        # LAYER 1: Structure
        complexity = self.score_complexity(metrics)

        # LAYER 2: Risk patterns
        security_result = evaluate_security(code, verbose=True)
        security = security_result["final_score"]

        # LAYER 3: Documentation
        quality, markers = self._score_quality_with_markers(code)

        final_score = aggregate_scores(security, complexity, quality)

        logger.debug(
            "Scored %d lines: complexity=%d security=%d quality=%d final=%d",
            metrics.lines_of_code, complexity, security, quality, final_score,
        )

        return CodeScoreResult(
            complexity=complexity,
            security=security,
            quality=quality,
            final_score=final_score,
            metrics=metrics,
            security_breakdown=security_result["breakdown"],
            quality_markers=markers,
        )

    def score_complexity(self, metrics: CodeMetrics) -> int:
        w = self.COMPLEXITY_WEIGHTS
        raw = (
            metrics.lines_of_code * w["lines_of_code"]
            + metrics.functions * w["functions"]
            + metrics.conditionals * w["conditionals"]
            + metrics.loops * w["loops"]
        )
        return clamp_score(raw)

    def score_security(self, code: str) -> int:
        return evaluate_security(code)["final_score"]

    def score_quality(self, code: str) -> int:
        return self._score_quality_with_markers(code)[0]

    def _score_quality_with_markers(self, code: str):
        code = code or ""
        total_lines = len(split_lines(code))
        bonus = self.QUALITY_BONUSES
        score = self.QUALITY_BASE
        markers = []

        comment_ratio = len(comment_lines(code)) / max(total_lines, 1)
        score += min(self.COMMENT_RATIO_CAP, comment_ratio * 100)
        if comment_ratio:
            markers.append(f"Comment ratio {comment_ratio:.0%}")

        if self.LICENSE_MARKER in code:
            score += bonus["license"]
            markers.append("License identifier present")

        if any(marker in code for marker in self.DOC_MARKERS):
            score += bonus["doc_markers"]
            markers.append("Structured documentation tags")

        if self.NAMING_PATTERN.search(code):
            score += bonus["naming"]
            markers.append("Lowercase-leading function names")

        if EVENT_PATTERN.search(code):
            score += bonus["events"]
            markers.append("Declares events")

        if average_line_length(code) < self.MAX_AVG_LINE_LENGTH:
            score += bonus["short_lines"]
            markers.append("Short average line length")

        return clamp_score(score), markers


# Simple usage example
if __name__ == "__main__":
    engine = CodeScoringEngine()

    sample = """// SPDX-License-Identifier: MIT
contract Vault {
    event Deposited(address who, uint amount);
    modifier onlyOwner() { require(msg.sender == owner); _; }
    /// @param amount wei to deposit
    function deposit(uint amount) public {
        require(amount > 0);
        emit Deposited(msg.sender, amount);
    }
}
"""
    result = engine.score_code(sample)
    print(f"Complexity: {result.complexity}")
    print(f"Security: {result.security}")
    print(f"Quality: {result.quality}")
    print(f"Final: {result.final_score}")
    print(f"Security breakdown: {result.security_breakdown}")
    print(f"Quality markers: {result.quality_markers}")
