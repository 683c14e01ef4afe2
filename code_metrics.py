# code_metrics.py
# Structural metric extraction for submitted source code
#
# Philosophy:
# - Purely textual pattern counting (no parsing, no AST)
# - Any text yields a count vector, even empty or non-code text
# - Extract once per analysis, share across all scorers

from dataclasses import dataclass
from typing import List
import math
import re

# ==============================================
# STRUCTURAL PATTERNS
# ==============================================

FUNCTION_PATTERN = re.compile(r"function\s+\w+", re.ASCII)
CONDITIONAL_PATTERN = re.compile(r"\b(?:if|while|for|require)\b", re.ASCII)
LOOP_PATTERN = re.compile(r"\b(?:for|while)\b", re.ASCII)
EVENT_PATTERN = re.compile(r"event\s+\w+", re.ASCII)
MODIFIER_PATTERN = re.compile(r"modifier\s+\w+", re.ASCII)

COMMENT_PREFIX = "//"


@dataclass(frozen=True)
class CodeMetrics:
    """Raw structural counts for one piece of code"""
    lines_of_code: int
    functions: int
    conditionals: int
    loops: int
    events: int
    modifiers: int


# ==============================================
# HELPER FUNCTIONS
# ==============================================

def split_lines(code: str) -> List[str]:
    """Split on newlines, keeping blank lines."""
    return code.split("\n")


def non_blank_lines(code: str) -> List[str]:
    return [line for line in split_lines(code) if line.strip()]


def comment_lines(code: str) -> List[str]:
    """Lines whose first non-whitespace characters open a line comment."""
    return [line for line in split_lines(code) if line.strip().startswith(COMMENT_PREFIX)]


def average_line_length(code: str) -> float:
    lines = split_lines(code)
    return sum(len(line) for line in lines) / len(lines)


def count_matches(pattern: "re.Pattern[str]", code: str) -> int:
    return sum(1 for _ in pattern.finditer(code))


# ==============================================
# SCORE HELPERS
# ==============================================

def round_half_away(value: float) -> int:
    """Round to the nearest int, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """Round half-away, then clamp into [low, high]."""
    return max(low, min(high, round_half_away(value)))


# ==============================================
# EXTRACTION
# ==============================================

def extract_metrics(code: str) -> CodeMetrics:
    """
    Count structural features of the code.
    Never raises on text input; degenerate text gives degenerate counts.
    """
    code = code or ""
    return CodeMetrics(
        lines_of_code=len(non_blank_lines(code)),
        functions=count_matches(FUNCTION_PATTERN, code),
        conditionals=count_matches(CONDITIONAL_PATTERN, code),
        loops=count_matches(LOOP_PATTERN, code),
        events=count_matches(EVENT_PATTERN, code),
        modifiers=count_matches(MODIFIER_PATTERN, code),
    )
