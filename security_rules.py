# security_rules.py
# Pattern-based security scoring for smart-contract style source code
#
# Every rule is a row in a table: pattern, weight, occurrence cap.
# Adding a rule means adding a row, never touching evaluate_security().

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import re

from code_metrics import clamp_score, count_matches

BASE_SCORE = 100
PENALTY_CAP = 3
BONUS_CAP = 2


@dataclass(frozen=True)
class ScoringRule:
    key: str
    label: str
    pattern: "re.Pattern[str]"
    weight: int
    cap: int

    def occurrences(self, code: str) -> int:
        return count_matches(self.pattern, code)

    def applied(self, occurrences: int) -> int:
        return self.weight * min(occurrences, self.cap)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "pattern": self.pattern.pattern,
            "weight": self.weight,
            "cap": self.cap,
        }


# ----------------------------
# Risk patterns (subtracted, max 3 occurrences each)
PENALTY_RULES: Tuple[ScoringRule, ...] = (
    ScoringRule("tx_origin", "tx.origin usage", re.compile(r"tx\.origin"), 20, PENALTY_CAP),
    ScoringRule("low_level_call", "Low-level call", re.compile(r"\.call\("), 15, PENALTY_CAP),
    ScoringRule("delegatecall", "Delegatecall usage", re.compile(r"delegatecall"), 25, PENALTY_CAP),
    ScoringRule("timestamp", "Timestamp dependency", re.compile(r"block\.timestamp"), 10, PENALTY_CAP),
    ScoringRule("block_number", "Block number dependency", re.compile(r"block\.number"), 8, PENALTY_CAP),
    ScoringRule("selfdestruct", "Selfdestruct usage", re.compile(r"selfdestruct"), 30, PENALTY_CAP),
)

# ----------------------------
# Mitigating patterns (added, max 2 occurrences each)
BONUS_RULES: Tuple[ScoringRule, ...] = (
    ScoringRule("require", "Input validation", re.compile(r"require\("), 5, BONUS_CAP),
    ScoringRule("modifier", "Function modifiers", re.compile(r"modifier\s+\w+", re.ASCII), 10, BONUS_CAP),
    ScoringRule("event", "Event logging", re.compile(r"event\s+\w+", re.ASCII), 8, BONUS_CAP),
    ScoringRule("mutability", "State mutability", re.compile(r"\bpure\b|\bview\b", re.ASCII), 5, BONUS_CAP),
)


def evaluate_security(code: str, verbose: bool = False) -> dict:
    """
    Start at 100, subtract capped penalties, add capped bonuses.
    Penalties and bonuses are independent of each other.
    """
    code = code or ""
    log: List[Tuple[str, str, int, int]] = []

    # ----------------------------
    # Penalties
    penalties_total = 0
    for rule in PENALTY_RULES:
        found = rule.occurrences(code)
        if found:
            penalty = rule.applied(found)
            penalties_total += penalty
            log.append(("penalty", rule.label, -penalty, found))

    # ----------------------------
    # Bonuses
    bonuses_total = 0
    for rule in BONUS_RULES:
        found = rule.occurrences(code)
        if found:
            bonus = rule.applied(found)
            bonuses_total += bonus
            log.append(("bonus", rule.label, +bonus, found))

    final_score = clamp_score(BASE_SCORE - penalties_total + bonuses_total)

    if verbose:
        return {
            "final_score": final_score,
            "penalties_total": penalties_total,
            "bonuses_total": bonuses_total,
            "breakdown": log,
        }
    return {"final_score": final_score}


def rules_table() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "penalties": [rule.to_dict() for rule in PENALTY_RULES],
        "bonuses": [rule.to_dict() for rule in BONUS_RULES],
    }
