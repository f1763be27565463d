"""
Behavior classification and the interaction rule.

Both are pure functions over free-text goals. The interaction rule is
permissive: any shared whitespace-delimited token (stopwords
included) counts as an interaction.
"""

from .models import BehaviorPattern

# Checked in order; first rule with a matching keyword wins.
BEHAVIOR_RULES: list[tuple[BehaviorPattern, tuple[str, ...]]] = [
    (BehaviorPattern.ANALYZE, ("analyze", "study")),
    (BehaviorPattern.COLLABORATE, ("collaborate", "work")),
    (BehaviorPattern.OPTIMIZE, ("optimize", "improve")),
]

COLLABORATION_KEYWORD = "collaborate"


def classify_behavior(goals: str) -> BehaviorPattern:
    """Map goal text to a behavior pattern (LEARN when nothing matches)."""
    text = (goals or "").lower()
    for pattern, keywords in BEHAVIOR_RULES:
        if any(keyword in text for keyword in keywords):
            return pattern
    return BehaviorPattern.LEARN


def _shares_token(tokens_from: str, other: str) -> bool:
    return any(token in other for token in tokens_from.split())


def interacts(goals_a: str, goals_b: str) -> bool:
    """Decide whether two agents interact this tick.

    True if either goal text mentions "collaborate", or if any token of one
    text appears as a substring of the other. Tokens are tested in both
    directions so that interacts(a, b) == interacts(b, a).
    """
    a = (goals_a or "").lower()
    b = (goals_b or "").lower()
    if COLLABORATION_KEYWORD in a or COLLABORATION_KEYWORD in b:
        return True
    return _shares_token(a, b) or _shares_token(b, a)
