"""
Tests for behavior classification and the interaction rule.
"""

import pytest

from src.core import BehaviorPattern, classify_behavior, interacts


class TestClassifyBehavior:
    @pytest.mark.parametrize(
        "goals,expected",
        [
            ("analyze market trends", BehaviorPattern.ANALYZE),
            ("Study the ecosystem", BehaviorPattern.ANALYZE),
            ("collaborate with peers", BehaviorPattern.COLLABORATE),
            ("work on the backlog", BehaviorPattern.COLLABORATE),
            ("optimize the pipeline", BehaviorPattern.OPTIMIZE),
            ("IMPROVE throughput", BehaviorPattern.OPTIMIZE),
            ("paint murals", BehaviorPattern.LEARN),
            ("", BehaviorPattern.LEARN),
        ],
    )
    def test_keyword_mapping(self, goals, expected):
        assert classify_behavior(goals) == expected

    @pytest.mark.parametrize(
        "goals",
        [
            "ANALYZE and collaborate",
            "optimize, improve, work, then analyze",
            "we Analyze things we study",
        ],
    )
    def test_analyze_wins_over_later_rules(self, goals):
        """Any goal text mentioning "analyze" is ANALYZE regardless of other keywords."""
        assert classify_behavior(goals) == BehaviorPattern.ANALYZE

    def test_collaborate_beats_optimize(self):
        assert classify_behavior("optimize how we collaborate") == BehaviorPattern.COLLABORATE

    def test_substring_match(self):
        """Matching is by substring, so 'homework' counts as 'work'."""
        assert classify_behavior("finish homework") == BehaviorPattern.COLLABORATE


class TestInteracts:
    def test_collaborate_keyword_on_either_side(self):
        assert interacts("Collaborate widely", "paint murals")
        assert interacts("paint murals", "collaborate widely")

    def test_shared_token(self):
        assert interacts("analyze market trends", "analyze and collaborate on trends")
        assert interacts("build rockets", "launch rockets")

    def test_no_shared_token(self):
        assert not interacts("build rockets", "paint murals")

    def test_token_as_substring_of_other_text(self):
        assert interacts("analyze", "analyzer tools")

    def test_empty_goals(self):
        assert not interacts("", "")
        assert not interacts("", "paint murals")

    def test_repeated_whitespace_is_not_a_token(self):
        assert not interacts("build   rockets", "paint murals")

    @pytest.mark.parametrize(
        "a,b",
        [
            ("analyze", "analyzer tools"),
            ("analyzer tools", "analyze"),
            ("build rockets", "paint murals"),
            ("Collaborate", "x"),
            ("a", "banana"),
            ("optimize pipelines", "pipe"),
            ("", "anything"),
        ],
    )
    def test_symmetric(self, a, b):
        assert interacts(a, b) == interacts(b, a)
