"""Tests for join suspicion scoring."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from raidshield.utils.suspicion import (
    SECONDS_PER_DAY,
    account_age_days,
    is_random_username,
    score_join,
)

NOW = 1_700_000_000.0


class TestUsernames:
    """Tests for the random username heuristic."""

    def test_random_usernames(self) -> None:
        assert is_random_username("user12345678") is True
        assert is_random_username("a_b_c_d") is True
        assert is_random_username("123456") is True
        assert is_random_username(None) is True
        assert is_random_username("") is True

    def test_normal_usernames(self) -> None:
        assert is_random_username("engel") is False
        assert is_random_username("night_owl") is False
        assert is_random_username("player2024") is False


class TestScoreJoin:
    """Tests for score_join."""

    def test_established_account_scores_zero(self) -> None:
        result = score_join(
            account_created_at=NOW - 400 * SECONDS_PER_DAY,
            has_avatar=True,
            username="engel",
            recent_joins=1,
            min_account_age=7,
            join_threshold=5,
            now=NOW,
        )
        assert result.score == 0
        assert result.reasons == []
        assert result.burst is False
        assert result.account_age_days == 400

    def test_new_account_without_avatar(self) -> None:
        result = score_join(
            account_created_at=NOW - 2 * SECONDS_PER_DAY,
            has_avatar=False,
            username="engel",
            recent_joins=1,
            min_account_age=7,
            join_threshold=5,
            now=NOW,
        )
        assert result.score == 5
        assert len(result.reasons) == 2

    def test_all_signals_capped_at_ten(self) -> None:
        result = score_join(
            account_created_at=NOW - SECONDS_PER_DAY,
            has_avatar=False,
            username="x_y_z_w",
            recent_joins=6,
            min_account_age=7,
            join_threshold=5,
            now=NOW,
        )
        assert result.score == 12
        assert result.capped == 10
        assert result.burst is True

    def test_missing_inputs_are_worst_case(self) -> None:
        result = score_join(
            account_created_at=None,
            has_avatar=None,
            username=None,
            recent_joins=0,
            min_account_age=7,
            join_threshold=5,
            now=NOW,
        )
        assert result.score == 7
        assert result.account_age_days is None

    def test_burst_at_threshold(self) -> None:
        result = score_join(
            account_created_at=NOW - 400 * SECONDS_PER_DAY,
            has_avatar=True,
            username="engel",
            recent_joins=5,
            min_account_age=7,
            join_threshold=5,
            now=NOW,
        )
        assert result.burst is True
        assert result.score == 5

    def test_account_age_days(self) -> None:
        assert account_age_days(None, NOW) is None
        assert account_age_days(NOW - 3.5 * SECONDS_PER_DAY, NOW) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
