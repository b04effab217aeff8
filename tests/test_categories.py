"""
Test Suite for Category Classifier and Display Helpers
"""
import pytest

# Import the modules we're testing
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from whale_tracker.categories import (
    CATEGORY_KEYWORDS,
    TRACKER_CATEGORIES,
    UnknownCategoryError,
    classify_market,
    classify_question,
    matches_category,
    require_category,
)
from whale_tracker.formatting import format_currency, format_wallet, time_ago
from fakes import make_market


# =========================================
# KEYWORD CLASSIFICATION TESTS
# =========================================

class TestClassifyQuestion:
    """Tests for keyword-based category assignment."""

    def test_crypto_question(self):
        assert classify_question("Bitcoin to hit new high") == {"crypto"}

    def test_unmatched_question(self):
        """A question with no keywords belongs to no category."""
        assert classify_question("Who wins the spelling bee?") == set()

    def test_case_insensitive(self):
        assert matches_category("Will the NBA finals go to game 7?", "sports")
        assert matches_category("will the nba finals go to game 7?", "sports")

    def test_multiple_categories(self):
        """A question can land in more than one category."""
        categories = classify_question("Will Trump mention Bitcoin in a speech?")
        assert {"politics", "crypto"} <= categories

    def test_substring_false_positive(self):
        """Matching is plain substring: 'rain' contains 'ai'."""
        assert "science" in classify_question("Will it rain in Paris tomorrow?")

    def test_empty_question(self):
        assert classify_question("") == set()
        assert not matches_category("", "crypto")

    def test_unknown_category_matches_nothing(self):
        assert not matches_category("Bitcoin to hit new high", "weather")

    def test_classify_market_uses_question(self):
        market = make_market(question="Will the Oscar for best film go to a sequel?")
        assert classify_market(market) == {"popculture"}


class TestTrackerCategories:
    """Tests for the fixed tracker registry."""

    def test_six_categories_with_keywords(self):
        assert set(TRACKER_CATEGORIES) == {
            "politics", "crypto", "popculture", "sports", "business", "science"
        }
        assert set(CATEGORY_KEYWORDS) == set(TRACKER_CATEGORIES)

    def test_require_known_category(self):
        assert require_category("crypto") == "crypto"

    def test_require_unknown_category_raises(self):
        with pytest.raises(UnknownCategoryError):
            require_category("weather")


# =========================================
# DISPLAY HELPER TESTS
# =========================================

class TestFormatting:
    """Tests for dashboard display helpers."""

    def test_format_wallet(self):
        assert format_wallet("0x1234567890abcdef") == "0x1234...cdef"
        assert format_wallet("") == ""
        assert format_wallet(None) == ""

    def test_time_ago(self):
        now = 1_700_000_000
        assert time_ago(now - 30, now=now) == "30s ago"
        assert time_ago(now - 120, now=now) == "2m ago"
        assert time_ago(now - 7200, now=now) == "2h ago"
        assert time_ago(now - 3 * 86400, now=now) == "3d ago"

    def test_time_ago_future_timestamp(self):
        assert time_ago(2_000, now=1_000) == "0s ago"

    def test_format_currency(self):
        assert format_currency(2_500_000) == "$2.50M"
        assert format_currency(6_000) == "$6.0k"
        assert format_currency(950) == "$950"


# =========================================
# RUN TESTS
# =========================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
