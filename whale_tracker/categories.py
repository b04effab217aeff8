"""
Category Classifier

Polymarket's own category taxonomy can't be queried reliably, so trackers
scan all open markets and assign categories by keyword. Matching is a
case-insensitive substring test on the market question, which means false
positives ("ai" inside "rain") and misses are expected.
"""
from typing import Dict, List, Optional, Set

from .polymarket_client import Market


# Tracker name -> Polymarket tag id. None means "scan everything and
# filter by keyword".
TRACKER_CATEGORIES: Dict[str, Optional[str]] = {
    "politics": None,
    "crypto": None,
    "popculture": None,
    "sports": None,
    "business": None,
    "science": None,
}

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "politics": [
        "trump", "biden", "election", "president", "congress", "senate", "house",
        "government", "policy", "vote", "republican", "democrat", "political",
        "minister", "prime minister", "war", "military",
    ],
    "crypto": [
        "bitcoin", "ethereum", "crypto", "btc", "eth", "blockchain", "defi", "nft",
        "token", "coin", "solana", "binance", "coinbase",
    ],
    "popculture": [
        "movie", "film", "music", "artist", "celebrity", "award", "oscar", "grammy",
        "netflix", "spotify", "album", "box office", "actor", "actress", "director",
    ],
    "sports": [
        "nfl", "nba", "mlb", "nhl", "soccer", "football", "basketball", "baseball",
        "hockey", "championship", "super bowl", "world cup", "olympics", "team",
        "player", "game",
    ],
    "business": [
        "stock", "market", "company", "ceo", "revenue", "profit", "earnings", "ipo",
        "acquisition", "merger", "valuation", "nasdaq", "dow", "sp500", "business",
        "corporate",
    ],
    "science": [
        "science", "technology", "ai", "artificial intelligence", "research", "space",
        "nasa", "climate", "vaccine", "medical", "health", "innovation", "discovery",
        "tech company",
    ],
}


class UnknownCategoryError(KeyError):
    """Raised for tracker names outside TRACKER_CATEGORIES."""


def require_category(category: str) -> str:
    if category not in TRACKER_CATEGORIES:
        raise UnknownCategoryError(category)
    return category


def matches_category(question: str, category: str) -> bool:
    """True if the question contains any of the category's keywords."""
    if not question:
        return False
    question_lower = question.lower()
    return any(keyword in question_lower for keyword in CATEGORY_KEYWORDS.get(category, []))


def classify_question(question: str) -> Set[str]:
    """Every category whose keywords appear in the question (possibly none)."""
    return {
        category for category in CATEGORY_KEYWORDS
        if matches_category(question, category)
    }


def classify_market(market: Market) -> Set[str]:
    return classify_question(market.question)
