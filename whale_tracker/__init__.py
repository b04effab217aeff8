"""
Polymarket Whale Tracker - Source Package

This package contains:
- polymarket_client: API client for Polymarket markets, activity and positions
- whale_scorer: 0-100 wallet quality scores with a shared cache
- categories: Keyword category classification
- whale_scanner: Finds and ranks whale bets across markets
- tracker_manager: Per-category trackers, alert feed and activity log
- database: Persisted tracker state
- config: Application settings
"""

from .config import settings
from .polymarket_client import PolymarketClient, Market, Trade, Position
from .whale_scorer import WhaleScorer, ScoreCache, WhaleScoreRecord, WhaleMetrics, compute_score
from .categories import (
    TRACKER_CATEGORIES,
    CATEGORY_KEYWORDS,
    UnknownCategoryError,
    classify_market,
    classify_question,
)
from .whale_scanner import WhaleScanner, WhaleEvent
from .tracker_manager import (
    TrackerMonitorManager,
    TrackerRegistry,
    TrackerState,
    ActivityLog,
    AlertFeed,
)
from .database import StateStore, TrackerSettingsState

__all__ = [
    # Config
    "settings",
    # Polymarket
    "PolymarketClient",
    "Market",
    "Trade",
    "Position",
    # Scoring
    "WhaleScorer",
    "ScoreCache",
    "WhaleScoreRecord",
    "WhaleMetrics",
    "compute_score",
    # Categories
    "TRACKER_CATEGORIES",
    "CATEGORY_KEYWORDS",
    "UnknownCategoryError",
    "classify_market",
    "classify_question",
    # Scanning
    "WhaleScanner",
    "WhaleEvent",
    # Trackers
    "TrackerMonitorManager",
    "TrackerRegistry",
    "TrackerState",
    "ActivityLog",
    "AlertFeed",
    # Persistence
    "StateStore",
    "TrackerSettingsState",
]
