"""
Whale Scanner

Finds high-quality whale bets across open markets:

1. Fetch up to 100 open markets (optionally one Polymarket tag)
2. Fetch recent TRADE activity per market, 10 markets at a time
3. Keep trades of $5,000 or more
4. Score each bettor's wallet
5. Keep events whose score meets the caller's minimum

Results are ranked by whale score, highest first. Equal scores are
ordered by trade timestamp, most recent first.
"""
import asyncio
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .categories import matches_category
from .polymarket_client import Market, Trade
from .whale_scorer import WhaleMetrics, WhaleScorer


WHALE_BET_THRESHOLD_USD = 5_000
MARKET_SCAN_LIMIT = 100
MARKET_ACTIVITY_LIMIT = 100
BATCH_SIZE = 10
DEFAULT_MIN_SCORE = 75


@dataclass(frozen=True)
class WhaleEvent:
    """
    One large bet by a scored wallet.

    Holds copies of the market and score values as they were at scan time;
    later rescoring never changes an existing event.
    """
    market: str  # Market question
    market_slug: str
    condition_id: str
    category: str
    wallet: str
    bet_size: float
    side: str
    price: float
    outcome: str
    timestamp: int
    whale_score: int
    metrics: WhaleMetrics
    tx_hash: str

    def with_category(self, category: str) -> "WhaleEvent":
        return replace(self, category=category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "marketSlug": self.market_slug,
            "conditionId": self.condition_id,
            "category": self.category,
            "wallet": self.wallet,
            "betSize": self.bet_size,
            "side": self.side,
            "price": self.price,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
            "whaleScore": self.whale_score,
            "metrics": self.metrics.to_dict(),
            "txHash": self.tx_hash,
        }


def rank_key(event: WhaleEvent) -> Tuple[int, int]:
    """Sort key: score descending, then timestamp descending."""
    return (-event.whale_score, -event.timestamp)


def rank_events(events: List[WhaleEvent]) -> List[WhaleEvent]:
    return sorted(events, key=rank_key)


def is_whale_bet(trade: Trade) -> bool:
    return trade.size_usd >= WHALE_BET_THRESHOLD_USD


class WhaleScanner:
    """
    Scans markets for whale bets and scores the bettors.

    Usage:
        scanner = WhaleScanner(client, WhaleScorer(client))
        events = await scanner.scan(None, min_score=75)
    """

    def __init__(self, client, scorer: Optional[WhaleScorer] = None, batch_size: int = BATCH_SIZE):
        self.client = client
        self.scorer = scorer if scorer is not None else WhaleScorer(client)
        self.batch_size = batch_size

    async def _fetch_batch_activity(
        self,
        batch: List[Market]
    ) -> List[Tuple[Market, List[Trade]]]:
        """Activity for every market in the batch, fetched concurrently."""
        results = await asyncio.gather(
            *(self.client.fetch_market_activity(m.condition_id, limit=MARKET_ACTIVITY_LIMIT) for m in batch),
            return_exceptions=True
        )

        activity = []
        for market, result in zip(batch, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to fetch activity for {market.question[:50]}: {result}")
                continue
            if not result:
                continue
            activity.append((market, result))
        return activity

    async def scan(
        self,
        category_id: Optional[str] = None,
        min_score: int = DEFAULT_MIN_SCORE,
        keyword_category: Optional[str] = None,
    ) -> List[WhaleEvent]:
        """
        Scan open markets for whale bets scoring at least `min_score`.

        Args:
            category_id: Polymarket tag id to filter server-side, or None
            min_score: Minimum wallet score (0-100) to include
            keyword_category: Only scan markets whose question matches this
                tracker category's keywords

        Returns:
            WhaleEvents ranked by score, then recency
        """
        markets = await self.client.list_open_markets(category_id, limit=MARKET_SCAN_LIMIT)
        markets = markets or []
        if keyword_category:
            markets = [m for m in markets if matches_category(m.question, keyword_category)]

        logger.info(f"Scanning {len(markets)} markets for whale activity")

        events: List[WhaleEvent] = []
        for start in range(0, len(markets), self.batch_size):
            batch = markets[start:start + self.batch_size]
            activity = await self._fetch_batch_activity(batch)

            whale_bets = [
                (market, trade)
                for market, trades in activity
                for trade in trades
                if is_whale_bet(trade) and trade.wallet
            ]
            if not whale_bets:
                continue

            records = await self.scorer.score_wallets([trade.wallet for _, trade in whale_bets])

            for market, trade in whale_bets:
                record = records.get(trade.wallet)
                if record is None or record.score < min_score:
                    continue
                events.append(WhaleEvent(
                    market=market.question,
                    market_slug=market.slug,
                    condition_id=market.condition_id,
                    category=market.tags[0] if market.tags else "Other",
                    wallet=trade.wallet,
                    bet_size=trade.size_usd,
                    side=trade.side,
                    price=trade.price,
                    outcome=trade.outcome,
                    timestamp=trade.timestamp,
                    whale_score=record.score,
                    metrics=record.metrics,
                    tx_hash=trade.tx_hash,
                ))

            logger.debug(f"Processed {min(start + self.batch_size, len(markets))}/{len(markets)} markets")

        ranked = rank_events(events)
        logger.info(f"Found {len(ranked)} whale bets scoring {min_score}+")
        return ranked
