"""
Whale Scorer - Wallet Quality Scoring

Scores a wallet 0-100 from its trade history and resolved positions:

    Win rate            40%   resolved positions with positive PnL
    Average bet size    20%   saturates at $20,000
    Total volume        20%   saturates at $500,000
    Trade frequency     10%   saturates at 50 trades
    Recent performance  10%   wins among the 10 most recent trades' markets

Win rate and recent performance default to a neutral 50 when nothing has
resolved yet, so fresh bettors are not scored as losers. A wallet with no
trade history scores 0.

Results are cached per wallet for five minutes. A cache hit makes no
network calls, so a score can lag the wallet's real record by up to the TTL.
"""
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from loguru import logger

from .polymarket_client import Position, Trade


# =========================================
# SCORING CONSTANTS
# =========================================

WIN_RATE_WEIGHT = 0.4
BET_SIZE_WEIGHT = 0.2
VOLUME_WEIGHT = 0.2
FREQUENCY_WEIGHT = 0.1
RECENT_PERFORMANCE_WEIGHT = 0.1

BET_SIZE_SATURATION_USD = 20_000
VOLUME_SATURATION_USD = 500_000
FREQUENCY_SATURATION_TRADES = 50

RECENT_TRADE_WINDOW = 10
NEUTRAL_RATE = 50.0

SCORE_CACHE_TTL_SECONDS = 300
WALLET_HISTORY_LIMIT = 500


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class WhaleMetrics:
    """Reported inputs to a score, rounded for display."""
    win_rate: int
    avg_bet_size: int
    total_volume: int
    total_trades: int
    recent_performance: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "winRate": self.win_rate,
            "avgBetSize": self.avg_bet_size,
            "totalVolume": self.total_volume,
            "totalTrades": self.total_trades,
            "recentPerformance": self.recent_performance,
        }


EMPTY_METRICS = WhaleMetrics(
    win_rate=0, avg_bet_size=0, total_volume=0, total_trades=0, recent_performance=0
)


@dataclass(frozen=True)
class WhaleScoreRecord:
    """A computed score for one wallet at one point in time."""
    wallet: str
    score: int
    metrics: WhaleMetrics
    computed_at: float


# =========================================
# SCORE CACHE
# =========================================

class ScoreCache:
    """
    Owns the wallet -> WhaleScoreRecord mapping shared by every tracker.

    Reads and writes are single dict operations with no await in between,
    so concurrent scans on the event loop never see a half-written entry.
    Entries older than the TTL are dropped on read and on every put.
    """

    def __init__(
        self,
        ttl_seconds: float = SCORE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._records: Dict[str, WhaleScoreRecord] = {}

    def _expired(self, record: WhaleScoreRecord, now: float) -> bool:
        return now - record.computed_at >= self.ttl_seconds

    def get(self, wallet: str) -> Optional[WhaleScoreRecord]:
        record = self._records.get(wallet)
        if record is None:
            return None
        if self._expired(record, self.clock()):
            del self._records[wallet]
            return None
        return record

    def put(self, record: WhaleScoreRecord) -> None:
        self.evict_expired()
        self._records[record.wallet] = record

    def evict_expired(self) -> None:
        now = self.clock()
        stale = [w for w, r in self._records.items() if self._expired(r, now)]
        for wallet in stale:
            del self._records[wallet]

    def invalidate(self, wallet: str) -> None:
        self._records.pop(wallet, None)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


# =========================================
# SCORING
# =========================================

def _win_fraction(positions: List[Position]) -> float:
    wins = sum(1 for p in positions if p.cash_pnl > 0)
    return wins / len(positions) * 100


def compute_score(
    wallet: str,
    trades: List[Trade],
    positions: List[Position],
    computed_at: float,
) -> WhaleScoreRecord:
    """
    Pure scoring function over already-fetched history.

    `trades` must contain only TRADE activity. Order does not matter:
    recency is taken from timestamps.
    """
    total_trades = len(trades)
    if total_trades == 0:
        return WhaleScoreRecord(wallet=wallet, score=0, metrics=EMPTY_METRICS, computed_at=computed_at)

    resolved = [p for p in positions if p.market_closed]
    win_rate = _win_fraction(resolved) if resolved else NEUTRAL_RATE

    total_volume = sum(max(0.0, t.size_usd) for t in trades)
    avg_bet_size = total_volume / total_trades

    bet_size_score = min(100.0, avg_bet_size / BET_SIZE_SATURATION_USD * 100)
    volume_score = min(100.0, total_volume / VOLUME_SATURATION_USD * 100)
    frequency_score = min(100.0, total_trades / FREQUENCY_SATURATION_TRADES * 100)

    # First position per market, in the order the provider returned them
    position_by_market: Dict[str, Position] = {}
    for position in positions:
        position_by_market.setdefault(position.condition_id, position)

    recent = sorted(trades, key=lambda t: t.timestamp, reverse=True)[:RECENT_TRADE_WINDOW]
    matched = [
        position_by_market[t.condition_id]
        for t in recent
        if t.condition_id in position_by_market
    ]
    recent_performance = _win_fraction(matched) if matched else NEUTRAL_RATE

    weighted = (
        win_rate * WIN_RATE_WEIGHT
        + bet_size_score * BET_SIZE_WEIGHT
        + volume_score * VOLUME_WEIGHT
        + frequency_score * FREQUENCY_WEIGHT
        + recent_performance * RECENT_PERFORMANCE_WEIGHT
    )
    score = max(0, min(100, round_half_up(weighted)))

    metrics = WhaleMetrics(
        win_rate=round_half_up(win_rate),
        avg_bet_size=round_half_up(avg_bet_size),
        total_volume=round_half_up(total_volume),
        total_trades=total_trades,
        recent_performance=round_half_up(recent_performance),
    )
    return WhaleScoreRecord(wallet=wallet, score=score, metrics=metrics, computed_at=computed_at)


class WhaleScorer:
    """
    Scores wallets through a market data client, with a shared ScoreCache.

    Usage:
        scorer = WhaleScorer(client)
        record = await scorer.score_wallet("0x...")
        print(record.score, record.metrics.win_rate)
    """

    def __init__(self, client, cache: Optional[ScoreCache] = None):
        # Anything with fetch_wallet_history() / fetch_wallet_positions()
        self.client = client
        self.cache = cache if cache is not None else ScoreCache()

    async def score_wallet(self, wallet: str) -> WhaleScoreRecord:
        if not wallet:
            raise ValueError("wallet address must be a non-empty string")

        cached = self.cache.get(wallet)
        if cached is not None:
            return cached

        history = await self.client.fetch_wallet_history(wallet, limit=WALLET_HISTORY_LIMIT)
        if not history:
            record = compute_score(wallet, [], [], self.cache.clock())
        else:
            positions = await self.client.fetch_wallet_positions(wallet)
            record = compute_score(wallet, history, positions or [], self.cache.clock())

        self.cache.put(record)
        logger.debug(
            f"Scored {wallet[:10]}...: {record.score} "
            f"(win rate {record.metrics.win_rate}%, {record.metrics.total_trades} trades)"
        )
        return record

    async def score(self, wallet: str) -> int:
        """Just the 0-100 score."""
        record = await self.score_wallet(wallet)
        return record.score

    async def score_wallets(self, wallets: List[str]) -> Dict[str, WhaleScoreRecord]:
        """
        Score several wallets concurrently.

        A wallet whose scoring raises is left out of the result.
        """
        unique = list(dict.fromkeys(w for w in wallets if w))
        results = await asyncio.gather(
            *(self.score_wallet(w) for w in unique),
            return_exceptions=True
        )

        records: Dict[str, WhaleScoreRecord] = {}
        for wallet, result in zip(unique, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to score wallet {wallet[:10]}...: {result}")
                continue
            records[wallet] = result
        return records
