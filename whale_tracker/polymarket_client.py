"""
Polymarket API Client

This module handles all communication with Polymarket's public APIs:
1. Gamma API (gamma-api.polymarket.com) - Market listings, tags
2. Data API (data-api.polymarket.com) - Trade activity and wallet positions

Every fetch goes through a short-TTL response cache. Transport failures
never raise: they are logged and surface as empty results.
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from loguru import logger

from .config import settings


# Used when the tags endpoint is unreachable
FALLBACK_TAGS = [
    {"id": "100381", "label": "Politics"},
    {"id": "100382", "label": "Sports"},
    {"id": "100383", "label": "Crypto"},
    {"id": "100384", "label": "Pop Culture"},
]


@dataclass(frozen=True)
class Market:
    """Snapshot of an open prediction market."""
    condition_id: str
    question: str
    slug: str = ""
    tags: Tuple[str, ...] = ()
    closed: bool = False


@dataclass(frozen=True)
class Trade:
    """A single trade, either from market activity or a wallet's history."""
    wallet: str
    condition_id: str
    side: str  # "BUY" or "SELL"
    outcome: str
    price: float  # 0-1
    size_usd: float
    timestamp: int  # Unix seconds
    tx_hash: str = ""


@dataclass(frozen=True)
class Position:
    """A wallet's position in one market. Only used to infer wins/losses."""
    wallet: str
    condition_id: str
    market_closed: bool
    cash_pnl: float


@dataclass
class _CacheEntry:
    data: Any
    stored_at: float


# =========================================
# PAYLOAD PARSING
# =========================================

def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _parse_tags(raw: Any) -> Tuple[str, ...]:
    """Tags come back as strings, {label: ...} objects, or a JSON string."""
    if not raw:
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return (raw,)
    tags = []
    for tag in raw:
        if isinstance(tag, dict):
            label = tag.get("label") or tag.get("slug")
            if label:
                tags.append(str(label))
        elif tag:
            tags.append(str(tag))
    return tuple(tags)


def parse_market(item: Dict[str, Any]) -> Market:
    return Market(
        condition_id=item.get("conditionId") or item.get("condition_id") or "",
        question=item.get("question", "") or "",
        slug=item.get("slug", "") or "",
        tags=_parse_tags(item.get("tags")),
        closed=bool(item.get("closed", False)),
    )


def parse_trade(item: Dict[str, Any], wallet: Optional[str] = None) -> Trade:
    return Trade(
        wallet=item.get("proxyWallet") or wallet or "",
        condition_id=item.get("conditionId") or item.get("market") or "",
        side=str(item.get("side", "")).upper(),
        outcome=item.get("outcome", "") or "",
        price=_to_float(item.get("price")),
        size_usd=_to_float(item.get("usdcSize")),
        timestamp=int(_to_float(item.get("timestamp"))),
        tx_hash=item.get("transactionHash", "") or "",
    )


def parse_position(item: Dict[str, Any], wallet: str) -> Position:
    # Older payloads nest market info; current ones are flat
    market = item.get("market") if isinstance(item.get("market"), dict) else {}
    condition_id = (
        market.get("condition_id")
        or market.get("conditionId")
        or item.get("conditionId")
        or ""
    )
    if "closed" in market:
        closed = bool(market["closed"])
    else:
        closed = bool(item.get("closed", item.get("redeemable", False)))
    return Position(
        wallet=item.get("proxyWallet") or wallet,
        condition_id=condition_id,
        market_closed=closed,
        cash_pnl=_to_float(item.get("cashPnl")),
    )


class PolymarketClient:
    """
    Client for Polymarket's public market and activity APIs.

    Usage:
        async with PolymarketClient() as client:
            markets = await client.list_open_markets(limit=100)
            trades = await client.fetch_market_activity(markets[0].condition_id)

    Long-lived owners (the FastAPI app) call open() / close() directly.
    """

    def __init__(
        self,
        gamma_base_url: str = None,
        data_api_url: str = None,
        timeout: float = None,
        cache_ttl_seconds: float = None,
        tags_cache_ttl_seconds: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gamma_base_url = gamma_base_url or settings.POLYMARKET_GAMMA_API
        self.data_api_url = data_api_url or settings.POLYMARKET_DATA_API
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.cache_ttl = (
            cache_ttl_seconds if cache_ttl_seconds is not None
            else settings.RESPONSE_CACHE_TTL_SECONDS
        )
        self.tags_cache_ttl = (
            tags_cache_ttl_seconds if tags_cache_ttl_seconds is not None
            else settings.TAGS_CACHE_TTL_SECONDS
        )
        self._transport = transport
        self._clock = clock
        self._http_client: Optional[httpx.AsyncClient] = None

        # cache key -> response body
        self._cache: Dict[str, _CacheEntry] = {}
        self._tags: Optional[List[Dict[str, Any]]] = None
        self._tags_fetched_at = 0.0

    async def open(self) -> "PolymarketClient":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "Mozilla/5.0 (compatible; PolymarketWhaleTracker/1.0)"
                },
                follow_redirects=True,
                transport=self._transport,
            )
        return self

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self):
        """Set up the HTTP client when entering async context."""
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close the HTTP client when exiting async context."""
        await self.close()

    @property
    def http(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it exists."""
        if self._http_client is None:
            raise RuntimeError(
                "PolymarketClient must be opened first: "
                "async with PolymarketClient() as client: ..."
            )
        return self._http_client

    # =========================================
    # CACHED FETCH
    # =========================================

    async def _fetch_with_cache(
        self,
        url: str,
        params: Dict[str, Any],
        cache_key: str,
    ) -> Optional[Any]:
        """
        GET a JSON body, serving from cache while the entry is fresh.

        Returns None on any transport or decode failure. Failures are not
        cached, so the next call retries.
        """
        now = self._clock()
        entry = self._cache.get(cache_key)
        if entry and now - entry.stored_at < self.cache_ttl:
            logger.debug(f"Using cached data for {cache_key}")
            return entry.data
        self._evict_expired(now)

        try:
            response = await self.http.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {url}: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON from {url}: {e}")
            return None

        self._cache[cache_key] = _CacheEntry(data=data, stored_at=self._clock())
        return data

    def _evict_expired(self, now: float) -> None:
        """Drop every entry past its TTL, not just the one being refetched."""
        stale = [key for key, entry in self._cache.items() if now - entry.stored_at >= self.cache_ttl]
        for key in stale:
            del self._cache[key]

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    # =========================================
    # MARKET DATA METHODS
    # =========================================

    async def get_all_tags(self) -> List[Dict[str, Any]]:
        """
        List Polymarket's category tags.

        Cached for five minutes. Falls back to a fixed list of the main
        categories when the endpoint is unreachable.
        """
        if self._tags is not None and self._clock() - self._tags_fetched_at < self.tags_cache_ttl:
            return self._tags

        try:
            response = await self.http.get(f"{self.gamma_base_url}/tags")
            response.raise_for_status()
            tags = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            logger.error(f"Error fetching categories: {e}")
            return list(FALLBACK_TAGS)

        self._tags = tags
        self._tags_fetched_at = self._clock()
        logger.info(f"Found {len(tags)} categories")
        return tags

    async def list_open_markets(
        self,
        category_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Market]:
        """
        Fetch open markets, optionally filtered server-side by tag id.

        Args:
            category_id: Polymarket tag id, or None for all markets
            limit: Maximum number of markets to fetch
        """
        params: Dict[str, Any] = {"closed": "false", "limit": limit}
        if category_id:
            params["tag_id"] = category_id
        cache_key = f"markets_{category_id}_{limit}" if category_id else f"markets_all_{limit}"

        data = await self._fetch_with_cache(f"{self.gamma_base_url}/markets", params, cache_key)
        if not data:
            return []

        markets = []
        for item in data:
            try:
                market = parse_market(item)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse market: {e}")
                continue
            if market.closed or not market.condition_id:
                continue
            markets.append(market)

        logger.debug(f"Fetched {len(markets)} open markets")
        return markets

    # =========================================
    # TRADE DATA METHODS
    # =========================================

    async def fetch_market_activity(self, condition_id: str, limit: int = 100) -> List[Trade]:
        """Recent TRADE activity on one market."""
        data = await self._fetch_with_cache(
            f"{self.data_api_url}/activity",
            {"market": condition_id, "type": "TRADE", "limit": limit},
            f"market_activity_{condition_id}_{limit}",
        )
        return self._parse_trades(data or [], only_trades=False)

    async def fetch_wallet_history(self, wallet: str, limit: int = 500) -> List[Trade]:
        """
        A wallet's activity feed, reduced to TRADE entries.

        The Data API returns redeems, splits and merges in the same feed;
        those are dropped here.
        """
        data = await self._fetch_with_cache(
            f"{self.data_api_url}/activity",
            {"user": wallet, "limit": limit},
            f"wallet_{wallet}_{limit}",
        )
        return self._parse_trades(data or [], only_trades=True, wallet=wallet)

    async def fetch_wallet_positions(self, wallet: str) -> List[Position]:
        """Current and resolved positions for a wallet."""
        data = await self._fetch_with_cache(
            f"{self.data_api_url}/positions",
            {"user": wallet},
            f"positions_{wallet}",
        )
        positions = []
        for item in data or []:
            try:
                positions.append(parse_position(item, wallet))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse position: {e}")
        return positions

    @staticmethod
    def _parse_trades(
        data: List[Dict[str, Any]],
        only_trades: bool,
        wallet: Optional[str] = None,
    ) -> List[Trade]:
        trades = []
        for item in data:
            if only_trades and item.get("type", "TRADE") != "TRADE":
                continue
            try:
                trades.append(parse_trade(item, wallet))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse trade: {e}")
        return trades


# =========================================
# TEST THE CLIENT
# =========================================

async def main():
    """Smoke-test the client against the live API."""
    async with PolymarketClient() as client:
        markets = await client.list_open_markets(limit=5)
        for market in markets:
            print(f"  Market: {market.question[:60]}")

        if markets:
            trades = await client.fetch_market_activity(markets[0].condition_id, limit=20)
            print(f"\n  {len(trades)} recent trades on first market")
            for trade in trades[:5]:
                print(f"    ${trade.size_usd:,.2f} - {trade.side} {trade.outcome} by {trade.wallet[:10]}...")


if __name__ == "__main__":
    asyncio.run(main())
