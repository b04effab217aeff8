"""
Test Suite for Polymarket API Client

Runs the client against httpx.MockTransport, so no network is needed.
"""
import httpx
import pytest

# Import the modules we're testing
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from whale_tracker.polymarket_client import (
    FALLBACK_TAGS,
    PolymarketClient,
    parse_position,
    parse_trade,
)
from fakes import FakeClock


GAMMA = "https://gamma.test"
DATA = "https://data.test"


# =========================================
# TEST FIXTURES
# =========================================

class Recorder:
    """MockTransport handler that serves canned JSON per path."""

    def __init__(self, routes, status_code=200):
        self.routes = routes
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "down"})
        return httpx.Response(200, json=self.routes.get(request.url.path, []))


def create_client(handler, clock=None):
    return PolymarketClient(
        gamma_base_url=GAMMA,
        data_api_url=DATA,
        transport=httpx.MockTransport(handler),
        clock=clock or FakeClock(),
    )


MARKETS = [
    {"conditionId": "0xm1", "question": "Will BTC hit 100k?", "slug": "btc-100k",
     "tags": [{"label": "Crypto"}], "closed": False},
    {"conditionId": "0xm2", "question": "Old market", "closed": True},
    {"question": "No condition id"},
]


# =========================================
# MARKET LISTING TESTS
# =========================================

class TestListOpenMarkets:
    """Tests for the Gamma market listing."""

    @pytest.mark.asyncio
    async def test_parses_open_markets_only(self):
        handler = Recorder({"/markets": MARKETS})
        async with create_client(handler) as client:
            markets = await client.list_open_markets(limit=100)

        assert len(markets) == 1
        market = markets[0]
        assert market.condition_id == "0xm1"
        assert market.slug == "btc-100k"
        assert market.tags == ("Crypto",)

    @pytest.mark.asyncio
    async def test_query_parameters(self):
        handler = Recorder({"/markets": []})
        async with create_client(handler) as client:
            await client.list_open_markets("100383", limit=50)

        params = handler.requests[0].url.params
        assert params["closed"] == "false"
        assert params["limit"] == "50"
        assert params["tag_id"] == "100383"

    @pytest.mark.asyncio
    async def test_no_tag_id_without_category(self):
        handler = Recorder({"/markets": []})
        async with create_client(handler) as client:
            await client.list_open_markets()
        assert "tag_id" not in handler.requests[0].url.params


# =========================================
# CACHE + FAILURE TESTS
# =========================================

class TestResponseCache:
    """Tests for the 30-second response cache."""

    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(self):
        clock = FakeClock()
        handler = Recorder({"/markets": MARKETS})
        async with create_client(handler, clock) as client:
            await client.list_open_markets()
            clock.advance(29)
            await client.list_open_markets()
            assert len(handler.requests) == 1

            clock.advance(1)
            await client.list_open_markets()
            assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_expired_entries_evicted(self):
        """Stale bodies for other keys don't pile up in a long-running process."""
        clock = FakeClock()
        handler = Recorder({"/activity": [{"type": "TRADE", "usdcSize": 10}]})
        async with create_client(handler, clock) as client:
            for i in range(200):
                await client.fetch_wallet_history(f"0xwallet{i}")
                clock.advance(60)

            assert client.cache_size <= 1

    @pytest.mark.asyncio
    async def test_fresh_entries_kept(self):
        clock = FakeClock()
        handler = Recorder({"/activity": []})
        async with create_client(handler, clock) as client:
            for i in range(5):
                await client.fetch_wallet_positions(f"0xwallet{i}")
                clock.advance(1)

            assert client.cache_size == 5

    @pytest.mark.asyncio
    async def test_limit_is_part_of_cache_key(self):
        """A smaller limit after a larger one is fetched, not served the larger body."""
        handler = Recorder({"/activity": []})
        async with create_client(handler) as client:
            await client.fetch_market_activity("0xm1", limit=100)
            await client.fetch_market_activity("0xm1", limit=20)
            await client.fetch_wallet_history("0xA", limit=500)
            await client.fetch_wallet_history("0xA", limit=50)
            await client.fetch_wallet_history("0xA", limit=50)

        assert len(handler.requests) == 4
        assert handler.requests[1].url.params["limit"] == "20"

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        handler = Recorder({"/markets": MARKETS})
        async with create_client(handler) as client:
            await client.list_open_markets()
            client.clear_cache()
            await client.list_open_markets()
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_http_error_returns_empty_and_is_not_cached(self):
        handler = Recorder({}, status_code=500)
        async with create_client(handler) as client:
            assert await client.list_open_markets() == []
            assert await client.fetch_market_activity("0xm1") == []
            assert await client.fetch_wallet_positions("0xA") == []
            assert await client.list_open_markets() == []

        assert len(handler.requests) == 4

    @pytest.mark.asyncio
    async def test_requires_open(self):
        client = PolymarketClient(gamma_base_url=GAMMA, data_api_url=DATA)
        with pytest.raises(RuntimeError):
            await client.list_open_markets()


# =========================================
# ACTIVITY + POSITION TESTS
# =========================================

class TestActivityAndPositions:
    """Tests for Data API trade and position parsing."""

    @pytest.mark.asyncio
    async def test_market_activity_request_and_parsing(self):
        handler = Recorder({"/activity": [
            {"proxyWallet": "0xA", "conditionId": "0xm1", "side": "buy", "outcome": "Yes",
             "price": "0.62", "usdcSize": "6000.5", "timestamp": "1700000000.0",
             "transactionHash": "0xtx", "type": "TRADE"},
        ]})
        async with create_client(handler) as client:
            trades = await client.fetch_market_activity("0xm1", limit=100)

        params = handler.requests[0].url.params
        assert params["market"] == "0xm1"
        assert params["type"] == "TRADE"

        trade = trades[0]
        assert trade.wallet == "0xA"
        assert trade.side == "BUY"
        assert trade.size_usd == 6000.5
        assert trade.price == 0.62
        assert trade.timestamp == 1_700_000_000
        assert trade.tx_hash == "0xtx"

    @pytest.mark.asyncio
    async def test_wallet_history_keeps_trades_only(self):
        handler = Recorder({"/activity": [
            {"type": "TRADE", "conditionId": "0xm1", "usdcSize": 100, "timestamp": 2},
            {"type": "REDEEM", "conditionId": "0xm1", "usdcSize": 300, "timestamp": 3},
            {"type": "SPLIT", "conditionId": "0xm2", "usdcSize": 50, "timestamp": 4},
        ]})
        async with create_client(handler) as client:
            trades = await client.fetch_wallet_history("0xA")

        assert handler.requests[0].url.params["user"] == "0xA"
        assert len(trades) == 1
        assert trades[0].wallet == "0xA"  # Filled from the request
        assert trades[0].size_usd == 100

    @pytest.mark.asyncio
    async def test_positions(self):
        handler = Recorder({"/positions": [
            {"conditionId": "0xm1", "cashPnl": 120.0, "redeemable": True},
            {"conditionId": "0xm2", "cashPnl": -40.0},
        ]})
        async with create_client(handler) as client:
            positions = await client.fetch_wallet_positions("0xA")

        assert [(p.condition_id, p.market_closed, p.cash_pnl) for p in positions] == [
            ("0xm1", True, 120.0),
            ("0xm2", False, -40.0),
        ]

    def test_nested_market_position(self):
        position = parse_position(
            {"market": {"condition_id": "0xm9", "closed": True}, "cashPnl": "5"},
            wallet="0xA",
        )
        assert position.condition_id == "0xm9"
        assert position.market_closed is True
        assert position.cash_pnl == 5.0

    def test_missing_numbers_default_to_zero(self):
        trade = parse_trade({"conditionId": "0xm1"}, wallet="0xA")
        assert trade.size_usd == 0.0
        assert trade.price == 0.0
        assert trade.timestamp == 0


# =========================================
# TAG TESTS
# =========================================

class TestTags:
    """Tests for the category tag listing."""

    @pytest.mark.asyncio
    async def test_tags_cached(self):
        handler = Recorder({"/tags": [{"id": "1", "label": "Politics"}]})
        async with create_client(handler) as client:
            first = await client.get_all_tags()
            second = await client.get_all_tags()

        assert first == second == [{"id": "1", "label": "Politics"}]
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_tags_fallback_on_error(self):
        handler = Recorder({}, status_code=503)
        async with create_client(handler) as client:
            tags = await client.get_all_tags()

        assert tags == FALLBACK_TAGS
        assert {t["id"] for t in tags} == {"100381", "100382", "100383", "100384"}


# =========================================
# RUN TESTS
# =========================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
