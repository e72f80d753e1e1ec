"""Shared fixtures: temporary SQLite store and a scripted market service."""

import asyncio
import tempfile
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from welloh.db import SqliteAccountStore, migrate_schema
from welloh.domain.schemas import (
    AnalysisData,
    AnalysisEnvelope,
    HistoricalPricePoint,
    MarketIndex,
    NewsArticle,
    PublicTender,
    StockData,
)
from welloh.errors import LookupFailure
from welloh.providers.market import MarketService


class FakeMarketService(MarketService):
    """In-memory market: fixed prices, canned analyses, call counting."""

    def __init__(self, prices: Optional[Dict[str, str]] = None):
        self.prices = dict(prices or {})
        self.quote_calls: List[str] = []
        self.metrics: List[Dict[str, str]] = [
            {"label": "P/E Ratio", "value": "25.3"},
            {"label": "Market Cap", "value": "2.5T USD"},
        ]

    async def get_quote(self, ticker: str) -> StockData:
        self.quote_calls.append(ticker)
        if ticker not in self.prices:
            raise LookupFailure(f"No quote for {ticker}")
        return StockData(
            company_name=f"{ticker} Inc.",
            ticker=ticker,
            exchange="NASDAQ",
            price=float(self.prices[ticker]),
        )

    async def get_history(self, ticker: str) -> List[HistoricalPricePoint]:
        return [
            HistoricalPricePoint(date="2026-01-01", price=10.0),
            HistoricalPricePoint(date="2026-01-02", price=11.0),
        ]

    async def search_symbols(self, query: str) -> List[StockData]:
        return [await self.get_quote(t) for t in self.prices if query.upper() in t]

    async def get_analysis(self, identifier: str, currency: str) -> AnalysisEnvelope:
        return AnalysisEnvelope(
            analysis=AnalysisData.model_validate({
                "companyName": f"{identifier} Corp",
                "ticker": identifier.upper(),
                "summary": "Solid business.",
                "keyMetrics": self.metrics,
                "projections": [{"year": "2027", "revenue": 100.0, "profit": 10.0}],
                "strengths": ["Brand"],
                "weaknesses": ["Valuation"],
                "recommendation": "Conserver",
                "confidenceScore": 70,
            }),
            news=[NewsArticle(title="Earnings beat", uri="https://example.com/a")],
        )

    async def get_market_overview(self) -> List[MarketIndex]:
        return [MarketIndex(name="CAC 40", value="7500", change="+10", percent_change="+0.13%")]

    async def search_public_tenders(self, query: str) -> List[PublicTender]:
        return []

    async def _chunks(self, *parts):
        for part in parts:
            await asyncio.sleep(0)
            yield part

    def stream_text(self, topic: str):
        return self._chunks("# ", topic, "\n", "Body")

    def stream_strategy(self, prompt: str):
        return self._chunks("Strategy for ", prompt)


@pytest.fixture
def db_path():
    """Create temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    migrate_schema(path)
    return path


@pytest.fixture
def store(db_path):
    return SqliteAccountStore(db_path, starting_cash=Decimal("100000"))


@pytest.fixture
def market():
    return FakeMarketService({"AAPL": "150", "MSFT": "300", "TSLA": "200"})
