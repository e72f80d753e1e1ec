"""Tests for portfolio valuation and trade execution."""

import asyncio
from decimal import Decimal

import pytest

from welloh.domain.models import Holding, Portfolio, TradeType
from welloh.domain.valuation import buy, return_percentage, revalue, revalue_many, sell
from welloh.errors import InsufficientFunds, InsufficientShares, LookupFailure, ValidationError


def make_portfolio(cash="100000", holdings=None, initial="100000"):
    return Portfolio(cash=Decimal(cash), initial_value=Decimal(initial), holdings=list(holdings or []))


def holding(ticker, shares, price, exchange="NASDAQ"):
    return Holding(
        ticker=ticker,
        exchange=exchange,
        company_name=f"{ticker} Inc.",
        shares=shares,
        purchase_price=Decimal(price),
    )


class CountingLookup:
    def __init__(self, prices, failing=()):
        self.prices = prices
        self.failing = set(failing)
        self.calls = []

    async def __call__(self, ticker):
        self.calls.append(ticker)
        if ticker in self.failing:
            raise LookupFailure("boom")
        return Decimal(self.prices[ticker])


class TestBuy:
    def test_buy_new_holding(self):
        result = buy(make_portfolio(), "AAPL", "NASDAQ", 10, "150")

        assert result.portfolio.cash == Decimal("98500.00")
        assert len(result.portfolio.holdings) == 1
        h = result.portfolio.holdings[0]
        assert (h.ticker, h.exchange, h.shares) == ("AAPL", "NASDAQ", 10)
        assert h.purchase_price == Decimal("150")
        assert result.transaction.type == TradeType.BUY
        assert result.transaction.shares == 10
        assert result.transaction.price == Decimal("150")

    def test_weighted_average_purchase_price(self):
        first = buy(make_portfolio(), "AAPL", "NASDAQ", 10, "100").portfolio
        second = buy(first, "AAPL", "NASDAQ", 30, "200").portfolio

        h = second.find("AAPL", "NASDAQ")
        assert h.shares == 40
        assert h.purchase_price == Decimal("175.0000")
        assert len(second.holdings) == 1

    def test_same_ticker_other_exchange_is_separate_holding(self):
        first = buy(make_portfolio(), "ORA", "EPA", 5, "10").portfolio
        second = buy(first, "ORA", "BRVM", 5, "12").portfolio
        assert len(second.holdings) == 2

    def test_insufficient_funds(self):
        portfolio = make_portfolio(cash="1000")
        with pytest.raises(InsufficientFunds):
            buy(portfolio, "AAPL", "NASDAQ", 10, "150")
        assert portfolio.cash == Decimal("1000")
        assert portfolio.holdings == []

    def test_spend_exact_cash(self):
        result = buy(make_portfolio(cash="1500"), "AAPL", "NASDAQ", 10, "150")
        assert result.portfolio.cash == Decimal("0.00")

    def test_funds_checked_on_unrounded_cost(self):
        portfolio = make_portfolio(cash="100000.00")
        with pytest.raises(InsufficientFunds):
            buy(portfolio, "AAPL", "NASDAQ", 3, "33333.3334")

    def test_cost_just_under_cash_spends_everything(self):
        result = buy(make_portfolio(cash="100000.00"), "AAPL", "NASDAQ", 3, "33333.3333")
        assert result.portfolio.cash == Decimal("0.00")

    def test_price_rounding_to_zero_rejected(self):
        with pytest.raises(ValidationError):
            buy(make_portfolio(cash="0"), "AAPL", "NASDAQ", 1000, "0.00004")

    def test_input_portfolio_not_mutated(self):
        portfolio = make_portfolio(holdings=[holding("AAPL", 10, "100")])
        buy(portfolio, "AAPL", "NASDAQ", 10, "200")
        assert portfolio.holdings[0].shares == 10
        assert portfolio.cash == Decimal("100000")

    @pytest.mark.parametrize("shares", ["abc", "0", "-5", "1.5", 0, -3, None])
    def test_invalid_share_count(self, shares):
        with pytest.raises(ValidationError):
            buy(make_portfolio(), "AAPL", "NASDAQ", shares, "150")

    @pytest.mark.parametrize("price", ["0", "-1", "NaN", "inf", None, "abc"])
    def test_invalid_price(self, price):
        with pytest.raises(ValidationError):
            buy(make_portfolio(), "AAPL", "NASDAQ", 1, price)


class TestSell:
    def test_partial_sell_keeps_purchase_price(self):
        portfolio = make_portfolio(cash="0", holdings=[holding("AAPL", 10, "100")])
        result = sell(portfolio, "AAPL", "NASDAQ", 4, "120")

        h = result.portfolio.find("AAPL", "NASDAQ")
        assert h.shares == 6
        assert h.purchase_price == Decimal("100")
        assert result.portfolio.cash == Decimal("480.00")
        assert result.transaction.type == TradeType.SELL

    def test_full_sell_removes_holding(self):
        portfolio = make_portfolio(cash="0", holdings=[holding("AAPL", 10, "100")])
        result = sell(portfolio, "AAPL", "NASDAQ", 10, "100")
        assert result.portfolio.holdings == []
        assert result.portfolio.cash == Decimal("1000.00")

    def test_sell_more_than_held(self):
        portfolio = make_portfolio(holdings=[holding("AAPL", 10, "100")])
        with pytest.raises(InsufficientShares):
            sell(portfolio, "AAPL", "NASDAQ", 11, "100")

    def test_sell_unknown_holding(self):
        with pytest.raises(InsufficientShares):
            sell(make_portfolio(), "AAPL", "NASDAQ", 1, "100")

    def test_buy_then_sell_restores_cash(self):
        start = make_portfolio(cash="10000")
        bought = buy(start, "AAPL", "NASDAQ", 7, "123.4567").portfolio
        sold = sell(bought, "AAPL", "NASDAQ", 7, "123.4567").portfolio
        assert sold.cash == Decimal("10000.00")
        assert sold.holdings == []


class TestRevalue:
    def test_revalue_uses_fresh_prices(self):
        portfolio = make_portfolio(
            cash="1000",
            initial="3000",
            holdings=[holding("AAPL", 10, "100"), holding("MSFT", 5, "200")],
        )
        lookup = CountingLookup({"AAPL": "150", "MSFT": "100"})

        result = asyncio.run(revalue(portfolio, lookup))

        assert result.holdings_value == Decimal("2000.00")
        assert result.total_value == Decimal("3000.00")
        assert result.gain_loss == Decimal("0.00")
        assert result.return_percentage == Decimal("0.00")
        assert result.portfolio.find("AAPL", "NASDAQ").current_value == Decimal("150.0000")
        assert result.stale_tickers == []

    def test_failed_lookup_falls_back_to_purchase_price(self):
        portfolio = make_portfolio(
            cash="0",
            initial="1000",
            holdings=[holding("AAPL", 10, "100"), holding("MSFT", 1, "50")],
        )
        lookup = CountingLookup({"AAPL": "110"}, failing={"MSFT"})

        result = asyncio.run(revalue(portfolio, lookup))

        assert result.portfolio.find("MSFT", "NASDAQ").current_value == Decimal("50")
        assert result.total_value == Decimal("1150.00")
        assert result.stale_tickers == ["MSFT"]

    def test_no_lookup_values_at_cost(self):
        portfolio = make_portfolio(cash="500", initial="1000", holdings=[holding("AAPL", 5, "100")])
        result = asyncio.run(revalue(portfolio, None))
        assert result.total_value == Decimal("1000.00")
        assert result.return_percentage == Decimal("0.00")

    def test_empty_portfolio_makes_no_lookups(self):
        lookup = CountingLookup({})
        result = asyncio.run(revalue(make_portfolio(cash="90000"), lookup))
        assert lookup.calls == []
        assert result.total_value == Decimal("90000.00")
        assert result.return_percentage == Decimal("-10.00")

    def test_return_percentage_zero_initial_value(self):
        assert return_percentage(Decimal("0"), Decimal("500")) == Decimal("0")

    def test_revalue_many_deduplicates_tickers(self):
        portfolios = [
            make_portfolio(holdings=[holding("AAPL", 1, "100"), holding("MSFT", 1, "100")]),
            make_portfolio(holdings=[holding("AAPL", 2, "90")]),
            make_portfolio(),
        ]
        lookup = CountingLookup({"AAPL": "120", "MSFT": "80"})

        results = asyncio.run(revalue_many(portfolios, lookup))

        assert sorted(lookup.calls) == ["AAPL", "MSFT"]
        assert results[0].holdings_value == Decimal("200.00")
        assert results[1].holdings_value == Decimal("240.00")
        assert results[2].holdings_value == Decimal("0.00")
