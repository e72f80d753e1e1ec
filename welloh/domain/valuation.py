"""
Portfolio valuation and trade execution.

Valuation never fails because of a bad price lookup: any holding whose
lookup errors (or when no lookup is supplied) is valued at its purchase
price. Trades are pure: they return a new Portfolio together with the
Transaction that must be persisted alongside it.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import InsufficientFunds, InsufficientShares
from .models import Holding, Portfolio, TradeType, Transaction, utc_now
from .parsing import parse_share_count, quantize_money, quantize_price, to_price

logger = logging.getLogger(__name__)

PriceLookup = Callable[[str], Awaitable[Decimal]]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class RevaluedPortfolio:
    """Portfolio snapshot with every holding's ``current_value`` filled in."""
    portfolio: Portfolio
    holdings_value: Decimal
    total_value: Decimal
    gain_loss: Decimal
    return_percentage: Decimal
    stale_tickers: List[str] = field(default_factory=list)  # priced at purchase price

    def to_dict(self) -> Dict[str, object]:
        return {
            "portfolio": self.portfolio.to_dict(),
            "holdings_value": str(self.holdings_value),
            "total_value": str(self.total_value),
            "gain_loss": str(self.gain_loss),
            "return_percentage": str(self.return_percentage),
            "stale_tickers": list(self.stale_tickers),
        }


@dataclass
class TradeResult:
    portfolio: Portfolio
    transaction: Transaction


def return_percentage(initial_value: Decimal, total_value: Decimal) -> Decimal:
    """Return on initial capital in percent; exactly 0 when initial value is 0."""
    if initial_value == 0:
        return ZERO
    gain = total_value - initial_value
    return (gain / initial_value * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def value_portfolio(portfolio: Portfolio, prices: Dict[str, Decimal]) -> RevaluedPortfolio:
    """
    Value a portfolio from an already-fetched price map.

    Tickers missing from ``prices`` fall back to the holding's purchase price.
    """
    holdings: List[Holding] = []
    stale: List[str] = []
    for holding in portfolio.holdings:
        price = prices.get(holding.ticker)
        if price is None:
            price = holding.purchase_price
            stale.append(holding.ticker)
        holdings.append(
            Holding(
                ticker=holding.ticker,
                exchange=holding.exchange,
                company_name=holding.company_name,
                shares=holding.shares,
                purchase_price=holding.purchase_price,
                current_value=price,
            )
        )

    holdings_value = quantize_money(
        sum((h.current_value * h.shares for h in holdings), ZERO)
    )
    total_value = quantize_money(portfolio.cash + holdings_value)
    gain_loss = total_value - portfolio.initial_value

    return RevaluedPortfolio(
        portfolio=Portfolio(
            cash=portfolio.cash,
            initial_value=portfolio.initial_value,
            holdings=holdings,
        ),
        holdings_value=holdings_value,
        total_value=total_value,
        gain_loss=gain_loss,
        return_percentage=return_percentage(portfolio.initial_value, total_value),
        stale_tickers=stale,
    )


async def _lookup_one(ticker: str, price_lookup: PriceLookup) -> Decimal:
    return to_price(await price_lookup(ticker))


async def fetch_prices(
    tickers: Iterable[str],
    price_lookup: Optional[PriceLookup],
) -> Dict[str, Decimal]:
    """
    Look up distinct tickers concurrently.

    Each lookup resolves independently: failures are logged and left out of
    the returned map so callers fall back per holding.
    """
    unique = list(dict.fromkeys(tickers))
    if not unique or price_lookup is None:
        return {}

    results = await asyncio.gather(
        *(_lookup_one(ticker, price_lookup) for ticker in unique),
        return_exceptions=True,
    )

    prices: Dict[str, Decimal] = {}
    for ticker, result in zip(unique, results):
        if isinstance(result, BaseException):
            logger.warning("Price lookup failed for %s, using purchase price: %s", ticker, result)
            continue
        prices[ticker] = result
    logger.debug("Fetched %d/%d prices", len(prices), len(unique))
    return prices


async def revalue(
    portfolio: Portfolio,
    price_lookup: Optional[PriceLookup] = None,
) -> RevaluedPortfolio:
    """Revalue one portfolio against fresh prices. Never raises on lookup errors."""
    if not portfolio.holdings:
        return value_portfolio(portfolio, {})
    prices = await fetch_prices((h.ticker for h in portfolio.holdings), price_lookup)
    return value_portfolio(portfolio, prices)


async def revalue_many(
    portfolios: Sequence[Portfolio],
    price_lookup: Optional[PriceLookup] = None,
) -> List[RevaluedPortfolio]:
    """Revalue several portfolios with a single deduplicated lookup batch."""
    tickers = [h.ticker for p in portfolios for h in p.holdings]
    prices = await fetch_prices(tickers, price_lookup)
    return [value_portfolio(p, prices) for p in portfolios]


# ============================================================================
# Trades
# ============================================================================

def _new_transaction(
    trade_type: TradeType,
    ticker: str,
    exchange: str,
    company_name: str,
    shares: int,
    price: Decimal,
    now: Optional[datetime],
) -> Transaction:
    return Transaction(
        id=f"txn_{uuid.uuid4().hex}",
        type=trade_type,
        ticker=ticker,
        exchange=exchange,
        company_name=company_name,
        shares=shares,
        price=price,
        timestamp=now or utc_now(),
    )


def buy(
    portfolio: Portfolio,
    ticker: str,
    exchange: str,
    shares: int,
    price,
    company_name: str = "",
    now: Optional[datetime] = None,
) -> TradeResult:
    """
    Buy ``shares`` at ``price``.

    Raises:
        ValidationError: invalid share count or price
        InsufficientFunds: cost exceeds available cash
    """
    shares = parse_share_count(shares)
    price = to_price(price)
    if price * shares > portfolio.cash:
        raise InsufficientFunds("Insufficient funds for this purchase.")
    cost = quantize_money(price * shares)

    updated = copy.deepcopy(portfolio)
    existing = updated.find(ticker, exchange)
    if existing is not None:
        total_shares = existing.shares + shares
        existing.purchase_price = quantize_price(
            (existing.purchase_price * existing.shares + price * shares) / total_shares
        )
        existing.shares = total_shares
        existing.current_value = price
        company_name = company_name or existing.company_name
    else:
        updated.holdings.append(
            Holding(
                ticker=ticker,
                exchange=exchange,
                company_name=company_name,
                shares=shares,
                purchase_price=price,
                current_value=price,
            )
        )
    updated.cash = quantize_money(updated.cash - cost)

    transaction = _new_transaction(TradeType.BUY, ticker, exchange, company_name, shares, price, now)
    logger.info("Buy %d %s.%s @ %s (cost %s)", shares, ticker, exchange, price, cost)
    return TradeResult(portfolio=updated, transaction=transaction)


def sell(
    portfolio: Portfolio,
    ticker: str,
    exchange: str,
    shares: int,
    price,
    company_name: str = "",
    now: Optional[datetime] = None,
) -> TradeResult:
    """
    Sell ``shares`` at ``price``. Average cost of the remaining position is kept.

    Raises:
        ValidationError: invalid share count or price
        InsufficientShares: no such holding or not enough shares held
    """
    shares = parse_share_count(shares)
    price = to_price(price)
    held = portfolio.find(ticker, exchange)
    if held is None or held.shares < shares:
        raise InsufficientShares("You do not hold enough shares to sell.")

    updated = copy.deepcopy(portfolio)
    holding = updated.find(ticker, exchange)
    holding.shares -= shares
    if holding.shares == 0:
        updated.holdings = [h for h in updated.holdings if h.key != (ticker, exchange)]
    else:
        holding.current_value = price
    updated.cash = quantize_money(updated.cash + quantize_money(price * shares))

    transaction = _new_transaction(
        TradeType.SELL, ticker, exchange, company_name or held.company_name, shares, price, now
    )
    logger.info("Sell %d %s.%s @ %s", shares, ticker, exchange, price)
    return TradeResult(portfolio=updated, transaction=transaction)
